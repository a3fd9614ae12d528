"""CodePipeline listing, execution detail and source-stage lookups."""

from __future__ import annotations

from dataclasses import dataclass

from deploy_lens.domain.models import PipelineExecutionRecord, SourceRevision
from deploy_lens.execution.cache import TTLCache
from deploy_lens.execution.throttle import RequestThrottler, RetryPolicy
from deploy_lens.sources.base import AwsSource

SOURCE_STAGE_NAME = "Source"
_PIPELINE_DEFINITION_TTL_SECONDS = 30 * 60


@dataclass(frozen=True)
class ArtifactLocation:
    bucket: str
    key: str


def _revision_from_dict(data: dict[str, object]) -> SourceRevision:
    return SourceRevision(
        action_name=_str_or_none(data.get("actionName") or data.get("name")),
        revision_id=_str_or_none(data.get("revisionId")),
        revision_summary=_str_or_none(data.get("revisionSummary")),
        revision_url=_str_or_none(data.get("revisionUrl")),
    )


def _str_or_none(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def execution_from_summary(pipeline_name: str, summary: dict[str, object]) -> PipelineExecutionRecord:
    trigger = summary.get("trigger")
    revisions = summary.get("sourceRevisions") or summary.get("artifactRevisions") or []
    return PipelineExecutionRecord(
        pipeline_name=pipeline_name,
        execution_id=str(summary.get("pipelineExecutionId") or ""),
        status=str(summary.get("status") or "Unknown"),
        last_update_time=summary.get("lastUpdateTime"),  # type: ignore[arg-type]
        trigger_type=trigger.get("triggerType") if isinstance(trigger, dict) else None,
        source_revisions=tuple(
            _revision_from_dict(item) for item in revisions if isinstance(item, dict)
        ),
    )


class CodePipelineSource(AwsSource):
    service = "codepipeline"

    def __init__(
        self,
        client,
        throttler: RequestThrottler,
        policy: RetryPolicy,
        cache: TTLCache | None = None,
    ) -> None:
        super().__init__(client, throttler, policy)
        self._cache = cache

    async def list_pipelines(self) -> list[str]:
        names: list[str] = []
        token: str | None = None
        while True:
            kwargs: dict[str, object] = {"nextToken": token} if token else {}
            response = await self._call("list_pipelines", **kwargs)
            for pipeline in response.get("pipelines") or []:
                if isinstance(pipeline, dict) and pipeline.get("name"):
                    names.append(str(pipeline["name"]))
            token = _str_or_none(response.get("nextToken"))
            if not token:
                return names

    async def list_executions(
        self, pipeline_name: str, max_results: int = 10
    ) -> list[PipelineExecutionRecord]:
        response = await self._call(
            "list_pipeline_executions",
            pipelineName=pipeline_name,
            maxResults=max_results,
        )
        return [
            execution_from_summary(pipeline_name, summary)
            for summary in response.get("pipelineExecutionSummaries") or []
            if isinstance(summary, dict)
        ]

    async def get_execution(self, pipeline_name: str, execution_id: str) -> PipelineExecutionRecord:
        response = await self._call(
            "get_pipeline_execution",
            pipelineName=pipeline_name,
            pipelineExecutionId=execution_id,
        )
        detail = response.get("pipelineExecution")
        if not isinstance(detail, dict):
            detail = {"pipelineExecutionId": execution_id, "status": "Unknown"}
        return execution_from_summary(pipeline_name, detail)

    async def get_source_artifact_location(self, pipeline_name: str) -> ArtifactLocation | None:
        """Bucket and key of the S3 action in the pipeline's Source stage."""
        if self._cache is None:
            return await self._load_source_artifact_location(pipeline_name)
        return await self._cache.get_or_load(
            ("pipeline-source", pipeline_name),
            lambda: self._load_source_artifact_location(pipeline_name),
            ttl_seconds=_PIPELINE_DEFINITION_TTL_SECONDS,
        )

    async def _load_source_artifact_location(self, pipeline_name: str) -> ArtifactLocation | None:
        response = await self._call("get_pipeline", name=pipeline_name)
        pipeline = response.get("pipeline")
        if not isinstance(pipeline, dict):
            return None
        for stage in pipeline.get("stages") or []:
            if not isinstance(stage, dict) or stage.get("name") != SOURCE_STAGE_NAME:
                continue
            for action in stage.get("actions") or []:
                if not isinstance(action, dict):
                    continue
                type_id = action.get("actionTypeId") or {}
                if not isinstance(type_id, dict) or type_id.get("provider") != "S3":
                    continue
                configuration = action.get("configuration") or {}
                bucket = configuration.get("S3Bucket") if isinstance(configuration, dict) else None
                key = configuration.get("S3ObjectKey") if isinstance(configuration, dict) else None
                if bucket and key:
                    return ArtifactLocation(bucket=str(bucket), key=str(key))
        return None
