from __future__ import annotations

import io
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from deploy_lens.errors import RateLimitedError
from deploy_lens.execution.cache import TTLCache
from deploy_lens.execution.throttle import RequestThrottler, RetryPolicy
from deploy_lens.sources.codebuild import CodeBuildSource
from deploy_lens.sources.codepipeline import ArtifactLocation, CodePipelineSource
from deploy_lens.sources.s3 import ObjectStoreSource

UPDATED = datetime(2025, 9, 20, 13, 0, tzinfo=timezone.utc)


def _plumbing() -> tuple[RequestThrottler, RetryPolicy]:
    return RequestThrottler(2, 0.0), RetryPolicy(max_retries=0, timeout_seconds=5)


def _pipeline_definition(provider: str = "S3") -> dict[str, object]:
    return {
        "pipeline": {
            "name": "eval-backend-prod",
            "stages": [
                {
                    "name": "Source",
                    "actions": [
                        {
                            "name": "Source",
                            "actionTypeId": {"category": "Source", "provider": provider},
                            "configuration": {
                                "S3Bucket": "eval-artifacts",
                                "S3ObjectKey": "backend/prod/imagedefinitions.zip",
                            },
                        }
                    ],
                },
                {"name": "Deploy", "actions": []},
            ],
        }
    }


@pytest.mark.asyncio
async def test_list_build_ids_newest_first_and_trimmed() -> None:
    client = MagicMock()
    client.list_builds_for_project.return_value = {"ids": [f"eval-backend-prod:{n}" for n in range(15)]}
    source = CodeBuildSource(client, *_plumbing())

    ids = await source.list_build_ids("eval-backend-prod", max_results=10)

    assert len(ids) == 10
    client.list_builds_for_project.assert_called_once_with(
        projectName="eval-backend-prod", sortOrder="DESCENDING"
    )


@pytest.mark.asyncio
async def test_batch_get_builds_chunks_requests() -> None:
    client = MagicMock()
    client.batch_get_builds.side_effect = lambda ids: {"builds": [{"id": build_id} for build_id in ids]}
    source = CodeBuildSource(client, *_plumbing())

    builds = await source.batch_get_builds([f"b:{n}" for n in range(150)])

    assert len(builds) == 150
    assert client.batch_get_builds.call_count == 2


@pytest.mark.asyncio
async def test_codebuild_throttling_is_surfaced() -> None:
    client = MagicMock()
    client.list_builds_for_project.side_effect = ClientError(
        {"Error": {"Code": "ThrottlingException", "Message": "Rate exceeded"}},
        "ListBuildsForProject",
    )
    source = CodeBuildSource(client, *_plumbing())

    with pytest.raises(RateLimitedError):
        await source.list_build_ids("eval-backend-prod")


@pytest.mark.asyncio
async def test_list_pipelines_follows_next_token() -> None:
    client = MagicMock()
    client.list_pipelines.side_effect = [
        {"pipelines": [{"name": "eval-backend-prod"}], "nextToken": "page-2"},
        {"pipelines": [{"name": "eval-frontend-prod"}]},
    ]
    source = CodePipelineSource(client, *_plumbing())

    assert await source.list_pipelines() == ["eval-backend-prod", "eval-frontend-prod"]
    client.list_pipelines.assert_called_with(nextToken="page-2")


@pytest.mark.asyncio
async def test_list_executions_parses_summaries() -> None:
    client = MagicMock()
    client.list_pipeline_executions.return_value = {
        "pipelineExecutionSummaries": [
            {
                "pipelineExecutionId": "exec-1",
                "status": "Succeeded",
                "lastUpdateTime": UPDATED,
                "trigger": {"triggerType": "StartPipelineExecution"},
                "sourceRevisions": [
                    {
                        "actionName": "Source",
                        "revisionId": "3HL4kqtJlcpXroDTDmJ",
                        "revisionSummary": "Amazon S3 version id: 3HL4kqtJlcpXroDTDmJ",
                    }
                ],
            }
        ]
    }
    source = CodePipelineSource(client, *_plumbing())

    [execution] = await source.list_executions("eval-backend-prod", max_results=5)

    assert execution.execution_id == "exec-1"
    assert execution.succeeded
    assert execution.trigger_type == "StartPipelineExecution"
    assert execution.primary_revision.is_object_store_version
    client.list_pipeline_executions.assert_called_once_with(
        pipelineName="eval-backend-prod", maxResults=5
    )


@pytest.mark.asyncio
async def test_get_execution_reads_artifact_revisions() -> None:
    client = MagicMock()
    client.get_pipeline_execution.return_value = {
        "pipelineExecution": {
            "pipelineExecutionId": "exec-2",
            "status": "InProgress",
            "artifactRevisions": [
                {"name": "SourceArtifact", "revisionId": "0123456789abcdef"}
            ],
        }
    }
    source = CodePipelineSource(client, *_plumbing())

    execution = await source.get_execution("eval-frontend-prod", "exec-2")

    assert execution.status == "InProgress"
    assert execution.primary_revision.revision_id == "0123456789abcdef"
    assert execution.primary_revision.action_name == "SourceArtifact"


@pytest.mark.asyncio
async def test_source_artifact_location_is_read_from_pipeline_and_cached() -> None:
    client = MagicMock()
    client.get_pipeline.return_value = _pipeline_definition()
    source = CodePipelineSource(client, *_plumbing(), cache=TTLCache())

    first = await source.get_source_artifact_location("eval-backend-prod")
    second = await source.get_source_artifact_location("eval-backend-prod")

    assert first == second == ArtifactLocation("eval-artifacts", "backend/prod/imagedefinitions.zip")
    client.get_pipeline.assert_called_once_with(name="eval-backend-prod")


@pytest.mark.asyncio
async def test_source_artifact_location_none_without_s3_action() -> None:
    client = MagicMock()
    client.get_pipeline.return_value = _pipeline_definition(provider="CodeStarSourceConnection")
    source = CodePipelineSource(client, *_plumbing())

    assert await source.get_source_artifact_location("eval-backend-prod") is None


@pytest.mark.asyncio
async def test_get_object_version_reads_and_closes_body() -> None:
    body = io.BytesIO(b"PK\x03\x04bundle")
    client = MagicMock()
    client.get_object.return_value = {"Body": body}
    source = ObjectStoreSource(client, *_plumbing())

    data = await source.get_object_version("eval-artifacts", "backend.zip", "v-123")

    assert data == b"PK\x03\x04bundle"
    assert body.closed
    client.get_object.assert_called_once_with(
        Bucket="eval-artifacts", Key="backend.zip", VersionId="v-123"
    )
