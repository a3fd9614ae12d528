"""Match a deployed pipeline execution back to the build that produced it.

The cascade is a list of :class:`MatchStage` objects tried in order. The
first two stages only resolve what was deployed (a commit and, when a
source bundle is available, an image reference); the remaining stages look
for the build. There is deliberately no "closest in time" fallback: when no
stage matches, the deployment is reported as uncorrelated.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable

from deploy_lens.domain.models import (
    BuildRecord,
    Component,
    DeploymentActivity,
    DeploymentRecord,
    MatchingMethod,
    PipelineExecutionRecord,
    SourceRevision,
    commits_match,
    image_tag,
)
from deploy_lens.engine.manifest import commit_from_image_uri, deployed_image_uri
from deploy_lens.errors import ExternalServiceError, MalformedArtifactError
from deploy_lens.sources.codepipeline import CodePipelineSource
from deploy_lens.sources.s3 import ObjectStoreSource

logger = logging.getLogger(__name__)


def _candidate_order(build: BuildRecord) -> tuple[float, str]:
    return (build.start_time.timestamp() if build.start_time else 0.0, build.build_id)


@dataclass
class CorrelationContext:
    execution: PipelineExecutionRecord
    candidates: tuple[BuildRecord, ...]
    revision: SourceRevision | None = None
    object_version_id: str | None = None
    resolved_commit: str | None = None
    deployed_image_uri: str | None = None
    # Set when the image was taken from a commit match, not read from a bundle.
    image_from_commit: bool = False
    notes: list[str] = field(default_factory=list)

    @classmethod
    def create(
        cls, execution: PipelineExecutionRecord, candidates: Iterable[BuildRecord]
    ) -> "CorrelationContext":
        ordered = sorted(candidates, key=_candidate_order, reverse=True)
        return cls(
            execution=execution,
            candidates=tuple(ordered),
            revision=execution.primary_revision,
        )

    @property
    def successful_candidates(self) -> tuple[BuildRecord, ...]:
        return tuple(build for build in self.candidates if build.succeeded)


class MatchStage(ABC):
    name = "stage"
    method: MatchingMethod | None = None

    @abstractmethod
    async def attempt(self, context: CorrelationContext) -> BuildRecord | None:
        """Return the matched build, or None to let the next stage run."""


class RevisionStage(MatchStage):
    """Decide whether the primary revision is an object version or a commit."""

    name = "revision"

    async def attempt(self, context: CorrelationContext) -> BuildRecord | None:
        revision = context.revision
        if revision is None or not revision.revision_id:
            context.notes.append("execution has no source revision")
            return None
        if revision.is_object_store_version:
            context.object_version_id = revision.revision_id
        else:
            context.resolved_commit = revision.revision_id
            context.deployed_image_uri = _image_for_commit(context)
            context.image_from_commit = context.deployed_image_uri is not None
        return None


def _image_for_commit(context: CorrelationContext) -> str | None:
    for build in context.successful_candidates:
        if build.artifact.image_uri and commits_match(build.resolved_commit, context.resolved_commit):
            return build.artifact.image_uri
    return None


class ObjectVersionStage(MatchStage):
    """Read the deployed image from the versioned source bundle."""

    name = "object-version"

    def __init__(self, pipelines: CodePipelineSource, object_store: ObjectStoreSource) -> None:
        self._pipelines = pipelines
        self._object_store = object_store

    async def attempt(self, context: CorrelationContext) -> BuildRecord | None:
        version_id = context.object_version_id
        if not version_id:
            return None
        pipeline_name = context.execution.pipeline_name
        try:
            location = await self._pipelines.get_source_artifact_location(pipeline_name)
            if location is None:
                context.notes.append("pipeline has no S3 source action")
                return None
            bundle = await self._object_store.get_object_version(
                location.bucket, location.key, version_id
            )
            image_uri = deployed_image_uri(bundle)
        except (MalformedArtifactError, ExternalServiceError) as exc:
            logger.warning(
                "Could not resolve source bundle %s for %s: %s", version_id, pipeline_name, exc
            )
            context.notes.append(f"bundle unresolved: {exc}")
            return None
        context.deployed_image_uri = image_uri
        context.resolved_commit = commit_from_image_uri(image_uri)
        return None


class ExactImageStage(MatchStage):
    name = "exact-image"
    method = MatchingMethod.EXACT_IMAGE

    async def attempt(self, context: CorrelationContext) -> BuildRecord | None:
        target = context.deployed_image_uri
        if not target or context.image_from_commit:
            return None
        return next(
            (build for build in context.successful_candidates if build.artifact.image_uri == target),
            None,
        )


class ImageTagStage(MatchStage):
    name = "image-tag"
    method = MatchingMethod.IMAGE_TAG

    async def attempt(self, context: CorrelationContext) -> BuildRecord | None:
        tag = image_tag(context.deployed_image_uri)
        if not tag or context.image_from_commit:
            return None
        return next(
            (build for build in context.successful_candidates if build.artifact.tag == tag),
            None,
        )


class CommitHashStage(MatchStage):
    name = "commit-hash"
    method = MatchingMethod.COMMIT_HASH

    async def attempt(self, context: CorrelationContext) -> BuildRecord | None:
        if not context.resolved_commit:
            return None
        return next(
            (
                build
                for build in context.successful_candidates
                if commits_match(build.resolved_commit, context.resolved_commit)
            ),
            None,
        )


def default_stages(
    pipelines: CodePipelineSource, object_store: ObjectStoreSource
) -> list[MatchStage]:
    return [
        RevisionStage(),
        ObjectVersionStage(pipelines, object_store),
        ExactImageStage(),
        ImageTagStage(),
        CommitHashStage(),
    ]


class ArtifactCorrelator:
    def __init__(self, stages: list[MatchStage]) -> None:
        self._stages = list(stages)

    @classmethod
    def with_sources(
        cls, pipelines: CodePipelineSource, object_store: ObjectStoreSource
    ) -> "ArtifactCorrelator":
        return cls(default_stages(pipelines, object_store))

    async def correlate(
        self,
        execution: PipelineExecutionRecord,
        candidates: Iterable[BuildRecord],
        *,
        component: Component | None,
        environment: str,
        project_name: str | None = None,
        activity: DeploymentActivity = DeploymentActivity.DEPLOYED,
    ) -> DeploymentRecord:
        if project_name is not None:
            candidates = [build for build in candidates if build.project_name == project_name]
        context = CorrelationContext.create(execution, candidates)

        for stage in self._stages:
            build = await stage.attempt(context)
            if build is None:
                continue
            if not build.succeeded or stage.method is None:
                # A stage must only hand back successful builds.
                logger.error("Stage %s returned unusable build %s", stage.name, build.build_id)
                continue
            logger.debug(
                "Execution %s of %s matched build %s via %s",
                execution.execution_id,
                execution.pipeline_name,
                build.build_id,
                stage.name,
            )
            return DeploymentRecord.correlated(
                execution,
                environment=environment,
                component=component,
                build=build,
                method=stage.method,
                object_version_id=context.object_version_id,
                image_uri=context.deployed_image_uri,
                activity=activity,
            )

        logger.info(
            "Execution %s of %s is uncorrelated (%s)",
            execution.execution_id,
            execution.pipeline_name,
            "; ".join(context.notes) or "no stage matched",
        )
        return DeploymentRecord.uncorrelated(
            execution,
            environment=environment,
            component=component,
            resolved_commit=context.resolved_commit,
            pr_number=context.revision.pr_hint() if context.revision else None,
            object_version_id=context.object_version_id,
            image_uri=context.deployed_image_uri,
            activity=activity,
        )
