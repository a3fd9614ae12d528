"""Domain records for builds, pipeline executions and deployments."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

_DIGEST_SEPARATOR = "@"


class BuildStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    FAULT = "FAULT"
    IN_PROGRESS = "IN_PROGRESS"
    STOPPED = "STOPPED"
    TIMED_OUT = "TIMED_OUT"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: object) -> "BuildStatus":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().upper()
            if normalized == "TIMEOUT":
                return cls.TIMED_OUT
            try:
                return cls(normalized)
            except ValueError:
                return cls.UNKNOWN
        return cls.UNKNOWN


class BuildCategory(str, Enum):
    PRODUCTION = "production"
    DEV_TEST = "dev-test"
    MAIN_TEST = "main-test"
    UNKNOWN = "unknown"


class SourceBranch(str, Enum):
    MAIN = "main"
    DEV = "dev"
    FEATURE = "feature"


class Component(str, Enum):
    BACKEND = "backend"
    FRONTEND = "frontend"

    @classmethod
    def from_name(cls, name: str | None) -> "Component | None":
        lowered = (name or "").lower()
        if "backend" in lowered:
            return cls.BACKEND
        if "frontend" in lowered:
            return cls.FRONTEND
        return None


class MatchingMethod(str, Enum):
    EXACT_IMAGE = "exact-image"
    IMAGE_TAG = "image-tag"
    COMMIT_HASH = "commit-hash"
    NONE = "None"


class DeploymentActivity(str, Enum):
    DEPLOYED = "DEPLOYED"
    DEPLOYING = "DEPLOYING"


class CoordinationStatus(str, Enum):
    BUILDS_OUT_OF_DATE = "BUILDS_OUT_OF_DATE"
    NO_UPDATES_AVAILABLE = "NO_UPDATES_AVAILABLE"
    BOTH_READY_COORDINATED = "BOTH_READY_COORDINATED"
    BOTH_READY_INDEPENDENT = "BOTH_READY_INDEPENDENT"
    BACKEND_ONLY_READY = "BACKEND_ONLY_READY"
    FRONTEND_ONLY_READY = "FRONTEND_ONLY_READY"
    UNKNOWN = "UNKNOWN"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def image_tag(image_uri: str | None) -> str | None:
    """Return the tag of ``registry[:port]/name:tag`` or None when untagged."""
    if not image_uri:
        return None
    reference = image_uri.split(_DIGEST_SEPARATOR, 1)[0]
    last_segment = reference.rsplit("/", 1)[-1]
    if ":" not in last_segment:
        return None
    tag = last_segment.rsplit(":", 1)[1].strip()
    return tag or None


def commits_match(left: str | None, right: str | None, min_length: int = 7) -> bool:
    """Compare full or abbreviated commit hashes."""
    if not left or not right:
        return False
    left = left.strip().lower()
    right = right.strip().lower()
    if len(left) < min_length or len(right) < min_length:
        return left == right
    return left.startswith(right) or right.startswith(left)


@dataclass(frozen=True)
class CommitDetails:
    sha: str
    message: str
    author_name: str = "Unknown"
    author_email: str = ""
    author_username: str | None = None
    date: str | None = None
    parents: tuple[str, ...] = ()

    @property
    def first_line(self) -> str:
        return self.message.split("\n", 1)[0]

    def to_dict(self) -> dict[str, object]:
        return {
            "sha": self.sha,
            "message": self.message,
            "author": {
                "name": self.author_name,
                "email": self.author_email,
                "username": self.author_username,
            },
            "date": self.date,
            "parents": list(self.parents),
        }


@dataclass(frozen=True)
class PullRequestDetails:
    number: str
    title: str | None = None
    state: str | None = None
    merged_at: str | None = None
    user: str | None = None
    url: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "number": self.number,
            "title": self.title,
            "state": self.state,
            "merged_at": self.merged_at,
            "user": self.user,
            "url": self.url,
        }


@dataclass(frozen=True)
class HotfixDetails:
    commit: CommitDetails
    branch: SourceBranch
    is_hotfix: bool = True

    def to_dict(self) -> dict[str, object]:
        payload = self.commit.to_dict()
        payload["isHotfix"] = self.is_hotfix
        payload["branch"] = self.branch.value
        return payload


@dataclass(frozen=True)
class ArtifactDescriptor:
    md5_hash: str | None = None
    sha256_hash: str | None = None
    location: str | None = None
    image_uri: str | None = None

    @property
    def tag(self) -> str | None:
        return image_tag(self.image_uri)

    def to_dict(self) -> dict[str, object]:
        return {
            "md5Hash": self.md5_hash,
            "sha256Hash": self.sha256_hash,
            "location": self.location,
            "imageUri": self.image_uri,
        }


@dataclass(frozen=True)
class BuildRecord:
    build_id: str
    project_name: str
    status: BuildStatus
    category: BuildCategory
    source_version: str | None = None
    resolved_commit: str | None = None
    build_number: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    is_deployable: bool = False
    pr_number: str | None = None
    source_branch: SourceBranch | None = None
    hotfix: HotfixDetails | None = None
    artifact: ArtifactDescriptor = field(default_factory=ArtifactDescriptor)
    commit_author: str | None = None
    commit_message: str | None = None
    pr_title: str | None = None
    log_group: str | None = None

    def __post_init__(self) -> None:
        if self.pr_number is not None and self.hotfix is not None:
            raise ValueError(
                f"Build {self.build_id} cannot carry both a pull request and hotfix details"
            )

    @property
    def succeeded(self) -> bool:
        return self.status is BuildStatus.SUCCEEDED

    @property
    def short_commit(self) -> str:
        return self.resolved_commit[:7] if self.resolved_commit else "NA"

    @property
    def duration_seconds(self) -> int | None:
        if self.start_time is None or self.end_time is None:
            return None
        return round((self.end_time - self.start_time).total_seconds())

    @property
    def component(self) -> Component | None:
        return Component.from_name(self.project_name)

    @property
    def is_hotfix(self) -> bool:
        return self.hotfix is not None and self.hotfix.is_hotfix

    def with_updates(self, **changes: object) -> "BuildRecord":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, object]:
        return {
            "buildId": self.build_id,
            "buildNumber": self.build_number,
            "projectName": self.project_name,
            "status": self.status.value,
            "type": self.category.value,
            "isDeployable": self.is_deployable,
            "prNumber": self.pr_number,
            "sourceBranch": self.source_branch.value if self.source_branch else None,
            "sourceVersion": self.source_version,
            "resolvedCommit": self.resolved_commit,
            "commit": self.short_commit,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "duration": self.duration_seconds,
            "logs": self.log_group,
            "artifacts": self.artifact.to_dict(),
            "hotfixDetails": self.hotfix.to_dict() if self.hotfix else None,
            "commitAuthor": self.commit_author,
            "commitMessage": self.commit_message,
            "prTitle": self.pr_title,
        }


@dataclass(frozen=True)
class SourceRevision:
    action_name: str | None
    revision_id: str | None
    revision_summary: str | None = None
    revision_url: str | None = None

    OBJECT_STORE_MARKER = "Amazon S3 version id"

    @property
    def is_object_store_version(self) -> bool:
        return bool(self.revision_summary and self.OBJECT_STORE_MARKER in self.revision_summary)

    def pr_hint(self) -> str | None:
        """PR number mentioned in the revision summary or URL, if any."""
        if self.revision_summary:
            match = re.search(r"(?:PR|pull request)[\s#]*(\d+)", self.revision_summary, re.I)
            if match:
                return match.group(1)
        if self.revision_url:
            match = re.search(r"/pull/(\d+)", self.revision_url)
            if match:
                return match.group(1)
        return None


@dataclass(frozen=True)
class PipelineExecutionRecord:
    pipeline_name: str
    execution_id: str
    status: str
    last_update_time: datetime | None = None
    trigger_type: str | None = None
    source_revisions: tuple[SourceRevision, ...] = ()

    @property
    def primary_revision(self) -> SourceRevision | None:
        return self.source_revisions[0] if self.source_revisions else None

    @property
    def succeeded(self) -> bool:
        return self.status == "Succeeded"


@dataclass(frozen=True)
class DeploymentRecord:
    """Correlation of one pipeline execution with the build it deployed.

    Build the record through :meth:`correlated` or :meth:`uncorrelated`;
    both keep ``matched_build``, ``matching_method`` and ``is_too_old`` in
    agreement.
    """

    pipeline_name: str
    execution_id: str
    environment: str
    component: Component | None
    deployed_at: datetime | None
    matched_build: BuildRecord | None
    matching_method: MatchingMethod
    resolved_commit: str | None
    pr_number: str | None
    build_timestamp: datetime | None
    is_too_old: bool
    object_version_id: str | None = None
    image_uri: str | None = None
    activity: DeploymentActivity = DeploymentActivity.DEPLOYED

    def __post_init__(self) -> None:
        if self.matched_build is not None:
            if self.matching_method is MatchingMethod.NONE or self.is_too_old:
                raise ValueError("A correlated deployment needs a matching method")
        elif self.matching_method is not MatchingMethod.NONE or not self.is_too_old:
            raise ValueError("An uncorrelated deployment must use MatchingMethod.NONE")

    @classmethod
    def correlated(
        cls,
        execution: PipelineExecutionRecord,
        *,
        environment: str,
        component: Component | None,
        build: BuildRecord,
        method: MatchingMethod,
        object_version_id: str | None = None,
        image_uri: str | None = None,
        activity: DeploymentActivity = DeploymentActivity.DEPLOYED,
    ) -> "DeploymentRecord":
        return cls(
            pipeline_name=execution.pipeline_name,
            execution_id=execution.execution_id,
            environment=environment,
            component=component,
            deployed_at=execution.last_update_time,
            matched_build=build,
            matching_method=method,
            resolved_commit=build.short_commit,
            pr_number=build.pr_number,
            build_timestamp=build.start_time or execution.last_update_time,
            is_too_old=False,
            object_version_id=object_version_id,
            image_uri=image_uri or build.artifact.image_uri,
            activity=activity,
        )

    @classmethod
    def uncorrelated(
        cls,
        execution: PipelineExecutionRecord,
        *,
        environment: str,
        component: Component | None,
        resolved_commit: str | None = None,
        pr_number: str | None = None,
        object_version_id: str | None = None,
        image_uri: str | None = None,
        activity: DeploymentActivity = DeploymentActivity.DEPLOYED,
    ) -> "DeploymentRecord":
        return cls(
            pipeline_name=execution.pipeline_name,
            execution_id=execution.execution_id,
            environment=environment,
            component=component,
            deployed_at=execution.last_update_time,
            matched_build=None,
            matching_method=MatchingMethod.NONE,
            resolved_commit=resolved_commit,
            pr_number=pr_number,
            build_timestamp=execution.last_update_time,
            is_too_old=True,
            object_version_id=object_version_id,
            image_uri=image_uri,
            activity=activity,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "pipelineName": self.pipeline_name,
            "executionId": self.execution_id,
            "environment": self.environment,
            "component": self.component.value if self.component else None,
            "deployedAt": _iso(self.deployed_at),
            "prNumber": self.pr_number,
            "gitCommit": self.resolved_commit or ("Unknown" if self.is_too_old else None),
            "buildTimestamp": _iso(self.build_timestamp),
            "buildNumber": self.matched_build.build_number if self.matched_build else None,
            "matchedBuild": self.matched_build.to_dict() if self.matched_build else None,
            "matchingMethod": self.matching_method.value,
            "isTooOld": self.is_too_old,
            "s3VersionId": self.object_version_id,
            "dockerImageUri": self.image_uri,
            "deploymentStatus": self.activity.value,
        }


@dataclass(frozen=True)
class EnvironmentDeployment:
    environment: str
    current: dict[Component, DeploymentRecord | None]
    available_updates: dict[Component, BuildRecord | None]
    last_deployed_at: datetime | None = None

    def update_for(self, component: Component) -> BuildRecord | None:
        return self.available_updates.get(component)

    def to_dict(self) -> dict[str, object]:
        return {
            "environment": self.environment,
            "lastDeployedAt": _iso(self.last_deployed_at),
            "currentDeployment": {
                component.value: record.to_dict() if record else None
                for component, record in self.current.items()
            },
            "availableUpdates": {
                component.value: [build.to_dict()] if build else []
                for component, build in self.available_updates.items()
            },
        }


@dataclass(frozen=True)
class CoordinationState:
    status: CoordinationStatus
    reason: str
    blocking_components: tuple[Component, ...] = ()
    recommended_action: str | None = None
    allow_independent: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "blockingComponents": [component.value for component in self.blocking_components],
            "recommendedAction": self.recommended_action,
            "allowIndependent": self.allow_independent,
        }
