from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from deploy_lens import config
from deploy_lens.domain.models import (
    ArtifactDescriptor,
    BuildCategory,
    BuildRecord,
    BuildStatus,
    CommitDetails,
    PipelineExecutionRecord,
    SourceBranch,
    SourceRevision,
)
from deploy_lens.topology.models import TopologyConfig

BASE_TIME = datetime(2025, 9, 20, 12, 0, tzinfo=timezone.utc)
BACKEND_IMAGE_REPO = "123456789012.dkr.ecr.us-west-2.amazonaws.com/eval-backend"
FRONTEND_IMAGE_REPO = "123456789012.dkr.ecr.us-west-2.amazonaws.com/eval-frontend"


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> None:
    config._load_settings_cached.cache_clear()
    yield
    config._load_settings_cached.cache_clear()


@pytest.fixture
def topology() -> TopologyConfig:
    return TopologyConfig.model_validate(
        {
            "components": {
                "backend": {"repository": "backend", "image_repository": BACKEND_IMAGE_REPO},
                "frontend": {"repository": "frontend", "image_repository": FRONTEND_IMAGE_REPO},
            },
            "environments": [
                {
                    "name": "sandbox",
                    "projects": {
                        "backend": "eval-backend-sandbox",
                        "frontend": "eval-frontend-sandbox",
                    },
                },
                {
                    "name": "production",
                    "projects": {
                        "backend": "eval-backend-prod",
                        "frontend": "eval-frontend-prod",
                    },
                },
            ],
            "test_projects": [
                "eval-backend-mainbranchtest",
                "eval-frontend-mainbranchtest",
            ],
            "query_start_date": "2025-09-15T00:00:00Z",
        }
    )


@pytest.fixture
def make_build() -> Callable[..., BuildRecord]:
    def _make(
        build_id: str = "eval-backend-prod:0001",
        *,
        project: str = "eval-backend-prod",
        status: BuildStatus = BuildStatus.SUCCEEDED,
        category: BuildCategory = BuildCategory.PRODUCTION,
        commit: str | None = "abcdef1234567890abcdef1234567890abcdef12",
        start: datetime | None = BASE_TIME,
        image_uri: str | None = None,
        branch: SourceBranch | None = SourceBranch.MAIN,
        source_version: str | None = "main",
        **changes: object,
    ) -> BuildRecord:
        return BuildRecord(
            build_id=build_id,
            project_name=project,
            status=status,
            category=category,
            source_version=source_version,
            resolved_commit=commit,
            start_time=start,
            end_time=start + timedelta(minutes=5) if start else None,
            is_deployable=category is BuildCategory.PRODUCTION,
            source_branch=branch,
            artifact=ArtifactDescriptor(image_uri=image_uri),
            **changes,
        )

    return _make


@pytest.fixture
def make_execution() -> Callable[..., PipelineExecutionRecord]:
    def _make(
        execution_id: str = "exec-1",
        *,
        pipeline: str = "eval-backend-prod",
        status: str = "Succeeded",
        revision_id: str | None = "abcdef1234567890",
        summary: str | None = "Merge pull request #42 from org/feature",
        updated: datetime | None = BASE_TIME + timedelta(hours=1),
        trigger: str | None = "StartPipelineExecution",
    ) -> PipelineExecutionRecord:
        revisions = ()
        if revision_id is not None:
            revisions = (
                SourceRevision(
                    action_name="Source",
                    revision_id=revision_id,
                    revision_summary=summary,
                ),
            )
        return PipelineExecutionRecord(
            pipeline_name=pipeline,
            execution_id=execution_id,
            status=status,
            last_update_time=updated,
            trigger_type=trigger,
            source_revisions=revisions,
        )

    return _make


@pytest.fixture
def github() -> MagicMock:
    """GitHub source stub: no commits, no PRs, no comparisons unless a test says so."""
    source = MagicMock()
    source.get_commit = AsyncMock(return_value=None)
    source.find_pull_request = AsyncMock(return_value=None)
    source.compare_commits = AsyncMock(return_value=None)
    source.latest_commit = AsyncMock(return_value=None)
    return source


def commit(sha: str, message: str, author: str = "Dana") -> CommitDetails:
    return CommitDetails(sha=sha, message=message, author_name=author, author_email="dana@example.com")


@pytest.fixture
def make_commit() -> Callable[..., CommitDetails]:
    return commit
