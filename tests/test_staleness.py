from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from deploy_lens.domain.models import BuildCategory, BuildStatus, Component
from deploy_lens.engine.staleness import (
    StalenessChecker,
    latest_production_build,
    latest_reference_build,
)
from deploy_lens.errors import ExternalServiceError
from deploy_lens.sources.github import CommitComparison

BASE_TIME = datetime(2025, 9, 20, 12, 0, tzinfo=timezone.utc)
PROD_SHA = "1111111aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
MAIN_SHA = "2222222bbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"


def _builds(make_build, production_sha: str = PROD_SHA, reference_sha: str = MAIN_SHA):
    return [
        make_build("eval-backend-prod:1", commit=production_sha),
        make_build(
            "eval-backend-mainbranchtest:1",
            project="eval-backend-mainbranchtest",
            category=BuildCategory.MAIN_TEST,
            commit=reference_sha,
            start=BASE_TIME + timedelta(minutes=30),
        ),
    ]


def test_latest_builds_by_category(make_build) -> None:
    builds = _builds(make_build) + [
        make_build("eval-backend-prod:2", commit=MAIN_SHA, start=BASE_TIME + timedelta(hours=1)),
        make_build(
            "eval-backend-mainbranchtest:2",
            project="eval-backend-mainbranchtest",
            category=BuildCategory.MAIN_TEST,
            status=BuildStatus.FAILED,
            start=BASE_TIME + timedelta(hours=2),
        ),
        make_build("eval-frontend-prod:9", project="eval-frontend-prod", start=BASE_TIME + timedelta(days=1)),
    ]

    assert latest_production_build(builds, Component.BACKEND).build_id == "eval-backend-prod:2"
    assert latest_production_build(builds, Component.BACKEND, "eval-backend-sandbox") is None
    assert latest_reference_build(builds, Component.BACKEND).build_id == "eval-backend-mainbranchtest:1"


@pytest.mark.asyncio
async def test_same_commit_is_not_stale(make_build, topology, github) -> None:
    result = await StalenessChecker(github, topology).check(
        Component.BACKEND, _builds(make_build, PROD_SHA, PROD_SHA[:7])
    )

    assert not result.is_stale
    assert result.ahead_by == 0
    github.compare_commits.assert_not_awaited()


@pytest.mark.asyncio
async def test_reference_ahead_is_stale(make_build, topology, github) -> None:
    github.compare_commits.return_value = CommitComparison(PROD_SHA, MAIN_SHA, "ahead", 4, 0)

    result = await StalenessChecker(github, topology).check(Component.BACKEND, _builds(make_build))

    assert result.is_stale
    assert result.to_dict()["aheadBy"] == 4
    github.compare_commits.assert_awaited_once_with("backend", PROD_SHA, MAIN_SHA)


@pytest.mark.asyncio
async def test_reference_behind_is_not_stale(make_build, topology, github) -> None:
    github.compare_commits.return_value = CommitComparison(PROD_SHA, MAIN_SHA, "behind", 0, 2)

    result = await StalenessChecker(github, topology).check(Component.BACKEND, _builds(make_build))

    assert not result.is_stale


@pytest.mark.asyncio
async def test_comparison_failure_treats_differing_commits_as_stale(make_build, topology, github) -> None:
    github.compare_commits.side_effect = ExternalServiceError("github", "compare_commits", "boom")

    result = await StalenessChecker(github, topology).check(Component.BACKEND, _builds(make_build))

    assert result.is_stale
    assert result.ahead_by is None


@pytest.mark.asyncio
async def test_missing_reference_is_not_stale(make_build, topology, github) -> None:
    result = await StalenessChecker(github, topology).check(
        Component.BACKEND, [make_build("eval-backend-prod:1")]
    )

    assert not result.is_stale


@pytest.mark.asyncio
async def test_commit_drift(make_build, topology, github, make_commit) -> None:
    github.latest_commit.return_value = make_commit(MAIN_SHA, "head")
    github.compare_commits.return_value = CommitComparison(PROD_SHA, MAIN_SHA, "ahead", 3, 0)

    drift = await StalenessChecker(github, topology).commit_drift(
        Component.BACKEND, [make_build(commit=PROD_SHA)]
    )

    assert drift.to_dict() == {
        "component": "backend",
        "commitsAhead": 3,
        "latestGitHubSha": "2222222",
        "newestBuildSha": "1111111",
        "message": "3 commits ahead",
    }
    github.latest_commit.assert_awaited_once_with("backend", "main")


@pytest.mark.asyncio
async def test_commit_drift_up_to_date(make_build, topology, github, make_commit) -> None:
    github.latest_commit.return_value = make_commit(PROD_SHA, "head")

    drift = await StalenessChecker(github, topology).commit_drift(
        Component.BACKEND, [make_build(commit=PROD_SHA)]
    )

    assert drift.commits_ahead == 0
    assert drift.message == "Up to date"


@pytest.mark.asyncio
async def test_commit_drift_without_builds(topology, github) -> None:
    drift = await StalenessChecker(github, topology).commit_drift(Component.FRONTEND, [])

    assert drift.message == "No builds found for frontend"
    github.latest_commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_commit_drift_requires_head_commit(make_build, topology, github) -> None:
    with pytest.raises(ExternalServiceError):
        await StalenessChecker(github, topology).commit_drift(Component.BACKEND, [make_build()])
