"""Is a component's production build behind its main-branch reference build?"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from deploy_lens.domain.models import BuildCategory, BuildRecord, Component, commits_match
from deploy_lens.errors import ExternalServiceError
from deploy_lens.sources.github import GitHubSource
from deploy_lens.topology.models import TopologyConfig

logger = logging.getLogger(__name__)


def _newest(builds: Iterable[BuildRecord]) -> BuildRecord | None:
    dated = [build for build in builds if build.start_time is not None]
    if not dated:
        return None
    return max(dated, key=lambda build: (build.start_time, build.build_id))


def latest_production_build(
    builds: Iterable[BuildRecord], component: Component, project_name: str | None = None
) -> BuildRecord | None:
    return _newest(
        build
        for build in builds
        if build.category is BuildCategory.PRODUCTION
        and build.component is component
        and (project_name is None or build.project_name == project_name)
        and build.resolved_commit
    )


def latest_reference_build(builds: Iterable[BuildRecord], component: Component) -> BuildRecord | None:
    return _newest(
        build
        for build in builds
        if build.category is BuildCategory.MAIN_TEST
        and build.component is component
        and build.succeeded
        and build.resolved_commit
    )


@dataclass(frozen=True)
class StalenessResult:
    component: Component
    is_stale: bool
    production_commit: str | None = None
    reference_commit: str | None = None
    ahead_by: int | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "component": self.component.value,
            "isStale": self.is_stale,
            "productionCommit": self.production_commit,
            "referenceCommit": self.reference_commit,
            "aheadBy": self.ahead_by,
        }


@dataclass(frozen=True)
class CommitDrift:
    component: Component
    commits_ahead: int
    latest_sha: str | None
    newest_build_sha: str | None
    message: str

    def to_dict(self) -> dict[str, object]:
        return {
            "component": self.component.value,
            "commitsAhead": self.commits_ahead,
            "latestGitHubSha": self.latest_sha,
            "newestBuildSha": self.newest_build_sha,
            "message": self.message,
        }


class StalenessChecker:
    def __init__(self, github: GitHubSource, topology: TopologyConfig) -> None:
        self._github = github
        self._topology = topology

    async def check(
        self,
        component: Component,
        builds: Iterable[BuildRecord],
        production_project: str | None = None,
    ) -> StalenessResult:
        builds = list(builds)
        production = latest_production_build(builds, component, production_project)
        reference = latest_reference_build(builds, component)
        if production is None or reference is None:
            return StalenessResult(component, False)

        production_sha = production.resolved_commit
        reference_sha = reference.resolved_commit
        if commits_match(production_sha, reference_sha):
            return StalenessResult(component, False, production_sha, reference_sha, 0)

        repo = self._topology.repository_for(component)
        comparison = None
        if repo:
            try:
                comparison = await self._github.compare_commits(repo, production_sha, reference_sha)
            except ExternalServiceError as exc:
                logger.warning("Commit comparison failed for %s: %s", component.value, exc)
        if comparison is None:
            # No answer from the host; differing commits are treated as stale.
            return StalenessResult(component, True, production_sha, reference_sha)
        return StalenessResult(
            component,
            comparison.ahead_by > 0,
            production_sha,
            reference_sha,
            comparison.ahead_by,
        )

    async def commit_drift(self, component: Component, builds: Iterable[BuildRecord]) -> CommitDrift:
        """How far the tracked main branch has moved past the newest build."""
        newest = _newest(
            build for build in builds if build.component is component and build.resolved_commit
        )
        if newest is None:
            return CommitDrift(component, 0, None, None, f"No builds found for {component.value}")

        repo = self._topology.repository_for(component)
        latest = await self._github.latest_commit(repo, self._topology.classifier.main_ref) if repo else None
        build_sha = newest.resolved_commit
        if latest is None or not latest.sha:
            raise ExternalServiceError("github", "latest_commit", f"No head commit for {repo}")
        if commits_match(latest.sha, build_sha):
            return CommitDrift(component, 0, latest.sha[:7], build_sha[:7], "Up to date")

        comparison = await self._github.compare_commits(repo, build_sha, latest.sha)
        if comparison is None:
            raise ExternalServiceError("github", "compare_commits", f"Cannot compare {build_sha}...{latest.sha}")
        ahead = comparison.ahead_by
        return CommitDrift(
            component,
            ahead,
            latest.sha[:7],
            build_sha[:7],
            f"{ahead} commits ahead" if ahead > 0 else "Up to date",
        )
