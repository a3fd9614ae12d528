"""Hotfix detection for direct commits to tracked branches."""

from __future__ import annotations

import logging

from deploy_lens.domain.models import BuildRecord, HotfixDetails
from deploy_lens.engine.classifier import is_direct_branch
from deploy_lens.errors import ExternalServiceError
from deploy_lens.sources.github import GitHubSource
from deploy_lens.topology.models import TopologyConfig

logger = logging.getLogger(__name__)


def is_hotfix_candidate(build: BuildRecord) -> bool:
    return (
        build.pr_number is None
        and build.hotfix is None
        and bool(build.resolved_commit)
        and is_direct_branch(build.source_branch)
    )


class HotfixDetector:
    def __init__(self, github: GitHubSource, topology: TopologyConfig) -> None:
        self._github = github
        self._topology = topology

    async def detect(self, build: BuildRecord) -> BuildRecord:
        """Attach commit metadata as hotfix details; PR builds come back untouched."""
        if not is_hotfix_candidate(build):
            return build
        repo = self._topology.repository_for(build.component)
        if not repo:
            return build
        try:
            commit = await self._github.get_commit(repo, build.resolved_commit)
        except ExternalServiceError as exc:
            logger.warning("Hotfix lookup failed for build %s: %s", build.build_id, exc)
            return build
        if commit is None:
            return build
        logger.debug("Build %s is a hotfix on %s", build.build_id, build.source_branch.value)
        return build.with_updates(
            hotfix=HotfixDetails(commit=commit, branch=build.source_branch),
            commit_author=commit.author_name,
            commit_message=commit.message,
        )

    async def apply(self, builds: list[BuildRecord]) -> list[BuildRecord]:
        return [await self.detect(build) for build in builds]
