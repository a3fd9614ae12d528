"""Pull-request resolution cascade.

Strategies run in a fixed order and the first one that finds a number
wins; a later strategy never overwrites an earlier answer.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod

from deploy_lens.domain.models import BuildRecord, SourceBranch
from deploy_lens.engine.classifier import (
    environment_variables,
    is_direct_branch,
    pr_number_from_reference,
    trigger_pr_hint,
)
from deploy_lens.errors import ExternalServiceError
from deploy_lens.sources.github import GitHubSource
from deploy_lens.topology.models import TopologyConfig

logger = logging.getLogger(__name__)

# Order matters. A bare "#N" is left out on purpose: hotfix commit bodies
# reference issues that way.
COMMIT_MESSAGE_PATTERNS = (
    re.compile(r"Merge pull request #(\d+)", re.IGNORECASE),
    re.compile(r"\(#(\d+)\)"),
    re.compile(r"PR #(\d+)", re.IGNORECASE),
)

_WEBHOOK_TRIGGER_VARIABLE = "CODEBUILD_WEBHOOK_TRIGGER"
_SQUASH_TITLE = re.compile(r"^(.+?)\s*\(#\d+\)\s*$")


def pr_number_from_commit_message(message: str | None) -> str | None:
    if not message:
        return None
    for pattern in COMMIT_MESSAGE_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None


def pr_title_from_commit_message(message: str | None) -> str | None:
    """Title of a PR as recorded in its merge or squash commit message."""
    if not message:
        return None
    lines = message.split("\n")
    if "Merge pull request #" in lines[0]:
        # "Merge pull request #N from branch", blank line, then the title.
        if len(lines) >= 3 and lines[2].strip():
            return lines[2].strip()
        return None
    match = _SQUASH_TITLE.match(lines[0].strip())
    return match.group(1) if match else None


class PRStrategy(ABC):
    name = "strategy"

    @abstractmethod
    async def resolve(self, build: BuildRecord, raw: dict[str, object]) -> str | None:
        """Return a PR number or None when this strategy has no answer."""


class TriggerHintStrategy(PRStrategy):
    """PR number handed over by the trigger (webhook or manual start)."""

    name = "trigger-hint"

    def __init__(self, hint_variables: list[str]) -> None:
        self._hint_variables = list(hint_variables)

    async def resolve(self, build: BuildRecord, raw: dict[str, object]) -> str | None:
        if is_direct_branch(build.source_branch):
            return None
        variables = environment_variables(raw)
        hint = trigger_pr_hint(variables, self._hint_variables)
        if hint:
            return hint
        return pr_number_from_reference(variables.get(_WEBHOOK_TRIGGER_VARIABLE))


class SourceReferenceStrategy(PRStrategy):
    name = "source-reference"

    async def resolve(self, build: BuildRecord, raw: dict[str, object]) -> str | None:
        return pr_number_from_reference(build.source_version)


class CommitMessageStrategy(PRStrategy):
    name = "commit-message"

    def __init__(self, github: GitHubSource, topology: TopologyConfig) -> None:
        self._github = github
        self._topology = topology

    async def resolve(self, build: BuildRecord, raw: dict[str, object]) -> str | None:
        repo = self._topology.repository_for(build.component)
        if not repo or not build.resolved_commit:
            return None
        commit = await self._github.get_commit(repo, build.resolved_commit)
        return pr_number_from_commit_message(commit.message if commit else None)


class PRResolver:
    def __init__(self, strategies: list[PRStrategy]) -> None:
        self._strategies = list(strategies)

    @property
    def strategy_names(self) -> list[str]:
        return [strategy.name for strategy in self._strategies]

    async def resolve(self, build: BuildRecord, raw: dict[str, object]) -> BuildRecord:
        if build.pr_number:
            return build
        for strategy in self._strategies:
            try:
                pr_number = await strategy.resolve(build, raw)
            except ExternalServiceError as exc:
                logger.warning(
                    "PR strategy %s failed for build %s: %s", strategy.name, build.build_id, exc
                )
                continue
            if pr_number:
                logger.debug(
                    "Build %s resolved to PR #%s via %s", build.build_id, pr_number, strategy.name
                )
                return build.with_updates(pr_number=pr_number)
        return build


class MergeCommitSearch:
    """Last pass: ask the host which PR merged a main-branch build's commit."""

    name = "merge-commit-search"

    def __init__(self, github: GitHubSource, topology: TopologyConfig) -> None:
        self._github = github
        self._topology = topology

    async def apply(self, builds: list[BuildRecord]) -> list[BuildRecord]:
        resolved: list[BuildRecord] = []
        for build in builds:
            resolved.append(await self._resolve_one(build))
        return resolved

    async def _resolve_one(self, build: BuildRecord) -> BuildRecord:
        if build.pr_number or build.source_branch is not SourceBranch.MAIN:
            return build
        repo = self._topology.repository_for(build.component)
        if not repo or not build.resolved_commit:
            return build
        try:
            pull = await self._github.find_pull_request(repo, build.resolved_commit)
        except ExternalServiceError as exc:
            logger.warning("PR search failed for build %s: %s", build.build_id, exc)
            return build
        if pull is None:
            return build
        return build.with_updates(pr_number=pull.number, pr_title=build.pr_title or pull.title)


class PullRequestDetailsEnricher:
    """Attach commit author/message and PR title to builds that have a PR."""

    def __init__(self, github: GitHubSource, topology: TopologyConfig) -> None:
        self._github = github
        self._topology = topology

    async def enrich(self, build: BuildRecord) -> BuildRecord:
        if not build.pr_number or not build.resolved_commit or build.hotfix is not None:
            return build
        repo = self._topology.repository_for(build.component)
        if not repo:
            return build
        try:
            commit = await self._github.get_commit(repo, build.resolved_commit)
            pull = None
            if build.pr_title is None:
                pull = await self._github.find_pull_request(repo, build.resolved_commit)
        except ExternalServiceError as exc:
            logger.warning("Could not load PR details for build %s: %s", build.build_id, exc)
            return build

        title = build.pr_title
        if title is None and pull is not None:
            title = pull.title
        if title is None and commit is not None:
            title = pr_title_from_commit_message(commit.message)
        return build.with_updates(
            commit_author=commit.author_name if commit else build.commit_author,
            commit_message=commit.message if commit else build.commit_message,
            pr_title=title,
        )


def default_pr_resolver(github: GitHubSource, topology: TopologyConfig) -> PRResolver:
    return PRResolver(
        [
            TriggerHintStrategy(topology.classifier.pr_hint_variables),
            SourceReferenceStrategy(),
            CommitMessageStrategy(github, topology),
        ]
    )
