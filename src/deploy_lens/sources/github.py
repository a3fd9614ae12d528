"""GitHub REST lookups for commits and pull requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from deploy_lens.domain.models import CommitDetails, PullRequestDetails
from deploy_lens.execution.cache import TTLCache
from deploy_lens.execution.throttle import RequestThrottler, RetryPolicy, call_external

logger = logging.getLogger(__name__)

# Commit and PR facts for a given sha never change.
STATIC_TTL_SECONDS = 0
DYNAMIC_TTL_SECONDS = 5 * 60

_NOT_FOUND_STATUSES = frozenset({404, 422})


@dataclass(frozen=True)
class CommitComparison:
    base: str
    head: str
    status: str
    ahead_by: int
    behind_by: int

    def to_dict(self) -> dict[str, object]:
        return {
            "base": self.base,
            "head": self.head,
            "status": self.status,
            "ahead_by": self.ahead_by,
            "behind_by": self.behind_by,
        }


def commit_from_payload(payload: dict[str, Any]) -> CommitDetails:
    commit = payload.get("commit") or {}
    author = commit.get("author") or {}
    login = (payload.get("author") or {}).get("login")
    return CommitDetails(
        sha=str(payload.get("sha") or ""),
        message=commit.get("message") or "No message",
        author_name=author.get("name") or "Unknown",
        author_email=author.get("email") or "",
        author_username=login,
        date=author.get("date"),
        parents=tuple(
            str(parent.get("sha"))
            for parent in payload.get("parents") or []
            if isinstance(parent, dict) and parent.get("sha")
        ),
    )


class GitHubSource:
    """Cached, throttled GitHub reads.

    Unknown commits (404/422) resolve to ``None``; everything else goes
    through the shared retry policy and rate-limit predicate.
    """

    service = "github"

    def __init__(
        self,
        http: httpx.AsyncClient,
        throttler: RequestThrottler,
        policy: RetryPolicy,
        cache: TTLCache,
        *,
        owner: str | None = None,
        api_url: str = "https://api.github.com",
        token: str | None = None,
    ) -> None:
        self._http = http
        self._throttler = throttler
        self._policy = policy
        self._cache = cache
        self._owner = owner
        self._api_url = api_url.rstrip("/")
        self._headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "deploy-lens",
        }
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    def _repo_path(self, repo: str) -> str:
        if "/" in repo or not self._owner:
            return repo
        return f"{self._owner}/{repo}"

    async def _get_json(self, operation: str, path: str) -> Any | None:
        url = f"{self._api_url}/repos/{path}"

        async def _request() -> Any | None:
            response = await self._http.get(url, headers=self._headers)
            if response.status_code in _NOT_FOUND_STATUSES:
                return None
            response.raise_for_status()
            return response.json()

        return await call_external(self._throttler, self._policy, self.service, operation, _request)

    async def get_commit(self, repo: str, sha: str | None) -> CommitDetails | None:
        if not sha:
            return None
        path = f"{self._repo_path(repo)}/commits/{sha}"

        async def _load() -> CommitDetails | None:
            payload = await self._get_json("get_commit", path)
            return commit_from_payload(payload) if isinstance(payload, dict) else None

        return await self._cache.get_or_load(
            ("commit", repo, sha), _load, ttl_seconds=STATIC_TTL_SECONDS
        )

    async def find_pull_request(self, repo: str, sha: str | None) -> PullRequestDetails | None:
        """Pull request whose head or merge commit is *sha* (merged one preferred)."""
        if not sha:
            return None
        path = f"{self._repo_path(repo)}/commits/{sha}/pulls"

        async def _load() -> PullRequestDetails | None:
            pulls = await self._get_json("find_pull_request", path)
            if not isinstance(pulls, list) or not pulls:
                logger.debug("No pull request found for %s@%s", repo, sha[:8])
                return None
            merged = next((pr for pr in pulls if isinstance(pr, dict) and pr.get("merged_at")), None)
            chosen = merged or pulls[0]
            if not isinstance(chosen, dict) or chosen.get("number") is None:
                return None
            return PullRequestDetails(
                number=str(chosen["number"]),
                title=chosen.get("title"),
                state=chosen.get("state"),
                merged_at=chosen.get("merged_at"),
                user=(chosen.get("user") or {}).get("login"),
                url=chosen.get("html_url"),
            )

        return await self._cache.get_or_load(
            ("pulls", repo, sha), _load, ttl_seconds=STATIC_TTL_SECONDS
        )

    async def compare_commits(self, repo: str, base: str, head: str) -> CommitComparison | None:
        path = f"{self._repo_path(repo)}/compare/{base}...{head}"

        async def _load() -> CommitComparison | None:
            payload = await self._get_json("compare_commits", path)
            if not isinstance(payload, dict):
                return None
            return CommitComparison(
                base=base,
                head=head,
                status=str(payload.get("status") or "unknown"),
                ahead_by=int(payload.get("ahead_by") or 0),
                behind_by=int(payload.get("behind_by") or 0),
            )

        return await self._cache.get_or_load(
            ("compare", repo, base, head), _load, ttl_seconds=DYNAMIC_TTL_SECONDS
        )

    async def latest_commit(self, repo: str, branch: str = "main") -> CommitDetails | None:
        path = f"{self._repo_path(repo)}/commits/{branch}"

        async def _load() -> CommitDetails | None:
            payload = await self._get_json("latest_commit", path)
            return commit_from_payload(payload) if isinstance(payload, dict) else None

        return await self._cache.get_or_load(
            ("latest", repo, branch), _load, ttl_seconds=DYNAMIC_TTL_SECONDS
        )
