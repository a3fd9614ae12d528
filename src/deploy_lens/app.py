"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import httpx

from deploy_lens.config import Settings, load_settings
from deploy_lens.execution.aws_client import get_client
from deploy_lens.execution.cache import TTLCache
from deploy_lens.execution.throttle import RequestThrottler, RetryPolicy
from deploy_lens.service import DeployLensService
from deploy_lens.sources.codebuild import CodeBuildSource
from deploy_lens.sources.codepipeline import CodePipelineSource
from deploy_lens.sources.github import GitHubSource
from deploy_lens.sources.s3 import ObjectStoreSource
from deploy_lens.topology.loader import load_topology
from deploy_lens.topology.models import TopologyConfig


@dataclass
class AppContext:
    """Application-wide dependency container.

    Holds the shared throttlers, cache and HTTP client so every query made
    during the process lifetime paces and caches against the same state.
    """

    settings: Settings
    topology: TopologyConfig
    cache: TTLCache
    aws_throttler: RequestThrottler
    github_throttler: RequestThrottler
    http: httpx.AsyncClient
    service: DeployLensService


def build_app_context(settings: Settings, topology: TopologyConfig) -> AppContext:
    cache = TTLCache(
        default_ttl_seconds=settings.cache.ttl_seconds,
        max_entries=settings.cache.max_entries,
    )
    aws_throttler = RequestThrottler(
        settings.throttle.max_concurrent,
        settings.throttle.min_interval_seconds,
        name="aws",
    )
    github_throttler = RequestThrottler(
        settings.throttle.max_concurrent,
        settings.throttle.min_interval_seconds,
        name="github",
    )
    aws_policy = RetryPolicy(
        max_retries=settings.execution.max_retries,
        base_delay_seconds=settings.execution.retry_base_delay_seconds,
        timeout_seconds=float(settings.execution.sdk_timeout_seconds),
    )
    github_policy = RetryPolicy(
        max_retries=settings.execution.max_retries,
        base_delay_seconds=settings.execution.retry_base_delay_seconds,
        timeout_seconds=settings.github.timeout_seconds,
    )
    http = httpx.AsyncClient(timeout=httpx.Timeout(settings.github.timeout_seconds))

    codebuild = CodeBuildSource(get_client("codebuild", settings=settings), aws_throttler, aws_policy)
    pipelines = CodePipelineSource(
        get_client("codepipeline", settings=settings), aws_throttler, aws_policy, cache
    )
    object_store = ObjectStoreSource(get_client("s3", settings=settings), aws_throttler, aws_policy)
    github = GitHubSource(
        http,
        github_throttler,
        github_policy,
        cache,
        owner=settings.github.owner,
        api_url=settings.github.api_url,
        token=settings.github.token,
    )
    service = DeployLensService(
        topology,
        codebuild,
        pipelines,
        object_store,
        github,
        cache,
        throttlers={"aws": aws_throttler, "github": github_throttler},
    )
    return AppContext(
        settings=settings,
        topology=topology,
        cache=cache,
        aws_throttler=aws_throttler,
        github_throttler=github_throttler,
        http=http,
        service=service,
    )


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Get or create the process-wide application context."""
    settings = load_settings()
    topology = load_topology(settings.topology.path)
    return build_app_context(settings, topology)
