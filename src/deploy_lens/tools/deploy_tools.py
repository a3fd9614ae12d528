"""Deployment inspection tools.

- deploy_lens_list_builds: classified builds grouped by category
- deploy_lens_deployment_status: what is deployed per environment, and what could be
- deploy_lens_coordination_state: whether backend/frontend can ship together
- deploy_lens_commit_comparison: how far main has moved past the newest build
- deploy_lens_cache_stats: lookup cache and throttler counters
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from deploy_lens.app import get_app_context
from deploy_lens.domain.models import Component
from deploy_lens.errors import ExternalServiceError, RateLimitedError
from deploy_lens.mcp_runtime import ToolResult, ToolSpec
from deploy_lens.tools.base import (
    external_failure_result,
    rate_limited_result,
    result_from_payload,
    validate_or_raise,
)

logger = logging.getLogger(__name__)

LIST_BUILDS_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {},
    "additionalProperties": False,
}

DEPLOYMENT_STATUS_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "environment": {
            "type": "string",
            "minLength": 1,
            "maxLength": 64,
            "description": "Environment name from topology.yaml. Omit for all environments.",
        },
    },
    "additionalProperties": False,
}

COORDINATION_STATE_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "environment": {
            "type": "string",
            "minLength": 1,
            "maxLength": 64,
            "description": "Environment name from topology.yaml (e.g. 'production').",
        },
    },
    "required": ["environment"],
    "additionalProperties": False,
}

CACHE_STATS_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {},
    "additionalProperties": False,
}

COMMIT_COMPARISON_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "component": {
            "type": "string",
            "enum": [component.value for component in Component],
            "description": "Which component's repository to compare.",
        },
    },
    "required": ["component"],
    "additionalProperties": False,
}

Handler = Callable[[dict[str, object]], Awaitable[ToolResult]]


def _guarded(handler: Handler) -> Handler:
    """Turn rate limiting and exhausted retries into structured tool results."""

    async def _wrapped(payload: dict[str, object]) -> ToolResult:
        try:
            return await handler(payload)
        except RateLimitedError as exc:
            logger.warning("Rate limited while serving %s: %s", handler.__name__, exc)
            return rate_limited_result(exc)
        except ExternalServiceError as exc:
            logger.warning("External failure while serving %s: %s", handler.__name__, exc)
            return external_failure_result(exc)

    _wrapped.__name__ = handler.__name__
    _wrapped.__doc__ = handler.__doc__
    return _wrapped


@_guarded
async def list_builds(payload: dict[str, object]) -> ToolResult:
    """List classified builds, latest per project within each category."""
    validate_or_raise(LIST_BUILDS_SCHEMA, payload)
    listing = await get_app_context().service.list_builds()
    return result_from_payload(listing.to_dict())


@_guarded
async def deployment_status(payload: dict[str, object]) -> ToolResult:
    validate_or_raise(DEPLOYMENT_STATUS_SCHEMA, payload)
    environment = payload.get("environment")
    statuses = await get_app_context().service.deployment_status(
        str(environment) if environment is not None else None
    )
    return result_from_payload({"deployments": [status.to_dict() for status in statuses]})


@_guarded
async def coordination_state(payload: dict[str, object]) -> ToolResult:
    validate_or_raise(COORDINATION_STATE_SCHEMA, payload)
    report = await get_app_context().service.coordination_report(str(payload["environment"]))
    return result_from_payload(report.to_dict())


@_guarded
async def commit_comparison(payload: dict[str, object]) -> ToolResult:
    validate_or_raise(COMMIT_COMPARISON_SCHEMA, payload)
    drift = await get_app_context().service.commit_comparison(str(payload["component"]))
    return result_from_payload(drift.to_dict())


@_guarded
async def cache_stats(payload: dict[str, object]) -> ToolResult:
    validate_or_raise(CACHE_STATS_SCHEMA, payload)
    return result_from_payload(get_app_context().service.cache_stats())


list_builds_tool = ToolSpec(
    name="deploy_lens_list_builds",
    description=(
        "List recent CodeBuild builds classified as production, dev-test, main-test or "
        "unknown, with PR numbers, hotfix details and a summary of counts. "
        "Takes no arguments."
    ),
    input_schema=LIST_BUILDS_SCHEMA,
    handler=list_builds,
)

deployment_status_tool = ToolSpec(
    name="deploy_lens_deployment_status",
    description=(
        "Show which build is deployed to each environment per component, how it was "
        "matched (exact-image, image-tag, commit-hash or None) and which newer builds "
        "are available. Optional: 'environment' (string)."
    ),
    input_schema=DEPLOYMENT_STATUS_SCHEMA,
    handler=deployment_status,
)

coordination_state_tool = ToolSpec(
    name="deploy_lens_coordination_state",
    description=(
        "Decide whether backend and frontend updates for an environment should be "
        "deployed together, independently, or are blocked by out-of-date builds. "
        "Required: 'environment' (string)."
    ),
    input_schema=COORDINATION_STATE_SCHEMA,
    handler=coordination_state,
)

commit_comparison_tool = ToolSpec(
    name="deploy_lens_commit_comparison",
    description=(
        "Count how many commits the main branch is ahead of the newest build of a "
        "component. Required: 'component' ('backend' or 'frontend')."
    ),
    input_schema=COMMIT_COMPARISON_SCHEMA,
    handler=commit_comparison,
)

cache_stats_tool = ToolSpec(
    name="deploy_lens_cache_stats",
    description=(
        "Report lookup cache hits, misses and size, and per-service throttler "
        "counters. Takes no arguments."
    ),
    input_schema=CACHE_STATS_SCHEMA,
    handler=cache_stats,
)
