"""Tool registration helpers.

This module registers the deployment inspection tools:
- deploy_lens_list_builds
- deploy_lens_deployment_status
- deploy_lens_coordination_state
- deploy_lens_commit_comparison
- deploy_lens_cache_stats
"""

from __future__ import annotations

from deploy_lens.logging_utils import get_logger
from deploy_lens.mcp_runtime import MCPServer, ToolSpec
from deploy_lens.tools.deploy_tools import (
    cache_stats_tool,
    commit_comparison_tool,
    coordination_state_tool,
    deployment_status_tool,
    list_builds_tool,
)

__all__ = ["get_tool_registry", "get_tool_specs", "register_tools"]


def get_tool_specs() -> list[ToolSpec]:
    return [
        list_builds_tool,
        deployment_status_tool,
        coordination_state_tool,
        commit_comparison_tool,
        cache_stats_tool,
    ]


def get_tool_registry() -> dict[str, ToolSpec]:
    return {tool.name: tool for tool in get_tool_specs()}


def register_tools(server: MCPServer) -> None:
    logger = get_logger(__name__)
    specs = get_tool_specs()
    for tool in specs:
        server.add_tool(tool)
    logger.info("Registered %d tools: %s", len(specs), ", ".join(tool.name for tool in specs))
