"""Entrypoint for the deploy-lens MCP server."""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

if __package__ in (None, ""):
    sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # pragma: no cover

from deploy_lens import __version__
from deploy_lens.config import load_settings
from deploy_lens.logging_utils import configure_logging
from deploy_lens.mcp_runtime import MCPServer
from deploy_lens.tools import register_tools


def build_server() -> MCPServer:
    """Create and configure the MCP server instance."""

    settings = load_settings()

    server = MCPServer(
        name=settings.server.name,
        version=__version__,
        instructions=settings.server.instructions,
    )

    # Re-configure logging after FastMCP init so our handlers persist
    configure_logging()

    logging.info("Initializing deploy-lens MCP server v%s", __version__)
    logging.info("Topology file: %s", settings.topology.path)
    register_tools(server)
    return server


_server: MCPServer | None = None
_server_lock = threading.Lock()


def get_server() -> MCPServer:
    """Lazily initialise and return the module-level server instance."""
    global _server
    if _server is not None:
        return _server
    with _server_lock:
        if _server is None:
            _server = build_server()
        return _server


def run_entrypoint() -> None:
    get_server().run()


if __name__ == "__main__":  # pragma: no cover
    run_entrypoint()
