"""
Shared helper for running chuk-mcp-tiles MCP tools directly from Python.

Provides a ToolRunner class that registers all MCP tools against a
TileCompositor and sets up an in-memory artifact store, without requiring
a full MCP transport layer. Demo scripts use this to call tools as plain
async functions.

Usage:
    from tool_runner import ToolRunner

    async def main():
        runner = ToolRunner(compositor)
        result = await runner.run("tiles_list_layers")
        print(result)
"""

from __future__ import annotations

import json
import os
from typing import Any

from chuk_mcp_tiles.core.compositor import TileCompositor
from chuk_mcp_tiles.tools.discovery import register_discovery_tools
from chuk_mcp_tiles.tools.layers import register_layer_tools
from chuk_mcp_tiles.tools.tiles import register_tile_tools


class _MiniMCP:
    """Minimal MCP server that captures tools registered via @mcp.tool."""

    def __init__(self) -> None:
        self._tools: dict[str, Any] = {}

    def tool(self) -> Any:
        def decorator(fn: Any) -> Any:
            self._tools[fn.__name__] = fn
            return fn

        return decorator

    def get_tool(self, name: str) -> Any:
        return self._tools[name]


def _init_artifact_store() -> None:
    """Initialize an in-memory artifact store for demo use."""
    os.environ.setdefault("CHUK_ARTIFACTS_PROVIDER", "memory")
    try:
        from chuk_artifacts import ArtifactStore
        from chuk_mcp_server import set_global_artifact_store

        store = ArtifactStore(storage_provider="memory", session_provider="memory")
        set_global_artifact_store(store)
    except ImportError as e:
        print(f"Warning: could not init artifact store: {e}")
        print("  Tile requests will fail. Install chuk-artifacts and chuk-mcp-server.")


class ToolRunner:
    """
    Run chuk-mcp-tiles MCP tools directly from Python.

    Returns parsed JSON by default; use run_text() for the human-readable
    rendering. Stored tiles can be read back through manager._get_store().
    """

    def __init__(self, manager: TileCompositor | None = None) -> None:
        _init_artifact_store()
        self._mcp = _MiniMCP()
        self.manager = manager or TileCompositor()
        register_discovery_tools(self._mcp, self.manager)
        register_layer_tools(self._mcp, self.manager)
        register_tile_tools(self._mcp, self.manager)

    @property
    def tool_names(self) -> list[str]:
        return list(self._mcp._tools.keys())

    async def run(self, tool_name: str, **kwargs: Any) -> dict[str, Any]:
        """Call a tool by name and return parsed JSON."""
        raw = await self._mcp.get_tool(tool_name)(**kwargs)
        return json.loads(raw)

    async def run_text(self, tool_name: str, **kwargs: Any) -> str:
        """Call a tool by name with output_mode='text'."""
        return await self._mcp.get_tool(tool_name)(output_mode="text", **kwargs)
