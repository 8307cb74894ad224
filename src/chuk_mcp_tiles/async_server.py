#!/usr/bin/env python3
"""
Async Tiles MCP Server using chuk-mcp-server

On-demand imagery and elevation tile compositing. Layers are read from
GeoTIFF sources described by a JSON config file (CHUK_TILES_CONFIG),
reprojected into the map tiling profile, and composited tiles are stored
in chuk-artifacts for downstream use.

Storage is managed through chuk-mcp-server's built-in artifact store context.
"""

import logging
import os

from chuk_mcp_server import ChukMCPServer

from .constants import EnvVar
from .core.compositor import TileCompositor
from .models.config import load_config
from .tools.discovery import register_discovery_tools
from .tools.layers import register_layer_tools
from .tools.tiles import register_tile_tools

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_manager() -> TileCompositor:
    """Create the compositor from CHUK_TILES_CONFIG, or an empty one."""
    config_path = os.environ.get(EnvVar.TILES_CONFIG)
    if not config_path:
        logger.info(f"{EnvVar.TILES_CONFIG} not set; starting with no layers")
        return TileCompositor()

    config = load_config(config_path)
    compositor = TileCompositor.from_config(config)
    logger.info(f"Loaded {len(config.layers)} layers from {config_path}")
    return compositor


# Create the MCP server instance
mcp = ChukMCPServer("chuk-mcp-tiles")

# Create compositor instance
manager = build_manager()

# Register all tool modules
register_discovery_tools(mcp, manager)
register_layer_tools(mcp, manager)
register_tile_tools(mcp, manager)

# Run the server
if __name__ == "__main__":
    logger.info("Starting Tiles MCP Server...")
    logger.info("Storage: Using chuk-mcp-server artifact store context")
    mcp.run(stdio=True)
