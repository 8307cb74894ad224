"""
Discovery tools: layer listing, status, capabilities.

These tools perform no raster I/O and return information about the
configured layers and server configuration.
"""

import logging
import os
from dataclasses import asdict

from ...constants import (
    ALL_PROFILE_NAMES,
    ENCODINGS,
    INTERPOLATION_METHODS,
    MAX_HEIGHTFIELD_DIMENSION,
    OUTPUT_FORMATS,
    TOOL_NAMES,
    EnvVar,
    ServerConfig,
    StorageProvider,
    SuccessMessages,
)
from ...models.responses import (
    CapabilitiesResponse,
    ErrorResponse,
    LayersResponse,
    LayerSummary,
    StatusResponse,
    format_response,
)

logger = logging.getLogger(__name__)


def register_discovery_tools(mcp, manager):
    """Register discovery tools with the MCP server."""

    @mcp.tool()
    async def tiles_list_layers(output_mode: str = "json") -> str:
        """List all configured imagery and elevation layers with their open state,
        native profile, level bounds and priority.

        Higher priority layers win when layers overlap. Offset elevation layers
        add to the base terrain instead of replacing it.

        Args:
            output_mode: "json" for structured data, "text" for human-readable summary

        Returns:
            Configured layers in priority order (lowest first within each kind)
        """
        try:
            layers = [LayerSummary(**asdict(info)) for info in manager.list_layers()]
            open_count = sum(1 for layer in layers if layer.is_open)

            response = LayersResponse(
                profile=str(manager.profile),
                layers=layers,
                message=SuccessMessages.LAYERS_LIST.format(len(layers), open_count),
            )
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tiles_list_layers failed: {e}")
            return format_response(ErrorResponse(error=str(e)), output_mode)

    @mcp.tool()
    async def tiles_status(output_mode: str = "json") -> str:
        """Get server status including version, map profile, open layers, and storage configuration.

        Args:
            output_mode: "json" for structured data, "text" for human-readable summary

        Returns:
            Server status information
        """
        try:
            provider = os.environ.get(EnvVar.ARTIFACTS_PROVIDER, StorageProvider.MEMORY)

            store_available = False
            try:
                manager._get_store()
                store_available = True
            except Exception as e:
                logger.debug(f"Artifact store unavailable: {e}")

            layers = manager.list_layers()

            response = StatusResponse(
                server=ServerConfig.NAME,
                version=ServerConfig.VERSION,
                profile=str(manager.profile),
                layer_count=len(layers),
                open_layers=[info.name for info in layers if info.is_open],
                geoid=manager.geoid is not None,
                storage_provider=provider,
                artifact_store_available=store_available,
            )
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tiles_status failed: {e}")
            return format_response(ErrorResponse(error=str(e)), output_mode)

    @mcp.tool()
    async def tiles_capabilities(output_mode: str = "json") -> str:
        """Get full server capabilities including profiles, layers, interpolation
        methods, elevation encodings, and output formats.

        Args:
            output_mode: "json" for structured data, "text" for human-readable summary

        Returns:
            Complete server capabilities
        """
        try:
            layers = [LayerSummary(**asdict(info)) for info in manager.list_layers()]

            response = CapabilitiesResponse(
                server=ServerConfig.NAME,
                version=ServerConfig.VERSION,
                profiles=ALL_PROFILE_NAMES,
                layers=layers,
                interpolation_methods=INTERPOLATION_METHODS,
                encodings=ENCODINGS,
                output_formats=OUTPUT_FORMATS,
                max_tile_size=MAX_HEIGHTFIELD_DIMENSION,
                tool_count=len(TOOL_NAMES),
                llm_guidance=(
                    "Use tiles_list_layers to see configured layers and their state. "
                    "Use tiles_open_layer / tiles_close_layer to change which layers take part. "
                    "Use tiles_heightfield with a level/x/y key in the map profile to composite "
                    "all open elevation layers into one GeoTIFF tile. "
                    "Use tiles_image for imagery, optionally from a single layer. "
                    "has_data=false means no real data exists for that tile, not an error. "
                    f"Map profile is {manager.profile}; row 0 is the northern-most row."
                ),
                message=f"{ServerConfig.NAME} v{ServerConfig.VERSION} capabilities",
            )
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tiles_capabilities failed: {e}")
            return format_response(ErrorResponse(error=str(e)), output_mode)
