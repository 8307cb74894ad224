"""
Layer tools: open and close individual raster layers.

Opening a layer acquires its raster source and discovers the source's
tiling profile and data extents.
"""

import asyncio
import logging

from ...constants import ErrorMessages, SuccessMessages
from ...models.responses import ErrorResponse, LayerStateResponse, format_response

logger = logging.getLogger(__name__)


def _state_response(layer, message: str) -> LayerStateResponse:
    return LayerStateResponse(
        name=layer.name,
        kind=layer.kind.value,
        is_open=layer.is_open,
        status=str(layer.status),
        profile=str(layer.profile) if layer.profile is not None else None,
        message=message,
    )


def register_layer_tools(mcp, manager):
    """Register layer management tools with the MCP server."""

    @mcp.tool()
    async def tiles_open_layer(name: str, output_mode: str = "json") -> str:
        """Open a configured layer so it takes part in tile compositing.

        Args:
            name: Layer name (see tiles_list_layers)
            output_mode: "json" or "text"

        Returns:
            Layer state after opening, including the discovered profile
        """
        try:
            status = await asyncio.to_thread(manager.open_layer, name)
            if status.failed:
                raise RuntimeError(ErrorMessages.SOURCE_OPEN_FAILED.format(name, status))

            layer = manager.get_layer(name)
            response = _state_response(layer, SuccessMessages.LAYER_OPENED.format(name))
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tiles_open_layer failed: {e}")
            return format_response(ErrorResponse(error=str(e)), output_mode)

    @mcp.tool()
    async def tiles_close_layer(name: str, output_mode: str = "json") -> str:
        """Close a layer, releasing its raster source. Closed layers are skipped
        by compositing until reopened.

        Args:
            name: Layer name (see tiles_list_layers)
            output_mode: "json" or "text"

        Returns:
            Layer state after closing
        """
        try:
            await asyncio.to_thread(manager.close_layer, name)

            layer = manager.get_layer(name)
            response = _state_response(layer, SuccessMessages.LAYER_CLOSED.format(name))
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tiles_close_layer failed: {e}")
            return format_response(ErrorResponse(error=str(e)), output_mode)
