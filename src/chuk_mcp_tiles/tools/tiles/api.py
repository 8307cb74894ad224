"""
Tile tools: composite elevation and imagery tiles for a map tile key.

These tools read raster sources and store encoded tiles in the
artifact store.
"""

import logging

from ...constants import (
    DEFAULT_ELEVATION_TILE_SIZE,
    DEFAULT_INTERPOLATION,
    INTERPOLATION_METHODS,
    ErrorMessages,
    SuccessMessages,
)
from ...models.responses import (
    ErrorResponse,
    HeightfieldResponse,
    ImageResponse,
    format_response,
)

logger = logging.getLogger(__name__)


def register_tile_tools(mcp, manager):
    """Register tile compositing tools with the MCP server."""

    @mcp.tool()
    async def tiles_heightfield(
        level: int,
        x: int,
        y: int,
        tile_size: int = DEFAULT_ELEVATION_TILE_SIZE,
        interpolation: str = DEFAULT_INTERPOLATION,
        output_format: str = "geotiff",
        output_mode: str = "json",
    ) -> str:
        """Composite all open elevation layers into one heightfield tile.

        The highest priority layer with data wins per texel; offset layers are
        added on top. Remaining holes are filled from the geoid (or 0).
        Returns a GeoTIFF (or terrain PNG) artifact with a hillshade preview.

        Args:
            level: Tile level (0 = root)
            x: Tile column (0 = west)
            y: Tile row (0 = north)
            tile_size: Heightfield edge in texels (2-1024, default 257)
            interpolation: Sampling method (nearest, bilinear)
            output_format: "geotiff" or "png"
            output_mode: "json" or "text"

        Returns:
            Artifact reference with elevation range, or has_data=false
        """
        try:
            if interpolation not in INTERPOLATION_METHODS:
                raise ValueError(
                    ErrorMessages.INVALID_INTERPOLATION.format(
                        interpolation, ", ".join(INTERPOLATION_METHODS)
                    )
                )

            result = await manager.fetch_heightfield(
                level=level,
                x=x,
                y=y,
                tile_size=tile_size,
                interpolation=interpolation,
                output_format=output_format,
            )

            if result.has_data:
                message = SuccessMessages.HEIGHTFIELD_COMPLETE.format(
                    result.key, tile_size, tile_size, True
                )
            else:
                message = ErrorMessages.NO_TILE_DATA.format(result.key)

            response = HeightfieldResponse(
                key=result.key,
                profile=str(manager.profile),
                has_data=result.has_data,
                artifact_ref=result.artifact_ref,
                preview_ref=result.preview_ref,
                crs=result.crs,
                bounds=result.bounds,
                shape=result.shape,
                elevation_range=result.elevation_range,
                resolution_range=result.resolution_range,
                interpolation=interpolation,
                output_format=output_format,
                message=message,
            )
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tiles_heightfield failed: {e}")
            return format_response(ErrorResponse(error=str(e)), output_mode)

    @mcp.tool()
    async def tiles_image(
        level: int,
        x: int,
        y: int,
        layer: str | None = None,
        output_format: str = "png",
        output_mode: str = "json",
    ) -> str:
        """Composite open imagery layers (or one named layer) into an RGBA tile.

        Layers whose tiling scheme differs from the map profile are reprojected
        and mosaicked on the fly.

        Args:
            level: Tile level (0 = root)
            x: Tile column (0 = west)
            y: Tile row (0 = north)
            layer: Optional single image layer name; all open layers if omitted
            output_format: "png" or "geotiff"
            output_mode: "json" or "text"

        Returns:
            Artifact reference with opaque coverage, or has_data=false
        """
        try:
            result = await manager.fetch_image(
                level=level,
                x=x,
                y=y,
                layer=layer,
                output_format=output_format,
            )

            if result.has_data:
                message = SuccessMessages.IMAGE_COMPLETE.format(
                    result.key, result.shape[1], result.shape[0]
                )
            else:
                message = ErrorMessages.NO_TILE_DATA.format(result.key)

            response = ImageResponse(
                key=result.key,
                profile=str(manager.profile),
                has_data=result.has_data,
                artifact_ref=result.artifact_ref,
                crs=result.crs,
                bounds=result.bounds,
                shape=result.shape,
                opaque_fraction=result.opaque_fraction,
                layers=result.layers,
                output_format=output_format,
                message=message,
            )
            return format_response(response, output_mode)

        except Exception as e:
            logger.error(f"tiles_image failed: {e}")
            return format_response(ErrorResponse(error=str(e)), output_mode)
