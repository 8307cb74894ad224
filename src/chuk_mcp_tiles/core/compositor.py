"""
Tile Compositor: central orchestrator for imagery and elevation tiles.

Holds the map profile, the image layers and the elevation stack, answers
``create_image`` / ``create_heightfield`` for map tile keys, and stores
encoded results in the artifact store. Async methods wrap the synchronous
compositing core via asyncio.to_thread().
"""

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from numpy.typing import NDArray

from ..constants import (
    DEFAULT_ELEVATION_TILE_SIZE,
    DEFAULT_INTERPOLATION,
    DEFAULT_PROFILE,
    INTERPOLATION_METHODS,
    MAX_HEIGHTFIELD_DIMENSION,
    NO_DATA_VALUE,
    OUTPUT_FORMATS,
    ErrorMessages,
    RasterKind,
)
from .assembler import grid_points
from .elevation_stack import FLT_MAX, ElevationLayerVector
from .layers import ElevationLayer, ImageLayer, RasterLayer
from .nodata import GeoidProvider
from .raster import GeoHeightfield, GeoImage, Heightfield, Image
from .status import IOOptions, Result, Status
from .tile_gate import TileGate
from .tiling import Profile, TileKey

logger = logging.getLogger(__name__)


@dataclass
class LayerInfo:
    """Summary of one configured layer."""

    name: str
    kind: str
    is_open: bool
    status: str
    profile: str | None
    offset: bool
    min_level: int
    max_level: int | None
    max_data_level: int | None
    tile_size: int
    priority: int


@dataclass
class HeightfieldTile:
    """An assembled heightfield plus its provenance."""

    heightfield: GeoHeightfield
    real_data: bool
    resolutions: NDArray[np.float32] | None = None

    @property
    def valid(self) -> bool:
        return self.heightfield.valid


@dataclass
class HeightfieldResult:
    """Result of a stored heightfield tile request."""

    key: str
    has_data: bool
    artifact_ref: str | None = None
    preview_ref: str | None = None
    crs: str | None = None
    bounds: list[float] = field(default_factory=list)
    shape: list[int] = field(default_factory=list)
    elevation_range: list[float] = field(default_factory=list)
    resolution_range: list[float] = field(default_factory=list)


@dataclass
class ImageResult:
    """Result of a stored imagery tile request."""

    key: str
    has_data: bool
    artifact_ref: str | None = None
    crs: str | None = None
    bounds: list[float] = field(default_factory=list)
    shape: list[int] = field(default_factory=list)
    opaque_fraction: float = 0.0
    layers: list[str] = field(default_factory=list)


@dataclass
class _Outcome:
    result: Result[HeightfieldTile]
    canceled: bool


class TileCompositor:
    """Central manager for layered tile compositing."""

    def __init__(
        self,
        profile: Profile | str = DEFAULT_PROFILE,
        geoid: GeoidProvider | None = None,
    ) -> None:
        self.profile = Profile.from_name(profile) if isinstance(profile, str) else profile
        self.geoid = geoid
        self.image_layers: list[ImageLayer] = []
        self.elevation_layers = ElevationLayerVector()
        self._layers_lock = threading.Lock()
        self._gate = TileGate()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_config(cls, config: Any) -> "TileCompositor":
        """Build a compositor (and its GeoTIFF-backed layers) from a CompositorConfig."""
        from .sources import GeoTiffRasterSource, load_geoid

        geoid = None
        if config.geoid_path:
            geoid = load_geoid(config.geoid_path)

        compositor = cls(config.profile, geoid=geoid)
        for lc in config.layers:
            source = GeoTiffRasterSource(
                lc.path, bands=lc.bands, max_data_level=lc.max_data_level
            )
            common: dict[str, Any] = {
                "profile": Profile.from_name(lc.profile) if lc.profile else None,
                "min_level": lc.min_level,
                "max_level": lc.max_level,
                "max_data_level": lc.max_data_level,
                "tile_size": lc.tile_size,
                "interpolation": lc.interpolation,
                "enabled": lc.enabled,
            }
            layer: RasterLayer
            if lc.kind == RasterKind.IMAGE:
                layer = ImageLayer(lc.name, source, **common)
            else:
                layer = ElevationLayer(
                    lc.name,
                    source,
                    offset=lc.offset,
                    no_data_value=lc.no_data_value,
                    min_valid_value=lc.min_valid_value,
                    max_valid_value=lc.max_valid_value,
                    encoding=lc.encoding,
                    **common,
                )
            compositor.add_layer(layer)
            if lc.open_on_start:
                layer.open()
        return compositor

    # ------------------------------------------------------------------
    # Layer management
    # ------------------------------------------------------------------

    def _all_layers(self) -> list[RasterLayer]:
        with self._layers_lock:
            return [*self.image_layers, *self.elevation_layers]

    def add_layer(self, layer: RasterLayer) -> None:
        """Append a layer at the top of its kind's priority order."""
        with self._layers_lock:
            if any(existing.name == layer.name for existing in [*self.image_layers, *self.elevation_layers]):
                raise ValueError(ErrorMessages.DUPLICATE_LAYER.format(layer.name))
            if isinstance(layer, ImageLayer):
                self.image_layers.append(layer)
            elif isinstance(layer, ElevationLayer):
                self.elevation_layers.append(layer)
            else:
                raise ValueError(f"Unsupported layer type: {type(layer).__name__}")
        logger.info(f"Added {layer.kind.value} layer '{layer.name}'")

    def remove_layer(self, name: str) -> RasterLayer:
        layer = self.get_layer(name)
        layer.close()
        with self._layers_lock:
            if isinstance(layer, ImageLayer):
                self.image_layers.remove(layer)
            elif isinstance(layer, ElevationLayer):
                self.elevation_layers.remove(layer)
        return layer

    def get_layer(self, name: str) -> RasterLayer:
        layers = self._all_layers()
        for layer in layers:
            if layer.name == name:
                return layer
        available = ", ".join(layer.name for layer in layers) or "none"
        raise ValueError(ErrorMessages.UNKNOWN_LAYER.format(name, available))

    def list_layers(self) -> list[LayerInfo]:
        infos = []
        with self._layers_lock:
            ordered: list[tuple[int, RasterLayer]] = [
                *enumerate(self.image_layers),
                *enumerate(self.elevation_layers),
            ]
        for priority, layer in ordered:
            infos.append(
                LayerInfo(
                    name=layer.name,
                    kind=layer.kind.value,
                    is_open=layer.is_open,
                    status=str(layer.status),
                    profile=str(layer.profile) if layer.profile is not None else None,
                    offset=bool(getattr(layer, "offset", False)),
                    min_level=layer.min_level,
                    max_level=layer.max_level,
                    max_data_level=layer.max_data_level,
                    tile_size=layer.tile_size,
                    priority=priority,
                )
            )
        return infos

    def open_layer(self, name: str) -> Status:
        return self.get_layer(name).open()

    def close_layer(self, name: str) -> None:
        self.get_layer(name).close()

    def open_layers(self) -> dict[str, Status]:
        return {layer.name: layer.open() for layer in self._all_layers()}

    def close_layers(self) -> None:
        for layer in self._all_layers():
            layer.close()

    def make_key(self, level: int, x: int, y: int) -> TileKey:
        return TileKey(level, x, y, self.profile)

    # ------------------------------------------------------------------
    # Imagery
    # ------------------------------------------------------------------

    def create_layer_image(
        self, name: str, key: TileKey, io: IOOptions | None = None
    ) -> Result[GeoImage]:
        layer = self.get_layer(name)
        if not isinstance(layer, ImageLayer):
            raise ValueError(ErrorMessages.NOT_AN_IMAGE_LAYER.format(name))
        return layer.create_image(key, io)

    def create_image(self, key: TileKey, io: IOOptions | None = None) -> Result[GeoImage]:
        """Composite all open image layers; the highest priority opaque texel wins."""
        io = io or IOOptions()
        with self._layers_lock:
            layers = [layer for layer in reversed(self.image_layers) if layer.is_open]

        images: list[GeoImage] = []
        for layer in layers:
            if io.canceled():
                return Result.empty()
            result = layer.create_image(key, io)
            if result.value is not None:
                images.append(result.value)
            elif result.failed:
                logger.debug(f"Image layer '{layer.name}' failed for {key}: {result.status}")

        if io.canceled() or not images:
            return Result.empty()
        if len(images) == 1:
            return Result(images[0])

        width = max(g.image.width for g in images if g.image is not None)
        height = max(g.image.height for g in images if g.image is not None)
        points = grid_points(key.extent, width, height)

        pixels = np.zeros((width * height, 4), dtype=np.float32)
        unresolved = np.ones(width * height, dtype=bool)
        for geo_image in images:
            index = np.flatnonzero(unresolved)
            if index.size == 0:
                break
            sampled, inside = geo_image.read(points[index, 0], points[index, 1])
            opaque = inside & (sampled[:, 3] > 0.0)
            pixels[index[opaque]] = sampled[opaque]
            unresolved[index[opaque]] = False

        output = Image.create(width, height)
        output.write_normalized(pixels.reshape(height, width, 4))
        return Result(GeoImage(output, key.extent))

    # ------------------------------------------------------------------
    # Elevation
    # ------------------------------------------------------------------

    def create_heightfield(
        self,
        key: TileKey,
        io: IOOptions | None = None,
        tile_size: int = DEFAULT_ELEVATION_TILE_SIZE,
        hae_profile: Profile | None = None,
        interpolation: str = DEFAULT_INTERPOLATION,
        with_resolutions: bool = False,
    ) -> Result[HeightfieldTile]:
        """Composite the elevation stack for ``key``.

        An empty result means no real data, which is distinct from a failed status.
        Concurrent identical requests share one computation.
        """
        self._validate_tile_size(tile_size)
        self._validate_interpolation(interpolation)
        io = io or IOOptions()

        gate_key = (key, tile_size, hae_profile, interpolation, with_resolutions)
        outcome = self._gate.run(
            gate_key,
            lambda: self._populate(key, io, tile_size, hae_profile, interpolation, with_resolutions),
        )
        if outcome.canceled and not io.canceled():
            # the shared computation was canceled by another caller
            outcome = self._populate(key, io, tile_size, hae_profile, interpolation, with_resolutions)

        if io.canceled():
            return Result.empty()
        return outcome.result

    def _populate(
        self,
        key: TileKey,
        io: IOOptions,
        tile_size: int,
        hae_profile: Profile | None,
        interpolation: str,
        with_resolutions: bool,
    ) -> _Outcome:
        hf = Heightfield.create(tile_size, tile_size)
        resolutions = (
            np.full((tile_size, tile_size), FLT_MAX, dtype=np.float32) if with_resolutions else None
        )

        real_data = self.elevation_layers.populate_heightfield(
            hf,
            key,
            hae_profile=hae_profile,
            interpolation=interpolation,
            io=io,
            resolutions=resolutions,
            geoid=self.geoid,
        )

        if io.canceled():
            return _Outcome(Result.empty(), canceled=True)
        if not real_data:
            return _Outcome(Result.empty(), canceled=False)

        tile = HeightfieldTile(GeoHeightfield(hf, key.extent), True, resolutions)
        return _Outcome(Result(tile), canceled=False)

    # ------------------------------------------------------------------
    # Async tile requests (encode + store)
    # ------------------------------------------------------------------

    async def fetch_heightfield(
        self,
        level: int,
        x: int,
        y: int,
        tile_size: int = DEFAULT_ELEVATION_TILE_SIZE,
        interpolation: str = DEFAULT_INTERPOLATION,
        output_format: str = "geotiff",
    ) -> HeightfieldResult:
        """Assemble a heightfield tile and store it as an artifact."""
        from . import raster_io

        self._validate_output_format(output_format)
        key = self.make_key(level, x, y)

        result = await asyncio.to_thread(
            self.create_heightfield, key, None, tile_size, None, interpolation, True
        )
        if result.failed:
            raise RuntimeError(str(result.status))
        tile = result.value
        heightfield = tile.heightfield.heightfield if tile is not None else None
        if tile is None or heightfield is None:
            return HeightfieldResult(key=str(key), has_data=False)

        geo_hf = tile.heightfield
        heights = heightfield.data
        defined = heights[heights != NO_DATA_VALUE]
        elevation_range = (
            [float(defined.min()), float(defined.max())] if defined.size else [0.0, 0.0]
        )
        resolution_range: list[float] = []
        if tile.resolutions is not None:
            known = tile.resolutions[tile.resolutions < FLT_MAX]
            if known.size:
                resolution_range = [float(known.min()), float(known.max())]

        if output_format == "png":
            data_bytes = await asyncio.to_thread(raster_io.heightfield_to_terrain_png, geo_hf)
            suffix = ".png"
        else:
            data_bytes = await asyncio.to_thread(raster_io.heightfield_to_geotiff, geo_hf)
            suffix = ".tif"

        preview_ref = None
        try:
            preview_bytes = await asyncio.to_thread(raster_io.heightfield_to_hillshade_png, geo_hf)
            preview_ref = await self._store_raster(
                preview_bytes,
                {"type": "heightfield_preview", "key": str(key), "format": "png"},
                suffix="_hillshade.png",
            )
        except Exception as e:
            logger.warning(f"Failed to generate hillshade preview: {e}")

        artifact_ref = await self._store_raster(
            data_bytes,
            {
                "schema_version": "1.0",
                "type": "heightfield_tile",
                "key": str(key),
                "profile": str(self.profile),
                "crs": geo_hf.srs.definition,
                "bounds": list(geo_hf.extent.bounds),
                "shape": [tile_size, tile_size],
                "elevation_range": elevation_range,
                "interpolation": interpolation,
                "nodata_value": NO_DATA_VALUE,
            },
            suffix=suffix,
        )

        return HeightfieldResult(
            key=str(key),
            has_data=True,
            artifact_ref=artifact_ref,
            preview_ref=preview_ref,
            crs=geo_hf.srs.definition,
            bounds=list(geo_hf.extent.bounds),
            shape=[tile_size, tile_size],
            elevation_range=elevation_range,
            resolution_range=resolution_range,
        )

    async def fetch_image(
        self,
        level: int,
        x: int,
        y: int,
        layer: str | None = None,
        output_format: str = "png",
    ) -> ImageResult:
        """Assemble an imagery tile (one layer or the whole stack) and store it."""
        from . import raster_io

        self._validate_output_format(output_format)
        key = self.make_key(level, x, y)

        if layer is not None:
            result = await asyncio.to_thread(self.create_layer_image, layer, key)
            layer_names = [layer]
        else:
            result = await asyncio.to_thread(self.create_image, key)
            layer_names = [img.name for img in self.image_layers if img.is_open]

        if result.failed:
            raise RuntimeError(str(result.status))
        geo_image = result.value
        if geo_image is None or geo_image.image is None:
            return ImageResult(key=str(key), has_data=False, layers=layer_names)

        image = geo_image.image
        opaque = float(np.count_nonzero(image.data[:, :, 3])) / (image.width * image.height)

        if output_format == "png":
            data_bytes = await asyncio.to_thread(raster_io.image_to_png, geo_image)
            suffix = ".png"
        else:
            data_bytes = await asyncio.to_thread(raster_io.image_to_geotiff, geo_image)
            suffix = ".tif"

        artifact_ref = await self._store_raster(
            data_bytes,
            {
                "schema_version": "1.0",
                "type": "image_tile",
                "key": str(key),
                "profile": str(self.profile),
                "crs": geo_image.srs.definition,
                "bounds": list(geo_image.extent.bounds),
                "shape": [image.height, image.width],
                "layers": layer_names,
            },
            suffix=suffix,
        )

        return ImageResult(
            key=str(key),
            has_data=True,
            artifact_ref=artifact_ref,
            crs=geo_image.srs.definition,
            bounds=list(geo_image.extent.bounds),
            shape=[image.height, image.width],
            opaque_fraction=round(opaque, 4),
            layers=layer_names,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_tile_size(tile_size: int) -> None:
        if not 2 <= tile_size <= MAX_HEIGHTFIELD_DIMENSION:
            raise ValueError(ErrorMessages.INVALID_TILE_SIZE.format(MAX_HEIGHTFIELD_DIMENSION, tile_size))

    @staticmethod
    def _validate_interpolation(interpolation: str) -> None:
        if interpolation not in INTERPOLATION_METHODS:
            raise ValueError(
                ErrorMessages.INVALID_INTERPOLATION.format(interpolation, ", ".join(INTERPOLATION_METHODS))
            )

    @staticmethod
    def _validate_output_format(output_format: str) -> None:
        if output_format not in OUTPUT_FORMATS:
            raise ValueError(
                ErrorMessages.INVALID_OUTPUT_FORMAT.format(output_format, ", ".join(OUTPUT_FORMATS))
            )

    # ------------------------------------------------------------------
    # Artifact storage
    # ------------------------------------------------------------------

    def _get_store(self) -> Any:
        """Get the artifact store instance."""
        from chuk_mcp_server import get_artifact_store

        store = get_artifact_store()
        if store is None:
            raise RuntimeError(ErrorMessages.NO_ARTIFACT_STORE)
        return store

    async def _store_raster(
        self,
        data: bytes,
        metadata: dict,
        suffix: str = ".tif",
    ) -> str:
        """Store raster data in the artifact store."""
        try:
            store = self._get_store()
            ref = f"tiles/{uuid.uuid4().hex[:12]}{suffix}"
            mime = "image/tiff" if suffix.endswith(".tif") else "image/png"

            await store.store(
                ref,
                data,
                mime_type=mime,
                metadata=metadata,
                summary=f"Tile data ({metadata.get('type', 'unknown')})",
            )
            return ref
        except Exception as e:
            logger.error(f"Failed to store raster: {e}")
            raise
