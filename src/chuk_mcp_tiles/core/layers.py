"""
Raster layers: a named raster source plus its open state, level bounds and
dependency cache.

``ImageLayer`` and ``ElevationLayer`` resolve a requested tile key either
directly against their source (matching profile) or through the
reprojecting mosaic in :mod:`.assembler`.
"""

import contextlib
import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from ..constants import (
    DEFAULT_ELEVATION_TILE_SIZE,
    DEFAULT_IMAGE_TILE_SIZE,
    DEFAULT_INTERPOLATION,
    ENCODINGS,
    INTERPOLATION_METHODS,
    Encoding,
    ErrorMessages,
    RasterKind,
)
from .assembler import assemble
from .dependency_cache import DependencyCache
from .raster import (
    GeoHeightfield,
    GeoImage,
    Heightfield,
    Image,
    Raster,
    decode_mapbox_rgb,
    normalize_no_data,
    validate_heightfield,
)
from .srs import GeoExtent
from .status import IOOptions, Result, Status, StatusCode
from .tiling import Profile, TileKey

logger = logging.getLogger(__name__)


class StateLock:
    """Shared-read / exclusive-write lock guarding a layer's open state."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextlib.contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextlib.contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True)
class DataExtent:
    """Region (and level range) where a source actually has data."""

    extent: GeoExtent
    min_level: int = 0
    max_level: int | None = None


@runtime_checkable
class RasterSource(Protocol):
    """Driver that produces rasters for tile keys in its native profile.

    Implementations must not share mutable native state across calling
    threads. ``profile`` and ``data_extents`` are discovered on ``open``.
    """

    profile: Profile | None
    data_extents: list[DataExtent]

    def open(self, name: str, options: dict[str, Any]) -> Status: ...

    def create_image(self, key: TileKey, tile_size: int, io: IOOptions) -> Result[Image]: ...

    def create_heightfield(
        self, key: TileKey, tile_size: int, io: IOOptions
    ) -> Result[Heightfield]: ...

    def close(self) -> None: ...


class RasterLayer:
    """A named, independently opened raster source with level bounds."""

    kind: RasterKind
    default_tile_size = DEFAULT_IMAGE_TILE_SIZE

    def __init__(
        self,
        name: str,
        source: RasterSource,
        *,
        profile: Profile | None = None,
        min_level: int = 0,
        max_level: int | None = None,
        max_data_level: int | None = None,
        tile_size: int | None = None,
        interpolation: str = DEFAULT_INTERPOLATION,
        enabled: bool = True,
        options: dict[str, Any] | None = None,
    ) -> None:
        if interpolation not in INTERPOLATION_METHODS:
            raise ValueError(
                ErrorMessages.INVALID_INTERPOLATION.format(
                    interpolation, ", ".join(INTERPOLATION_METHODS)
                )
            )
        self.name = name
        self.source = source
        self.min_level = min_level
        self.max_level = max_level
        self.max_data_level = max_data_level
        self.tile_size = tile_size or self.default_tile_size
        self.interpolation = interpolation
        self.enabled = enabled
        self.options = dict(options or {})

        self._configured_profile = profile
        self.profile: Profile | None = profile
        self.data_extents: list[DataExtent] = []
        self.dependency_cache: DependencyCache[TileKey, Raster] = DependencyCache()
        self.state_lock = StateLock()
        self._status = Status(StatusCode.RESOURCE_UNAVAILABLE, ErrorMessages.LAYER_CLOSED)

    # ------------------------------------------------------------------
    # Open / close
    # ------------------------------------------------------------------

    @property
    def status(self) -> Status:
        return self._status

    @property
    def is_open(self) -> bool:
        return self._status.ok

    def open(self) -> Status:
        """Open the underlying source and discover its profile and data extents."""
        with self.state_lock.write():
            if self._status.ok:
                return self._status

            if not self.enabled:
                self._status = Status(StatusCode.CONFIGURATION_ERROR, ErrorMessages.LAYER_DISABLED)
                return self._status

            try:
                status = self.source.open(self.name, self.options)
            except Exception as e:
                status = Status(
                    StatusCode.RESOURCE_UNAVAILABLE,
                    ErrorMessages.SOURCE_OPEN_FAILED.format(self.name, e),
                )

            if status.ok:
                if self.profile is None:
                    self.profile = self.source.profile
                self.data_extents = list(self.source.data_extents or [])
                logger.info(f"Opened layer '{self.name}' (profile: {self.profile})")
            else:
                logger.warning(f"Layer '{self.name}' failed to open: {status}")

            self._status = status
            return status

    def close(self) -> None:
        with self.state_lock.write():
            if not self._status.ok:
                return
            self.source.close()
            self.profile = self._configured_profile
            self.data_extents = []
            self.dependency_cache = DependencyCache()
            self._status = Status(StatusCode.RESOURCE_UNAVAILABLE, ErrorMessages.LAYER_CLOSED)
            logger.info(f"Closed layer '{self.name}'")

    # ------------------------------------------------------------------
    # Level / extent queries
    # ------------------------------------------------------------------

    def _local_level(self, key: TileKey) -> int:
        if self.profile is None or key.profile == self.profile:
            return key.level
        return self.profile.equivalent_lod(key.profile, key.level)

    def is_key_in_legal_range(self, key: TileKey | None) -> bool:
        """True when the key's level lies within the configured min/max levels."""
        if key is None:
            return False
        level = self._local_level(key)
        if level < self.min_level:
            return False
        if self.max_level is not None and level > self.max_level:
            return False
        return True

    def _data_ceiling(self, extent: DataExtent) -> int | None:
        if extent.max_level is None:
            return self.max_data_level
        if self.max_data_level is None:
            return extent.max_level
        return min(extent.max_level, self.max_data_level)

    def may_have_data(self, key: TileKey) -> bool:
        """Cheap test of whether the source could serve anything for ``key``."""
        if not self.data_extents:
            return True
        level = self._local_level(key)
        key_extent = key.extent
        return any(
            level >= de.min_level and de.extent.intersects(key_extent) for de in self.data_extents
        )

    def best_available_tile_key(self, key: TileKey) -> TileKey | None:
        """The finest key at or above ``key`` that the layer can actually serve.

        None when the key is outside the legal range or every data extent.
        When ``key`` is deeper than the data ceiling, its ancestor at the
        ceiling is returned.
        """
        return self.resolve_best_key(key)[0]

    def resolve_best_key(self, key: TileKey) -> tuple[TileKey | None, bool]:
        """best_available_tile_key plus a flag set when the data ceiling applied.

        The ancestor level is clamped to 0, so across profiles the returned key
        can equal ``key`` and still be fallback data.
        """
        if not self.is_key_in_legal_range(key):
            return None, False

        level = self._local_level(key)

        if not self.data_extents:
            if self.max_data_level is not None and level > self.max_data_level:
                return self._ceiling_key(key, level, self.max_data_level), True
            return key, False

        key_extent = key.extent
        intersects = False
        highest: int | None = -1
        for de in self.data_extents:
            if level < de.min_level or not de.extent.intersects(key_extent):
                continue
            intersects = True
            ceiling = self._data_ceiling(de)
            if ceiling is None:
                highest = None
            elif highest is not None:
                highest = max(highest, ceiling)

        if not intersects:
            return None, False
        if highest is not None and level > highest:
            return self._ceiling_key(key, level, highest), True
        return key, False

    @staticmethod
    def _ceiling_key(key: TileKey, local_level: int, ceiling: int) -> TileKey | None:
        # local and key levels differ by a constant across profiles
        return key.create_ancestor_key(max(ceiling + key.level - local_level, 0))

    # ------------------------------------------------------------------
    # Source access
    # ------------------------------------------------------------------

    def fetch_from_source(self, key: TileKey, io: IOOptions) -> Result[Any]:
        """Call the source for ``key`` under the shared lock.

        Exceptions raised by the source become failed results.
        """
        with self.state_lock.read():
            try:
                result = self._create_implementation(key, io)
            except Exception as e:
                result = Result.error(
                    StatusCode.GENERAL_ERROR, ErrorMessages.SOURCE_FAILED.format(key, e)
                )
        if result.failed:
            logger.debug(f"Failed to create {self.kind.value} for key {key} in '{self.name}': {result.status}")
        return result

    def _create_implementation(self, key: TileKey, io: IOOptions) -> Result[Any]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, {self.status})"


class ImageLayer(RasterLayer):
    """Layer producing RGBA imagery tiles."""

    kind = RasterKind.IMAGE

    def _create_implementation(self, key: TileKey, io: IOOptions) -> Result[Image]:
        return self.source.create_image(key, self.tile_size, io)

    def create_image(self, key: TileKey, io: IOOptions | None = None) -> Result[GeoImage]:
        io = io or IOOptions()
        if not self.is_open:
            return Result.empty()
        if not self.is_key_in_legal_range(key):
            return Result.empty()

        if self.profile is None or key.profile == self.profile:
            result = self.fetch_from_source(key, io)
            if io.canceled():
                return Result.empty()
            if result.failed:
                return Result.from_status(result.status)
            if result.value is None:
                return Result.empty()
            return Result(GeoImage(result.value, key.extent))

        image = assemble(self, key, io)
        if not isinstance(image, Image):
            return Result.empty()
        return Result(GeoImage(image, key.extent))


class ElevationLayer(RasterLayer):
    """Layer producing heightfield tiles, optionally as an additive offset."""

    kind = RasterKind.ELEVATION
    default_tile_size = DEFAULT_ELEVATION_TILE_SIZE

    def __init__(
        self,
        name: str,
        source: RasterSource,
        *,
        offset: bool = False,
        no_data_value: float | None = None,
        min_valid_value: float | None = None,
        max_valid_value: float | None = None,
        encoding: str = Encoding.SINGLE_CHANNEL,
        **kwargs: Any,
    ) -> None:
        if encoding not in ENCODINGS:
            raise ValueError(ErrorMessages.INVALID_ENCODING.format(encoding, ", ".join(ENCODINGS)))
        super().__init__(name, source, **kwargs)
        self.offset = offset
        self.no_data_value = no_data_value
        self.min_valid_value = min_valid_value
        self.max_valid_value = max_valid_value
        self.encoding = encoding

    def _normalize(self, heightfield: Heightfield | None) -> None:
        normalize_no_data(
            heightfield, self.no_data_value, self.min_valid_value, self.max_valid_value
        )

    def _create_implementation(self, key: TileKey, io: IOOptions) -> Result[Heightfield]:
        if self.encoding == Encoding.MAPBOX_RGB:
            image_result = self.source.create_image(key, self.tile_size, io)
            if image_result.failed or image_result.value is None:
                return Result.from_status(image_result.status)
            result: Result[Heightfield] = Result(decode_mapbox_rgb(image_result.value))
        else:
            result = self.source.create_heightfield(key, self.tile_size, io)
        if result.ok:
            self._normalize(result.value)
        return result

    def create_heightfield(
        self, key: TileKey, io: IOOptions | None = None
    ) -> Result[GeoHeightfield]:
        io = io or IOOptions()
        if not self.is_open or self.profile is None:
            return Result.error(StatusCode.RESOURCE_UNAVAILABLE, ErrorMessages.LAYER_NOT_OPEN)
        if not self.is_key_in_legal_range(key):
            return Result.empty()

        heightfield: Heightfield | None
        if key.profile == self.profile:
            result = self.fetch_from_source(key, io)
            if result.failed:
                return Result.from_status(result.status)
            heightfield = result.value
        else:
            mosaic = assemble(self, key, io)
            heightfield = mosaic if isinstance(mosaic, Heightfield) else None

        if io.canceled():
            return Result.empty()

        if heightfield is not None and not validate_heightfield(heightfield):
            return Result.error(StatusCode.GENERAL_ERROR, ErrorMessages.ILLEGAL_HEIGHTFIELD)

        if heightfield is None:
            return Result.empty()

        self._normalize(heightfield)
        return Result(GeoHeightfield(heightfield, key.extent))
