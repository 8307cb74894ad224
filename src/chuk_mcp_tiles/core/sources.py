"""
GeoTIFF / COG raster source backed by rasterio.

Each calling thread gets its own dataset handle; GDAL handles are not safe
to share across threads. Tiles are warped onto the requested key's
corner-registered grid through a WarpedVRT.
"""

import logging
import threading
from typing import Any

import numpy as np
from numpy.typing import NDArray

from ..constants import NO_DATA_VALUE, ErrorMessages
from .layers import DataExtent
from .nodata import Geoid
from .raster import GeoHeightfield, Heightfield, Image
from .raster_io import extent_transform, retry_io
from .srs import SRS, GeoExtent
from .status import STATUS_OK, IOOptions, Result, Status, StatusCode
from .tiling import Profile, TileKey

logger = logging.getLogger(__name__)


@retry_io
def _open_dataset(path: str) -> Any:
    import rasterio

    return rasterio.open(path)


def discover_profile(srs: SRS, bounds: tuple[float, float, float, float]) -> Profile:
    """Pick a tiling profile for a dataset's CRS."""
    if srs.is_geodetic:
        return Profile.global_geodetic()
    mercator = Profile.spherical_mercator()
    if srs == mercator.srs:
        return mercator
    xmin, ymin, xmax, ymax = bounds
    return Profile(srs, xmin, ymin, xmax, ymax, 1, 1, name=f"{srs.definition} (local)")


class GeoTiffRasterSource:
    """RasterSource reading a GeoTIFF, COG or any rasterio-readable file."""

    def __init__(
        self,
        path: str,
        *,
        bands: list[int] | None = None,
        max_data_level: int | None = None,
        resampling: str = "bilinear",
    ) -> None:
        self.path = path
        self.bands = bands
        self.max_data_level = max_data_level
        self.resampling = resampling

        self.name: str | None = None
        self.profile: Profile | None = None
        self.data_extents: list[DataExtent] = []
        self.srs: SRS | None = None

        self._local = threading.local()
        self._handles: list[Any] = []
        self._handles_lock = threading.Lock()
        self._opened = False

    # ------------------------------------------------------------------
    # RasterSource protocol
    # ------------------------------------------------------------------

    def open(self, name: str, options: dict[str, Any]) -> Status:
        self.name = name
        if "max_data_level" in options:
            self.max_data_level = options["max_data_level"]

        try:
            dataset = self._dataset(require_open=False)
        except OSError as e:
            return Status(
                StatusCode.RESOURCE_UNAVAILABLE,
                ErrorMessages.SOURCE_OPEN_FAILED.format(self.path, e),
            )

        if dataset.crs is None:
            self.close()
            return Status(
                StatusCode.CONFIGURATION_ERROR,
                ErrorMessages.SOURCE_OPEN_FAILED.format(self.path, "dataset has no CRS"),
            )

        self.srs = SRS(dataset.crs.to_wkt())
        west, south, east, north = dataset.bounds
        bounds = (west, south, east, north)
        self.profile = discover_profile(self.srs, bounds)
        self.data_extents = [
            DataExtent(GeoExtent(self.srs, *bounds), 0, self.max_data_level)
        ]
        self._opened = True
        logger.debug(
            f"Opened raster source {self.path} ({dataset.width}x{dataset.height}, "
            f"{dataset.count} bands, profile: {self.profile})"
        )
        return STATUS_OK

    def close(self) -> None:
        with self._handles_lock:
            for handle in self._handles:
                handle.close()
            self._handles.clear()
        self._local = threading.local()
        self._opened = False

    def create_image(self, key: TileKey, tile_size: int, io: IOOptions) -> Result[Image]:
        read = self._read_tile(key, tile_size, io)
        if not isinstance(read, tuple):
            return read
        data, valid = read

        count = data.shape[0]
        if count >= 3:
            rgb = data[:3]
        else:
            rgb = np.repeat(data[:1], 3, axis=0)
        rgb = np.clip(rgb, 0, 255).astype(np.uint8)

        alpha = np.where(valid, 255, 0).astype(np.uint8)
        if count >= 4:
            alpha = np.minimum(alpha, np.clip(data[3], 0, 255).astype(np.uint8))

        rgba = np.concatenate([rgb, alpha[np.newaxis]], axis=0)
        return Result(Image(np.flipud(np.moveaxis(rgba, 0, -1)).copy()))

    def create_heightfield(
        self, key: TileKey, tile_size: int, io: IOOptions
    ) -> Result[Heightfield]:
        read = self._read_tile(key, tile_size, io, bands=[self.bands[0] if self.bands else 1])
        if not isinstance(read, tuple):
            return read
        data, valid = read

        heights = data[0].astype(np.float32)
        heights[~valid] = NO_DATA_VALUE
        return Result(Heightfield(np.flipud(heights)))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _dataset(self, require_open: bool = True) -> Any:
        """This thread's dataset handle, opened on first use."""
        if require_open and not self._opened:
            raise RuntimeError(ErrorMessages.SOURCE_NOT_OPEN.format(self.path))

        handle = getattr(self._local, "dataset", None)
        if handle is None or handle.closed:
            handle = _open_dataset(self.path)
            self._local.dataset = handle
            with self._handles_lock:
                self._handles.append(handle)
        return handle

    def _read_tile(
        self,
        key: TileKey,
        tile_size: int,
        io: IOOptions,
        bands: list[int] | None = None,
    ) -> tuple[NDArray[Any], NDArray[np.bool_]] | Result[Any]:
        """Warp the dataset onto the key's grid.

        Returns (band-first data, valid mask) in north-up order, or a
        Result when there is nothing to read.
        """
        from rasterio.crs import CRS
        from rasterio.enums import ColorInterp, Resampling
        from rasterio.vrt import WarpedVRT

        if io.canceled():
            return Result.empty()

        key_extent = key.extent
        if self.data_extents and not any(
            de.extent.intersects(key_extent) for de in self.data_extents
        ):
            return Result.error(StatusCode.RESOURCE_UNAVAILABLE, ErrorMessages.NO_TILE_DATA.format(key))

        dataset = self._dataset()

        indexes = bands or self.bands or list(range(1, dataset.count + 1))
        options: dict[str, Any] = {
            "crs": CRS.from_wkt(key.profile.srs.crs.to_wkt()),
            "transform": extent_transform(key_extent, tile_size, tile_size),
            "width": tile_size,
            "height": tile_size,
            "resampling": Resampling[self.resampling],
        }
        if dataset.nodata is None and ColorInterp.alpha not in dataset.colorinterp:
            options["add_alpha"] = True

        with WarpedVRT(dataset, **options) as vrt:
            data = vrt.read(indexes)
            valid = vrt.dataset_mask() > 0

        if not np.any(valid):
            return Result.error(StatusCode.RESOURCE_UNAVAILABLE, ErrorMessages.NO_TILE_DATA.format(key))

        return data, valid

    def __repr__(self) -> str:
        return f"GeoTiffRasterSource({self.path!r})"


def load_geoid(path: str) -> Geoid:
    """Read a geodetic raster of geoid heights into a Geoid."""
    dataset = _open_dataset(path)
    with dataset:
        data = dataset.read(1).astype(np.float32)
        srs = SRS(dataset.crs.to_wkt())
        res_x, res_y = dataset.res
        bounds = dataset.bounds

    # pixel centres form the corner-registered grid
    extent = GeoExtent(
        srs,
        bounds.left + res_x / 2,
        bounds.bottom + res_y / 2,
        bounds.right - res_x / 2,
        bounds.top - res_y / 2,
    )
    logger.info(f"Loaded geoid {path} ({data.shape[1]}x{data.shape[0]})")
    return Geoid(GeoHeightfield(Heightfield(np.flipud(data)), extent), name=path)
