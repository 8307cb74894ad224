"""
Raster output conversion for assembled tiles.

All functions are synchronous; callers wrap them in asyncio.to_thread().
Buffers are stored south-up in memory and flipped north-up on export.
"""

import io
import logging
import math
from typing import Any

import numpy as np
from numpy.typing import NDArray
from PIL import Image as PILImage
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..constants import NO_DATA_VALUE, RETRY_ATTEMPTS, RETRY_WAIT_MAX, RETRY_WAIT_MIN
from .raster import GeoHeightfield, GeoImage
from .srs import GeoExtent

logger = logging.getLogger(__name__)

# Type aliases
FloatArray = NDArray[np.floating[Any]]
Transform = Any  # rasterio.Affine


# ---------------------------------------------------------------------------
# Retry decorator for raster I/O
# ---------------------------------------------------------------------------

retry_io = retry(
    stop=stop_after_attempt(RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=RETRY_WAIT_MIN, max=RETRY_WAIT_MAX),
    retry=retry_if_exception_type((ConnectionError, TimeoutError, OSError)),
    reraise=True,
)


# ---------------------------------------------------------------------------
# Georeferencing
# ---------------------------------------------------------------------------


def extent_transform(extent: GeoExtent, width: int, height: int) -> Transform:
    """Affine transform for a corner-registered grid over ``extent``.

    Sample points become pixel centres, so the raster footprint extends
    half a cell beyond the extent on every side.
    """
    from rasterio.transform import from_origin

    res_x = extent.width / max(width - 1, 1)
    res_y = extent.height / max(height - 1, 1)
    return from_origin(extent.xmin - res_x / 2, extent.ymax + res_y / 2, res_x, res_y)


def _north_up(array: NDArray[Any]) -> NDArray[Any]:
    return np.ascontiguousarray(np.flipud(array))


# ---------------------------------------------------------------------------
# GeoTIFF
# ---------------------------------------------------------------------------


def arrays_to_geotiff(
    array: NDArray[Any],
    crs: Any,
    transform: Transform,
    dtype: str = "float32",
    nodata: float | None = None,
) -> bytes:
    """
    Convert a 2D (or band-first 3D) NumPy array to GeoTIFF bytes.

    Args:
        array: 2D raster or (bands, rows, cols) array, north-up
        crs: Coordinate reference system
        transform: Affine transform
        dtype: Output data type
        nodata: Nodata value

    Returns:
        GeoTIFF bytes
    """
    from rasterio.io import MemoryFile

    if array.ndim == 2:
        height, width = array.shape
        count = 1
        write_data = array[np.newaxis, :]
    else:
        count, height, width = array.shape
        write_data = array

    memfile = MemoryFile()
    with memfile.open(
        driver="GTiff",
        height=height,
        width=width,
        count=count,
        dtype=dtype,
        crs=crs,
        transform=transform,
        nodata=nodata,
    ) as dst:
        dst.write(write_data.astype(dtype))

    return memfile.read()


def heightfield_to_geotiff(geo_hf: GeoHeightfield) -> bytes:
    """Single-band float32 GeoTIFF of a heightfield, no-data tagged."""
    from rasterio.crs import CRS

    hf = geo_hf.heightfield
    if hf is None:
        raise ValueError("Cannot encode an empty heightfield")

    return arrays_to_geotiff(
        _north_up(hf.data),
        CRS.from_wkt(geo_hf.srs.crs.to_wkt()),
        extent_transform(geo_hf.extent, hf.width, hf.height),
        dtype="float32",
        nodata=NO_DATA_VALUE,
    )


def image_to_geotiff(geo_image: GeoImage) -> bytes:
    """4-band RGBA GeoTIFF of an image."""
    from rasterio.crs import CRS

    image = geo_image.image
    if image is None:
        raise ValueError("Cannot encode an empty image")

    rgba = _north_up(image.data)
    return arrays_to_geotiff(
        np.moveaxis(rgba, -1, 0),
        CRS.from_wkt(geo_image.srs.crs.to_wkt()),
        extent_transform(geo_image.extent, image.width, image.height),
        dtype=str(image.data.dtype),
    )


# ---------------------------------------------------------------------------
# PNG
# ---------------------------------------------------------------------------


def compute_hillshade(
    elevation: FloatArray,
    cellsize_x: float,
    cellsize_y: float,
    azimuth: float = 315.0,
    altitude: float = 45.0,
    z_factor: float = 1.0,
) -> FloatArray:
    """
    Compute hillshade (shaded relief) from elevation data.

    Uses Horn's method (1981) for slope and aspect calculation.

    Args:
        elevation: 2D elevation array, north-up, NaN for no-data
        cellsize_x: Cell width in the same units as elevation
        cellsize_y: Cell height in the same units as elevation
        azimuth: Sun azimuth in degrees from north
        altitude: Sun altitude in degrees above horizon
        z_factor: Vertical exaggeration factor

    Returns:
        Hillshade array (0-255 range as float)
    """
    padded = np.pad(elevation, 1, mode="edge")
    padded = np.nan_to_num(padded, nan=0.0)

    # Horn's method: 3x3 gradient
    dz_dx = (
        (padded[:-2, 2:] + 2 * padded[1:-1, 2:] + padded[2:, 2:])
        - (padded[:-2, :-2] + 2 * padded[1:-1, :-2] + padded[2:, :-2])
    ) / (8.0 * cellsize_x)

    dz_dy = (
        (padded[:-2, :-2] + 2 * padded[:-2, 1:-1] + padded[:-2, 2:])
        - (padded[2:, :-2] + 2 * padded[2:, 1:-1] + padded[2:, 2:])
    ) / (8.0 * cellsize_y)

    dz_dx *= z_factor
    dz_dy *= z_factor

    az_rad = math.radians(360.0 - azimuth + 90.0)
    alt_rad = math.radians(altitude)

    slope = np.arctan(np.sqrt(dz_dx**2 + dz_dy**2))
    aspect = np.arctan2(-dz_dy, dz_dx)

    hillshade = 255.0 * (
        math.cos(alt_rad) * np.cos(slope)
        + math.sin(alt_rad) * np.sin(slope) * np.cos(az_rad - aspect)
    )

    return np.clip(hillshade, 0, 255)


def _png_bytes(img: PILImage.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def heightfield_to_hillshade_png(geo_hf: GeoHeightfield) -> bytes:
    """Greyscale hillshade PNG of a heightfield (used for previews)."""
    hf = geo_hf.heightfield
    if hf is None:
        raise ValueError("Cannot render an empty heightfield")

    elevation = _north_up(hf.data).astype(np.float64)
    elevation[elevation == NO_DATA_VALUE] = np.nan

    res_x, res_y = geo_hf.resolution
    meters = geo_hf.srs.meters_per_unit
    hs = compute_hillshade(elevation, max(res_x * meters, 1e-9), max(res_y * meters, 1e-9))
    return _png_bytes(PILImage.fromarray(hs.astype(np.uint8)))


def heightfield_to_terrain_png(geo_hf: GeoHeightfield) -> bytes:
    """Terrain-coloured PNG of a heightfield."""
    hf = geo_hf.heightfield
    if hf is None:
        raise ValueError("Cannot render an empty heightfield")

    elevation = _north_up(hf.data).astype(np.float64)
    elevation[elevation == NO_DATA_VALUE] = np.nan

    valid = elevation[~np.isnan(elevation)]
    if len(valid) == 0:
        return _png_bytes(PILImage.new("L", (hf.width, hf.height), 0))

    vmin, vmax = float(valid.min()), float(valid.max())
    if vmax == vmin:
        vmax = vmin + 1.0

    norm = (elevation - vmin) / (vmax - vmin)
    norm = np.clip(np.nan_to_num(norm, nan=0.0), 0.0, 1.0)

    # Simple terrain colour ramp: green -> brown -> white
    r = np.clip(norm * 2.0, 0, 1) * 200 + 55
    g = np.clip(1.0 - norm * 0.5, 0, 1) * 200 + 55
    b = np.clip(norm * 1.5 - 0.5, 0, 1) * 200 + 55

    rgb = np.stack([r, g, b], axis=-1).astype(np.uint8)
    return _png_bytes(PILImage.fromarray(rgb))


def image_to_png(geo_image: GeoImage) -> bytes:
    """RGBA PNG of an image."""
    image = geo_image.image
    if image is None:
        raise ValueError("Cannot render an empty image")

    rgba = image.data
    if rgba.dtype != np.uint8:
        rgba = np.clip(np.rint(rgba * 255.0), 0, 255).astype(np.uint8)
    return _png_bytes(PILImage.fromarray(_north_up(rgba)))
