"""
In-memory rasters: RGBA images and single-channel heightfields.

Buffers are NumPy arrays with row 0 at the southern edge of the raster's
extent. Grids are corner-registered: sample ``c`` of ``n`` sits at
``xmin + c * width / (n - 1)``.
"""

import logging
from typing import Any

import numpy as np
from numpy.typing import NDArray

from ..constants import (
    MAPBOX_RGB_MAX_HEIGHT,
    MAPBOX_RGB_MIN_HEIGHT,
    MAX_HEIGHTFIELD_DIMENSION,
    NO_DATA_VALUE,
    SNAP_EPSILON,
    ErrorMessages,
    INTERPOLATION_METHODS,
)
from .srs import SRS, GeoExtent

logger = logging.getLogger(__name__)

FloatArray = NDArray[np.floating[Any]]

_NO_DATA_F32 = np.float32(NO_DATA_VALUE)


class Raster:
    """A fixed-size 2D grid backed by a NumPy array."""

    def __init__(self, data: NDArray[Any]) -> None:
        self.data = data

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def valid(self) -> bool:
        return self.data.size > 0

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.width}x{self.height}, {self.data.dtype})"


class Image(Raster):
    """4-channel RGBA image, one byte or one float per channel."""

    def __init__(self, data: NDArray[Any]) -> None:
        if data.ndim != 3 or data.shape[2] != 4:
            raise ValueError(f"Image data must have shape (height, width, 4), got {data.shape}")
        super().__init__(data)

    @classmethod
    def create(cls, width: int, height: int, dtype: Any = np.uint8) -> "Image":
        return cls(np.zeros((height, width, 4), dtype=dtype))

    def normalized(self) -> NDArray[np.float32]:
        """Pixels as float32 in [0, 1]."""
        if self.data.dtype == np.uint8:
            return self.data.astype(np.float32) / 255.0
        return self.data.astype(np.float32, copy=False)

    def write_normalized(self, pixels: NDArray[np.float32]) -> None:
        """Write [0, 1] float pixels shaped (height, width, 4) into the buffer."""
        if self.data.dtype == np.uint8:
            self.data[...] = np.clip(np.rint(pixels * 255.0), 0, 255).astype(np.uint8)
        else:
            self.data[...] = pixels


class Heightfield(Raster):
    """Single-channel float32 grid of height samples."""

    def __init__(self, data: NDArray[Any]) -> None:
        super().__init__(np.ascontiguousarray(data, dtype=np.float32))

    @classmethod
    def create(cls, width: int, height: int, fill: float = NO_DATA_VALUE) -> "Heightfield":
        return cls(np.full((height, width), fill, dtype=np.float32))

    def height_at(self, col: int, row: int) -> float:
        return float(self.data[row, col])


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------


def _pixel_coords(
    extent: GeoExtent,
    xs: FloatArray,
    ys: FloatArray,
    width: int,
    height: int,
) -> tuple[FloatArray, FloatArray, NDArray[np.bool_]]:
    """Map coordinates to fractional (col, row) positions on a corner-registered grid.

    Non-finite coordinates (points a transform could not represent) are
    reported as outside.
    """
    with np.errstate(invalid="ignore"):
        u = (xs - extent.xmin) / extent.width if extent.width > 0 else np.zeros_like(xs)
        v = (ys - extent.ymin) / extent.height if extent.height > 0 else np.zeros_like(ys)

        inside = np.isfinite(u) & np.isfinite(v)
        inside &= (u >= -SNAP_EPSILON) & (u <= 1.0 + SNAP_EPSILON)
        inside &= (v >= -SNAP_EPSILON) & (v <= 1.0 + SNAP_EPSILON)

        cols = np.where(inside, u, 0.0) * (width - 1)
        rows = np.where(inside, v, 0.0) * (height - 1)

    # snap to texel centres so an identity resample reproduces its input exactly
    col_r = np.rint(cols)
    row_r = np.rint(rows)
    cols = np.where(np.abs(cols - col_r) < SNAP_EPSILON, col_r, cols)
    rows = np.where(np.abs(rows - row_r) < SNAP_EPSILON, row_r, rows)

    cols = np.clip(cols, 0.0, width - 1)
    rows = np.clip(rows, 0.0, height - 1)
    return cols, rows, inside


def _corner_indices(
    positions: FloatArray, size: int
) -> tuple[NDArray[np.intp], NDArray[np.intp], FloatArray]:
    i0 = np.floor(positions).astype(np.intp)
    i0 = np.clip(i0, 0, size - 1)
    i1 = np.minimum(i0 + 1, size - 1)
    return i0, i1, positions - i0


def sample_heights(
    data: NDArray[np.float32],
    cols: FloatArray,
    rows: FloatArray,
    interpolation: str = "bilinear",
) -> NDArray[np.float32]:
    """Sample heights at fractional grid positions.

    Bilinear samples touching a no-data corner fall back to the nearest texel.
    """
    height, width = data.shape
    nearest = data[np.rint(rows).astype(np.intp), np.rint(cols).astype(np.intp)]

    if interpolation == "nearest":
        return nearest.astype(np.float32)
    if interpolation != "bilinear":
        raise ValueError(
            ErrorMessages.INVALID_INTERPOLATION.format(interpolation, ", ".join(INTERPOLATION_METHODS))
        )

    c0, c1, dc = _corner_indices(cols, width)
    r0, r1, dr = _corner_indices(rows, height)

    v00 = data[r0, c0].astype(np.float64)
    v01 = data[r0, c1].astype(np.float64)
    v10 = data[r1, c0].astype(np.float64)
    v11 = data[r1, c1].astype(np.float64)

    any_nodata = (v00 == NO_DATA_VALUE) | (v01 == NO_DATA_VALUE)
    any_nodata |= (v10 == NO_DATA_VALUE) | (v11 == NO_DATA_VALUE)

    with np.errstate(over="ignore", invalid="ignore"):
        blended = (
            v00 * (1 - dr) * (1 - dc)
            + v01 * (1 - dr) * dc
            + v10 * dr * (1 - dc)
            + v11 * dr * dc
        )

    return np.where(any_nodata, nearest, blended).astype(np.float32)


def sample_pixels(
    data: NDArray[np.float32],
    cols: FloatArray,
    rows: FloatArray,
    interpolation: str = "bilinear",
) -> NDArray[np.float32]:
    """Sample normalized RGBA pixels at fractional grid positions."""
    height, width = data.shape[:2]
    if interpolation == "nearest":
        return data[np.rint(rows).astype(np.intp), np.rint(cols).astype(np.intp)]
    if interpolation != "bilinear":
        raise ValueError(
            ErrorMessages.INVALID_INTERPOLATION.format(interpolation, ", ".join(INTERPOLATION_METHODS))
        )

    c0, c1, dc = _corner_indices(cols, width)
    r0, r1, dr = _corner_indices(rows, height)
    dc = dc[:, np.newaxis]
    dr = dr[:, np.newaxis]

    return (
        data[r0, c0] * (1 - dr) * (1 - dc)
        + data[r0, c1] * (1 - dr) * dc
        + data[r1, c0] * dr * (1 - dc)
        + data[r1, c1] * dr * dc
    ).astype(np.float32)


class GeoHeightfield:
    """A heightfield bound to a geographic extent."""

    def __init__(self, heightfield: Heightfield | None, extent: GeoExtent) -> None:
        self.heightfield = heightfield
        self.extent = extent

    @property
    def valid(self) -> bool:
        return self.heightfield is not None and self.heightfield.valid

    @property
    def srs(self) -> SRS:
        return self.extent.srs

    @property
    def resolution(self) -> tuple[float, float]:
        hf = self.heightfield
        if hf is None:
            return (self.extent.width, self.extent.height)
        return (
            self.extent.width / max(hf.width - 1, 1),
            self.extent.height / max(hf.height - 1, 1),
        )

    def heights_at(
        self,
        xs: Any,
        ys: Any,
        srs: SRS | None = None,
        interpolation: str = "bilinear",
    ) -> NDArray[np.float32]:
        """Heights at many locations; no-data outside the extent."""
        hf = self.heightfield
        xs = np.atleast_1d(np.asarray(xs, dtype=np.float64))
        ys = np.atleast_1d(np.asarray(ys, dtype=np.float64))
        out = np.full(xs.shape, _NO_DATA_F32, dtype=np.float32)
        if hf is None or xs.size == 0:
            return out

        if srs is not None and srs != self.extent.srs:
            xs, ys = srs.to(self.extent.srs).transform_xy(xs, ys)

        cols, rows, inside = _pixel_coords(self.extent, xs, ys, hf.width, hf.height)
        if np.any(inside):
            out[inside] = sample_heights(hf.data, cols[inside], rows[inside], interpolation)
        return out

    def height_at(
        self, x: float, y: float, srs: SRS | None = None, interpolation: str = "bilinear"
    ) -> float:
        return float(self.heights_at([x], [y], srs, interpolation)[0])


class GeoImage:
    """An image bound to a geographic extent."""

    def __init__(self, image: Image | None, extent: GeoExtent) -> None:
        self.image = image
        self.extent = extent

    @property
    def valid(self) -> bool:
        return self.image is not None and self.image.valid

    @property
    def srs(self) -> SRS:
        return self.extent.srs

    def read(
        self,
        xs: Any,
        ys: Any,
        srs: SRS | None = None,
        interpolation: str = "bilinear",
    ) -> tuple[NDArray[np.float32], NDArray[np.bool_]]:
        """Normalized RGBA pixels at many locations, plus an inside-extent mask."""
        image = self.image
        xs = np.atleast_1d(np.asarray(xs, dtype=np.float64))
        ys = np.atleast_1d(np.asarray(ys, dtype=np.float64))
        pixels = np.zeros((xs.size, 4), dtype=np.float32)
        if image is None or xs.size == 0:
            return pixels, np.zeros(xs.shape, dtype=bool)

        if srs is not None and srs != self.extent.srs:
            xs, ys = srs.to(self.extent.srs).transform_xy(xs, ys)

        cols, rows, inside = _pixel_coords(self.extent, xs, ys, image.width, image.height)
        if np.any(inside):
            pixels[inside] = sample_pixels(
                image.normalized(), cols[inside], rows[inside], interpolation
            )
        return pixels, inside


# ---------------------------------------------------------------------------
# Heightfield housekeeping
# ---------------------------------------------------------------------------


def normalize_no_data(
    heightfield: Heightfield | None,
    no_data_value: float | None = None,
    min_valid_value: float | None = None,
    max_valid_value: float | None = None,
) -> None:
    """Replace NaN, the source no-data value and out-of-range heights with the sentinel."""
    if heightfield is None:
        return
    data = heightfield.data
    invalid = np.isnan(data)
    if no_data_value is not None:
        invalid |= np.isclose(data, no_data_value, rtol=0.0, atol=1e-6)
    if min_valid_value is not None:
        invalid |= data < min_valid_value
    if max_valid_value is not None:
        invalid |= data > max_valid_value
    data[invalid] = _NO_DATA_F32


def validate_heightfield(heightfield: Heightfield | None) -> bool:
    """Basic sanity check on heightfield dimensions."""
    if heightfield is None:
        return False
    return (
        1 <= heightfield.height <= MAX_HEIGHTFIELD_DIMENSION
        and 1 <= heightfield.width <= MAX_HEIGHTFIELD_DIMENSION
    )


def decode_mapbox_rgb(image: Image | None) -> Heightfield | None:
    """Convert a Mapbox Terrain-RGB encoded image into a heightfield."""
    if image is None or not image.valid:
        return None

    rgb = image.data[:, :, :3].astype(np.float64)
    if image.data.dtype != np.uint8:
        rgb = np.rint(rgb * 255.0)

    heights = -10000.0 + (rgb[:, :, 0] * 65536.0 + rgb[:, :, 1] * 256.0 + rgb[:, :, 2]) * 0.1
    out_of_range = (heights < MAPBOX_RGB_MIN_HEIGHT) | (heights > MAPBOX_RGB_MAX_HEIGHT)
    heights[out_of_range] = NO_DATA_VALUE
    return Heightfield(heights.astype(np.float32))
