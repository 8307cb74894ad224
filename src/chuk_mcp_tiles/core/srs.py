"""
Spatial reference systems, batch coordinate transforms and extents.

Thin wrappers over pyproj. Transforms always operate on whole arrays;
callers never transform one point at a time.
"""

import functools
import logging
import math
from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray
from pyproj import CRS, Transformer
from pyproj.enums import TransformDirection

from ..constants import METERS_PER_DEGREE, ErrorMessages

logger = logging.getLogger(__name__)


class SRS:
    """A spatial reference system with value semantics."""

    def __init__(self, definition: Any) -> None:
        self._crs = CRS.from_user_input(definition)
        self.definition = definition if isinstance(definition, str) else self._crs.to_string()
        self._wkt = self._crs.to_wkt()
        self._hash = hash(self._wkt)

    @property
    def crs(self) -> CRS:
        return self._crs

    @property
    def is_geodetic(self) -> bool:
        return bool(self._crs.is_geographic)

    @property
    def meters_per_unit(self) -> float:
        if self.is_geodetic:
            return METERS_PER_DEGREE
        axis_info = self._crs.axis_info
        if axis_info and axis_info[0].unit_conversion_factor:
            return float(axis_info[0].unit_conversion_factor)
        return 1.0

    def geo_srs(self) -> "SRS":
        """The geodetic (lat/long) SRS underlying this one."""
        if self.is_geodetic:
            return self
        geodetic = self._crs.geodetic_crs
        if geodetic is None:
            return SRS("EPSG:4326")
        return SRS(geodetic)

    def to(self, other: "SRS | None") -> "SRSOperation":
        return SRSOperation(self, other)

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if not isinstance(other, SRS):
            return NotImplemented
        return self._wkt == other._wkt

    def __hash__(self) -> int:
        return self._hash

    def __repr__(self) -> str:
        return f"SRS({self.definition!r})"


@functools.lru_cache(maxsize=128)
def _transformer(src: SRS, dst: SRS) -> Transformer:
    return Transformer.from_crs(src.crs, dst.crs, always_xy=True)


class SRSOperation:
    """Forward/inverse transform between two SRSs, applied to point arrays."""

    def __init__(self, src: SRS | None, dst: SRS | None) -> None:
        self.src = src
        self.dst = dst
        if src is None or dst is None or src == dst:
            self._transformer = None
        else:
            self._transformer = _transformer(src, dst)

    def valid(self) -> bool:
        return self._transformer is not None

    def transform_array(self, points: NDArray[np.float64]) -> bool:
        """Transform an (N, 3) array of x, y, z in place."""
        return self._apply(points, TransformDirection.FORWARD)

    def inverse_array(self, points: NDArray[np.float64]) -> bool:
        """Inverse-transform an (N, 3) array of x, y, z in place."""
        return self._apply(points, TransformDirection.INVERSE)

    def transform_xy(
        self, xs: NDArray[np.float64], ys: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        if self._transformer is None:
            return xs, ys
        tx, ty = self._transformer.transform(xs, ys)
        return np.asarray(tx, dtype=np.float64), np.asarray(ty, dtype=np.float64)

    def _apply(self, points: NDArray[np.float64], direction: TransformDirection) -> bool:
        if self._transformer is None or len(points) == 0:
            return False
        x, y, z = self._transformer.transform(
            points[:, 0], points[:, 1], points[:, 2], direction=direction
        )
        points[:, 0] = x
        points[:, 1] = y
        points[:, 2] = z
        return True


@dataclass(frozen=True)
class GeoExtent:
    """Axis-aligned bounding rectangle tagged with a spatial reference."""

    srs: SRS
    xmin: float
    ymin: float
    xmax: float
    ymax: float

    def __post_init__(self) -> None:
        if self.xmin > self.xmax or self.ymin > self.ymax:
            raise ValueError(
                ErrorMessages.INVALID_EXTENT.format(self.xmin, self.ymin, self.xmax, self.ymax)
            )

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return (self.xmin, self.ymin, self.xmax, self.ymax)

    def contains(self, x: float, y: float) -> bool:
        return self.xmin <= x <= self.xmax and self.ymin <= y <= self.ymax

    def intersects(self, other: "GeoExtent") -> bool:
        """True when the two extents overlap by more than a shared edge."""
        if other.srs != self.srs:
            transformed = other.transform(self.srs)
            if transformed is None:
                return False
            other = transformed
        return not (
            other.xmin >= self.xmax
            or other.xmax <= self.xmin
            or other.ymin >= self.ymax
            or other.ymax <= self.ymin
        )

    def intersection(self, other: "GeoExtent") -> "GeoExtent | None":
        if other.srs != self.srs:
            transformed = other.transform(self.srs)
            if transformed is None:
                return None
            other = transformed
        xmin = max(self.xmin, other.xmin)
        ymin = max(self.ymin, other.ymin)
        xmax = min(self.xmax, other.xmax)
        ymax = min(self.ymax, other.ymax)
        if xmin >= xmax or ymin >= ymax:
            return None
        return GeoExtent(self.srs, xmin, ymin, xmax, ymax)

    def transform(self, srs: SRS) -> "GeoExtent | None":
        """Transform to another SRS, densifying edges. None if not representable."""
        if srs == self.srs:
            return self

        xmin, ymin, xmax, ymax = self.bounds
        if self.srs.is_geodetic and not srs.is_geodetic:
            area = srs.crs.area_of_use
            if area is not None:
                xmin = max(xmin, area.west)
                xmax = min(xmax, area.east)
                ymin = max(ymin, area.south)
                ymax = min(ymax, area.north)
                if xmin >= xmax or ymin >= ymax:
                    return None

        bounds = _transformer(self.srs, srs).transform_bounds(
            xmin, ymin, xmax, ymax, densify_pts=21
        )
        if not all(math.isfinite(b) for b in bounds) or bounds[0] > bounds[2] or bounds[1] > bounds[3]:
            logger.debug(f"Extent {self.bounds} is not representable in {srs}")
            return None
        return GeoExtent(srs, *bounds)

    def __repr__(self) -> str:
        return (
            f"GeoExtent({self.srs.definition}, {self.xmin:.6f}, {self.ymin:.6f}, "
            f"{self.xmax:.6f}, {self.ymax:.6f})"
        )
