"""
Fill no-data texels left after compositing: with zero, or with geoid heights.
"""

import logging
from typing import Protocol

import numpy as np

from .raster import GeoHeightfield, Heightfield
from .srs import GeoExtent

logger = logging.getLogger(__name__)


class GeoidProvider(Protocol):
    def get_height(self, lat: float, lon: float) -> float: ...


class Geoid:
    """Geoid undulation model backed by a geodetic heightfield."""

    def __init__(self, heightfield: GeoHeightfield, name: str = "geoid") -> None:
        if not heightfield.srs.is_geodetic:
            raise ValueError(f"Geoid '{name}' must be defined on a geodetic extent")
        self.heightfield = heightfield
        self.name = name

    def get_height(self, lat: float, lon: float) -> float:
        return self.heightfield.height_at(lon, lat)

    def get_heights(self, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
        return self.heightfield.heights_at(lons, lats)


def resolve_invalid_heights(
    grid: Heightfield | None,
    extent: GeoExtent,
    invalid_value: float,
    geoid: GeoidProvider | None = None,
) -> None:
    """Replace every ``invalid_value`` texel in place.

    Without a geoid the texel becomes 0.0; with one it becomes the geoid
    height at the texel's latitude/longitude.
    """
    if grid is None:
        return

    data = grid.data
    invalid = data == np.float32(invalid_value)
    if not np.any(invalid):
        return

    if geoid is None:
        data[invalid] = 0.0
        return

    geodetic = extent if extent.srs.is_geodetic else extent.transform(extent.srs.geo_srs())
    if geodetic is None:
        logger.warning(f"Cannot express {extent} geodetically; filling no-data with 0")
        data[invalid] = 0.0
        return

    rows, cols = np.nonzero(invalid)
    lon_interval = geodetic.width / max(grid.width - 1, 1)
    lat_interval = geodetic.height / max(grid.height - 1, 1)
    lons = geodetic.xmin + lon_interval * cols
    lats = geodetic.ymin + lat_interval * rows

    if isinstance(geoid, Geoid):
        data[rows, cols] = geoid.get_heights(lats, lons)
    else:
        data[rows, cols] = [geoid.get_height(lat, lon) for lat, lon in zip(lats, lons)]
