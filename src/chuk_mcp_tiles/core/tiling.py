"""
Tiling schemes (profiles) and tile keys for a quadtree pyramid.

Tile row ``y = 0`` is the northern-most row of a profile; each level doubles
the number of tiles along both axes.
"""

import dataclasses
import math
from dataclasses import dataclass, field

from ..constants import ALL_PROFILE_NAMES, MAX_TILE_LEVEL, ErrorMessages, ProfileName
from .srs import SRS, GeoExtent

_MERCATOR_HALF_WIDTH = 20037508.342789244
_EDGE_EPSILON = 1e-9


@dataclass(frozen=True)
class Profile:
    """An SRS-bound subdivision scheme defining tile extents at each level."""

    srs: SRS
    xmin: float
    ymin: float
    xmax: float
    ymax: float
    tiles_wide: int = 1
    tiles_high: int = 1
    name: str = field(default="", compare=False)

    @classmethod
    def global_geodetic(cls) -> "Profile":
        return cls(SRS("EPSG:4326"), -180.0, -90.0, 180.0, 90.0, 2, 1, ProfileName.GLOBAL_GEODETIC)

    @classmethod
    def spherical_mercator(cls) -> "Profile":
        h = _MERCATOR_HALF_WIDTH
        return cls(SRS("EPSG:3857"), -h, -h, h, h, 1, 1, ProfileName.SPHERICAL_MERCATOR)

    @classmethod
    def from_name(cls, name: str) -> "Profile":
        if name == ProfileName.GLOBAL_GEODETIC:
            return cls.global_geodetic()
        if name == ProfileName.SPHERICAL_MERCATOR:
            return cls.spherical_mercator()
        raise ValueError(ErrorMessages.UNKNOWN_PROFILE.format(name, ", ".join(ALL_PROFILE_NAMES)))

    @property
    def extent(self) -> GeoExtent:
        return GeoExtent(self.srs, self.xmin, self.ymin, self.xmax, self.ymax)

    def with_srs(self, srs: SRS, name: str | None = None) -> "Profile":
        """Same tiling over a different SRS (e.g. without a vertical datum)."""
        return dataclasses.replace(self, srs=srs, name=name if name is not None else self.name)

    def num_tiles(self, level: int) -> tuple[int, int]:
        return (self.tiles_wide << level, self.tiles_high << level)

    def tile_dimensions(self, level: int) -> tuple[float, float]:
        nx, ny = self.num_tiles(level)
        return ((self.xmax - self.xmin) / nx, (self.ymax - self.ymin) / ny)

    def tile_extent(self, level: int, x: int, y: int) -> GeoExtent:
        tw, th = self.tile_dimensions(level)
        xmin = self.xmin + tw * x
        ymax = self.ymax - th * y
        return GeoExtent(self.srs, xmin, ymax - th, xmin + tw, ymax)

    def equivalent_lod(self, other: "Profile", level: int) -> int:
        """Level in this profile whose tiles best match ``other``'s tiles at ``level``."""
        if other == self:
            return level

        _, other_height = other.tile_dimensions(level)
        target = other_height * other.srs.meters_per_unit / self.srs.meters_per_unit

        best = 0
        delta = math.inf
        for lod in range(MAX_TILE_LEVEL + 1):
            _, height = self.tile_dimensions(lod)
            d = abs(height - target)
            if d < delta:
                best, delta = lod, d
            else:
                break
        return best

    def intersecting_keys(self, extent: GeoExtent, level: int) -> list["TileKey"]:
        """All keys at ``level`` in this profile overlapping ``extent``."""
        local = extent if extent.srs == self.srs else extent.transform(self.srs)
        if local is None:
            return []
        clipped = self.extent.intersection(local)
        if clipped is None:
            return []

        nx, ny = self.num_tiles(level)
        tw, th = self.tile_dimensions(level)

        col_min = int(math.floor((clipped.xmin - self.xmin) / tw + _EDGE_EPSILON))
        col_max = int(math.ceil((clipped.xmax - self.xmin) / tw - _EDGE_EPSILON)) - 1
        row_min = int(math.floor((self.ymax - clipped.ymax) / th + _EDGE_EPSILON))
        row_max = int(math.ceil((self.ymax - clipped.ymin) / th - _EDGE_EPSILON)) - 1

        col_min, col_max = max(col_min, 0), min(col_max, nx - 1)
        row_min, row_max = max(row_min, 0), min(row_max, ny - 1)

        return [
            TileKey(level, x, y, self)
            for y in range(row_min, row_max + 1)
            for x in range(col_min, col_max + 1)
        ]

    def __str__(self) -> str:
        return self.name or f"{self.srs.definition} [{self.tiles_wide}x{self.tiles_high}]"


def _next_power_of_two(n: int) -> int:
    return 1 << (n - 1).bit_length()


@dataclass(frozen=True)
class TileKey:
    """Address (level, x, y) of one tile in a profile's quadtree."""

    level: int
    x: int
    y: int
    profile: Profile

    def __post_init__(self) -> None:
        nx, ny = self.profile.num_tiles(self.level) if self.level >= 0 else (0, 0)
        if self.level < 0 or not (0 <= self.x < nx) or not (0 <= self.y < ny):
            raise ValueError(
                ErrorMessages.INVALID_TILE_KEY.format(self.level, self.x, self.y, self.profile)
            )

    @property
    def extent(self) -> GeoExtent:
        return self.profile.tile_extent(self.level, self.x, self.y)

    def make_parent(self) -> "TileKey | None":
        if self.level == 0:
            return None
        return TileKey(self.level - 1, self.x >> 1, self.y >> 1, self.profile)

    def create_ancestor_key(self, level: int) -> "TileKey | None":
        if level < 0 or level > self.level:
            return None
        shift = self.level - level
        return TileKey(level, self.x >> shift, self.y >> shift, self.profile)

    def intersecting_keys(self, profile: Profile) -> list["TileKey"]:
        """Keys in ``profile`` covering this key, at the equivalent level."""
        if profile == self.profile:
            return [self]
        lod = profile.equivalent_lod(self.profile, self.level)
        return profile.intersecting_keys(self.extent, lod)

    def map_resolution(
        self, target_size: int, source_size: int, minimum_level: int = 0
    ) -> "TileKey":
        """Ancestor whose data at ``source_size`` roughly matches a ``target_size`` grid."""
        if target_size >= source_size or self.level <= minimum_level:
            return self

        target_pot = _next_power_of_two(max(target_size, 2))
        lod = self.level
        while target_pot < source_size and lod > minimum_level:
            lod -= 1
            target_pot *= 2
        return self.create_ancestor_key(lod) or self

    def resolution_for_tile_size(self, tile_size: int) -> tuple[float, float]:
        ext = self.extent
        intervals = max(tile_size - 1, 1)
        return (ext.width / intervals, ext.height / intervals)

    def __str__(self) -> str:
        return f"{self.level}/{self.x}/{self.y}"
