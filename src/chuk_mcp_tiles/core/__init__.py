"""Tile compositing core: tiling, rasters, layers, assembly and the elevation stack."""

from .compositor import TileCompositor
from .elevation_stack import ElevationLayerVector
from .layers import DataExtent, ElevationLayer, ImageLayer, RasterLayer, RasterSource
from .nodata import Geoid, resolve_invalid_heights
from .raster import GeoHeightfield, GeoImage, Heightfield, Image
from .srs import SRS, GeoExtent
from .status import IOOptions, Result, Status, StatusCode
from .tiling import Profile, TileKey

__all__ = [
    "TileCompositor",
    "ElevationLayerVector",
    "DataExtent",
    "ElevationLayer",
    "ImageLayer",
    "RasterLayer",
    "RasterSource",
    "Geoid",
    "resolve_invalid_heights",
    "GeoHeightfield",
    "GeoImage",
    "Heightfield",
    "Image",
    "SRS",
    "GeoExtent",
    "IOOptions",
    "Result",
    "Status",
    "StatusCode",
    "Profile",
    "TileKey",
]
