"""Shared test fixtures for chuk-mcp-tiles."""

import numpy as np
import pytest
from unittest.mock import AsyncMock, MagicMock

from chuk_mcp_tiles.constants import NO_DATA_VALUE
from chuk_mcp_tiles.core.raster import Heightfield, Image
from chuk_mcp_tiles.core.status import STATUS_OK, Result, Status, StatusCode
from chuk_mcp_tiles.core.tiling import Profile


class FakeSource:
    """In-memory RasterSource producing rasters from coordinate functions.

    ``height_fn(xs, ys)`` and ``color_fn(xs, ys)`` receive the key's
    corner-registered grid (row 0 south) in the source profile's SRS and
    return heights / (h, w, 4) uint8 pixels.
    """

    def __init__(
        self,
        profile,
        *,
        height_fn=None,
        color_fn=None,
        data_extents=None,
        fail_levels=(),
        open_status=STATUS_OK,
        open_error=None,
        on_fetch=None,
    ):
        self.profile = profile
        self.data_extents = list(data_extents or [])
        self.height_fn = height_fn or (lambda xs, ys: np.full(xs.shape, 100.0))
        self.color_fn = color_fn
        self.fail_levels = set(fail_levels)
        self.open_status = open_status
        self.open_error = open_error
        self.on_fetch = on_fetch
        self.calls = []
        self.open_count = 0
        self.close_count = 0

    def open(self, name, options):
        self.open_count += 1
        if self.open_error is not None:
            raise self.open_error
        return self.open_status

    def close(self):
        self.close_count += 1

    def _grid(self, key, tile_size):
        ext = key.extent
        xs = np.linspace(ext.xmin, ext.xmax, tile_size)
        ys = np.linspace(ext.ymin, ext.ymax, tile_size)
        return np.meshgrid(xs, ys)

    def _fetch(self, key, io):
        self.calls.append(key)
        if self.on_fetch is not None:
            self.on_fetch(key, io)
        if key.level in self.fail_levels:
            return Result.error(StatusCode.RESOURCE_UNAVAILABLE, f"no tile {key}")
        return None

    def create_heightfield(self, key, tile_size, io):
        failed = self._fetch(key, io)
        if failed is not None:
            return failed
        gx, gy = self._grid(key, tile_size)
        return Result(Heightfield(np.asarray(self.height_fn(gx, gy), dtype=np.float32)))

    def create_image(self, key, tile_size, io):
        failed = self._fetch(key, io)
        if failed is not None:
            return failed
        gx, gy = self._grid(key, tile_size)
        if self.color_fn is None:
            data = np.full((tile_size, tile_size, 4), 255, dtype=np.uint8)
        else:
            data = np.asarray(self.color_fn(gx, gy), dtype=np.uint8)
        return Result(Image(data))


def constant(value):
    """Height function returning ``value`` everywhere."""
    return lambda xs, ys: np.full(xs.shape, value)


def west_of(limit, value):
    """Height function defined only where x <= limit."""
    return lambda xs, ys: np.where(xs <= limit, value, NO_DATA_VALUE)


def write_geotiff(path, data, *, crs="EPSG:4326", west=-10.0, north=20.0, res=1.0, nodata=None):
    """Write a north-up GeoTIFF (2D or band-first 3D array) and return its path."""
    import rasterio
    from rasterio.transform import from_origin

    if data.ndim == 2:
        data = data[np.newaxis]
    count, height, width = data.shape
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=count,
        dtype=str(data.dtype),
        crs=crs,
        transform=from_origin(west, north, res, res),
        nodata=nodata,
    ) as dst:
        dst.write(data)
    return str(path)


@pytest.fixture
def geodetic():
    return Profile.global_geodetic()


@pytest.fixture
def mercator():
    return Profile.spherical_mercator()


@pytest.fixture
def fake_source_factory(geodetic):
    """Build FakeSources on the global-geodetic profile by default."""

    def make(profile=None, **kwargs):
        return FakeSource(profile or geodetic, **kwargs)

    return make


@pytest.fixture
def failing_status():
    return Status(StatusCode.RESOURCE_UNAVAILABLE, "cannot open")


@pytest.fixture
def mock_artifact_store():
    """Mock artifact store."""
    store = AsyncMock()
    store.store = AsyncMock(return_value=None)
    store.retrieve = AsyncMock(return_value=b"fake-geotiff-bytes")
    return store


@pytest.fixture
def compositor(fake_source_factory):
    """TileCompositor with one open elevation layer and one open image layer."""
    from chuk_mcp_tiles.core.compositor import TileCompositor
    from chuk_mcp_tiles.core.layers import ElevationLayer, ImageLayer

    comp = TileCompositor()
    terrain = ElevationLayer("terrain", fake_source_factory(height_fn=constant(250.0)), tile_size=17)
    imagery = ImageLayer("imagery", fake_source_factory(), tile_size=16)
    comp.add_layer(terrain)
    comp.add_layer(imagery)
    terrain.open()
    imagery.open()
    return comp


@pytest.fixture
def mock_manager(compositor, mock_artifact_store):
    """TileCompositor with mocked store."""
    compositor._get_store = MagicMock(return_value=mock_artifact_store)
    return compositor


@pytest.fixture
def mock_mcp():
    """Mock ChukMCPServer."""
    mcp = MagicMock()
    mcp.tool = MagicMock(return_value=lambda fn: fn)
    return mcp
