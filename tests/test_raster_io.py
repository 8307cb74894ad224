"""Tests for chuk_mcp_tiles.core.raster_io: GeoTIFF/PNG encoding and hillshade."""

import io

import numpy as np
import pytest
from PIL import Image as PILImage

from chuk_mcp_tiles.constants import NO_DATA_VALUE
from chuk_mcp_tiles.core.raster import GeoHeightfield, GeoImage, Heightfield, Image
from chuk_mcp_tiles.core.raster_io import (
    arrays_to_geotiff,
    compute_hillshade,
    extent_transform,
    heightfield_to_geotiff,
    heightfield_to_hillshade_png,
    heightfield_to_terrain_png,
    image_to_geotiff,
    image_to_png,
)
from chuk_mcp_tiles.core.srs import SRS, GeoExtent

WGS84 = SRS("EPSG:4326")


@pytest.fixture
def geo_hf():
    """5x5 heightfield over 0..4 degrees; height = 10 * row (row 0 south)."""
    rows = np.repeat(np.arange(5, dtype=np.float32)[:, np.newaxis], 5, axis=1)
    return GeoHeightfield(Heightfield(rows * 10.0), GeoExtent(WGS84, 0.0, 0.0, 4.0, 4.0))


@pytest.fixture
def geo_image():
    data = np.zeros((4, 4, 4), dtype=np.uint8)
    data[0] = (255, 0, 0, 255)  # southern row red
    data[1:] = (0, 0, 255, 128)
    return GeoImage(Image(data), GeoExtent(WGS84, 0.0, 0.0, 3.0, 3.0))


class TestExtentTransform:
    def test_pixel_centres_on_grid_points(self):
        transform = extent_transform(GeoExtent(WGS84, 0.0, 0.0, 4.0, 4.0), 5, 5)
        # centre of the top-left pixel is the north-west sample
        x, y = transform * (0.5, 0.5)
        assert (x, y) == pytest.approx((0.0, 4.0))
        assert transform.a == pytest.approx(1.0)
        assert transform.e == pytest.approx(-1.0)


class TestGeoTiff:
    def test_arrays_to_geotiff_multiband(self):
        from rasterio.crs import CRS
        from rasterio.io import MemoryFile
        from rasterio.transform import from_origin

        data = np.arange(24, dtype=np.uint8).reshape(2, 3, 4)
        tiff = arrays_to_geotiff(
            data, CRS.from_epsg(4326), from_origin(0, 3, 1, 1), dtype="uint8"
        )
        with MemoryFile(tiff) as mem, mem.open() as ds:
            assert ds.count == 2
            assert (ds.height, ds.width) == (3, 4)

    def test_heightfield_round_trip_north_up(self, geo_hf):
        from rasterio.io import MemoryFile

        tiff = heightfield_to_geotiff(geo_hf)
        with MemoryFile(tiff) as mem, mem.open() as ds:
            band = ds.read(1)
            assert ds.nodata == pytest.approx(NO_DATA_VALUE)
            assert ds.crs.to_epsg() == 4326
            bounds = ds.bounds
        # first stored row is the northern edge
        assert band[0].tolist() == [40.0] * 5
        assert band[-1].tolist() == [0.0] * 5
        assert bounds.left == pytest.approx(-0.5)
        assert bounds.top == pytest.approx(4.5)

    def test_image_geotiff(self, geo_image):
        from rasterio.io import MemoryFile

        tiff = image_to_geotiff(geo_image)
        with MemoryFile(tiff) as mem, mem.open() as ds:
            assert ds.count == 4
            data = ds.read()
        assert data[:, -1, 0].tolist() == [255, 0, 0, 255]
        assert data[:, 0, 0].tolist() == [0, 0, 255, 128]

    def test_empty_heightfield_rejected(self, geo_hf):
        with pytest.raises(ValueError, match="empty"):
            heightfield_to_geotiff(GeoHeightfield(None, geo_hf.extent))


class TestHillshade:
    def test_flat_surface_is_uniform(self):
        hs = compute_hillshade(np.full((10, 10), 100.0), 30.0, 30.0)
        assert hs.shape == (10, 10)
        assert np.allclose(hs, hs[0, 0])
        # flat terrain lit at 45 degrees: 255 * sin(45)
        assert hs[0, 0] == pytest.approx(255.0 * np.sin(np.radians(45.0)))

    def test_range(self):
        rng = np.random.default_rng(0)
        hs = compute_hillshade(rng.uniform(0, 1000, (20, 20)), 10.0, 10.0)
        assert hs.min() >= 0.0
        assert hs.max() <= 255.0

    def test_nan_tolerated(self):
        elevation = np.full((5, 5), 10.0)
        elevation[2, 2] = np.nan
        assert not np.any(np.isnan(compute_hillshade(elevation, 1.0, 1.0)))


class TestPng:
    def _decode(self, data):
        return PILImage.open(io.BytesIO(data))

    def test_hillshade_png(self, geo_hf):
        img = self._decode(heightfield_to_hillshade_png(geo_hf))
        assert img.size == (5, 5)
        assert img.mode == "L"

    def test_terrain_png(self, geo_hf):
        img = self._decode(heightfield_to_terrain_png(geo_hf))
        assert img.size == (5, 5)
        assert img.mode == "RGB"

    def test_terrain_png_all_no_data(self, geo_hf):
        empty = GeoHeightfield(Heightfield.create(3, 3), geo_hf.extent)
        img = self._decode(heightfield_to_terrain_png(empty))
        assert img.mode == "L"

    def test_image_png_north_up(self, geo_image):
        img = self._decode(image_to_png(geo_image))
        assert img.mode == "RGBA"
        assert img.getpixel((0, 3)) == (255, 0, 0, 255)
        assert img.getpixel((0, 0)) == (0, 0, 255, 128)

    def test_float_image_png(self, geo_image):
        floats = GeoImage(Image(geo_image.image.normalized()), geo_image.extent)
        img = self._decode(image_to_png(floats))
        assert img.getpixel((0, 3)) == (255, 0, 0, 255)
