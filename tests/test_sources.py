"""Tests for chuk_mcp_tiles.core.sources: rasterio-backed GeoTIFF sources."""

from unittest.mock import patch

import numpy as np
import pytest

from chuk_mcp_tiles.constants import NO_DATA_VALUE
from chuk_mcp_tiles.core.layers import ElevationLayer
from chuk_mcp_tiles.core.sources import GeoTiffRasterSource, discover_profile, load_geoid
from chuk_mcp_tiles.core.srs import SRS
from chuk_mcp_tiles.core.status import IOOptions, StatusCode
from chuk_mcp_tiles.core.tiling import Profile, TileKey

from conftest import write_geotiff


@pytest.fixture
def dem_path(tmp_path):
    """30x30 one-degree DEM over lon -10..20, lat -10..20, constant 250 m."""
    return write_geotiff(
        tmp_path / "dem.tif", np.full((30, 30), 250.0, dtype=np.float32), nodata=-9999.0
    )


@pytest.fixture
def rgb_path(tmp_path):
    data = np.zeros((3, 30, 30), dtype=np.uint8)
    data[0], data[1], data[2] = 10, 20, 30
    return write_geotiff(tmp_path / "rgb.tif", data)


@pytest.fixture
def interior_key():
    # lon 0..5.625, lat 0..5.625
    return TileKey(5, 32, 15, Profile.global_geodetic())


class TestDiscoverProfile:
    def test_geodetic(self):
        assert discover_profile(SRS("EPSG:4326"), (0, 0, 1, 1)) == Profile.global_geodetic()

    def test_mercator(self):
        assert discover_profile(SRS("EPSG:3857"), (0, 0, 1, 1)) == Profile.spherical_mercator()

    def test_local_projection(self):
        profile = discover_profile(SRS("EPSG:32633"), (500000.0, 0.0, 600000.0, 100000.0))
        assert profile.tiles_wide == 1
        assert profile.extent.bounds == (500000.0, 0.0, 600000.0, 100000.0)
        assert "local" in profile.name


class TestOpen:
    def test_open_sets_profile_and_extent(self, dem_path):
        source = GeoTiffRasterSource(dem_path)
        status = source.open("dem", {})
        try:
            assert status.ok
            assert source.profile == Profile.global_geodetic()
            assert len(source.data_extents) == 1
            assert source.data_extents[0].extent.bounds == pytest.approx((-10, -10, 20, 20))
        finally:
            source.close()

    def test_max_data_level_option(self, dem_path):
        source = GeoTiffRasterSource(dem_path)
        source.open("dem", {"max_data_level": 7})
        try:
            assert source.data_extents[0].max_level == 7
        finally:
            source.close()

    @patch("tenacity.nap.time.sleep")
    def test_missing_file(self, mock_sleep, tmp_path):
        source = GeoTiffRasterSource(str(tmp_path / "missing.tif"))
        status = source.open("missing", {})
        assert status.code == StatusCode.RESOURCE_UNAVAILABLE
        assert "missing.tif" in status.message

    def test_read_before_open_raises(self, dem_path, interior_key):
        source = GeoTiffRasterSource(dem_path)
        with pytest.raises(RuntimeError, match="not open"):
            source.create_heightfield(interior_key, 5, IOOptions())


class TestHeightfields:
    def test_interior_tile(self, dem_path, interior_key):
        source = GeoTiffRasterSource(dem_path)
        source.open("dem", {})
        try:
            result = source.create_heightfield(interior_key, 17, IOOptions())
        finally:
            source.close()

        assert result.valid
        assert result.value.data.shape == (17, 17)
        np.testing.assert_allclose(result.value.data, 250.0, atol=1e-3)

    def test_partial_tile_marks_no_data(self, dem_path):
        source = GeoTiffRasterSource(dem_path)
        source.open("dem", {})
        key = TileKey(5, 35, 15, Profile.global_geodetic())  # lon 16.875..22.5
        try:
            result = source.create_heightfield(key, 17, IOOptions())
        finally:
            source.close()

        data = result.value.data
        np.testing.assert_allclose(data[:, 0], 250.0, atol=1e-3)
        assert np.all(data[:, -1] == np.float32(NO_DATA_VALUE))

    def test_tile_outside_data(self, dem_path):
        source = GeoTiffRasterSource(dem_path)
        source.open("dem", {})
        key = TileKey(5, 0, 0, Profile.global_geodetic())
        try:
            result = source.create_heightfield(key, 9, IOOptions())
        finally:
            source.close()
        assert result.status.code == StatusCode.RESOURCE_UNAVAILABLE

    def test_canceled_read_is_empty(self, dem_path, interior_key):
        source = GeoTiffRasterSource(dem_path)
        source.open("dem", {})
        io = IOOptions()
        io.cancel()
        try:
            result = source.create_heightfield(interior_key, 9, io)
        finally:
            source.close()
        assert result.ok
        assert result.value is None

    def test_through_elevation_layer(self, dem_path, interior_key):
        layer = ElevationLayer("dem", GeoTiffRasterSource(dem_path), tile_size=9)
        assert layer.open().ok
        try:
            result = layer.create_heightfield(interior_key)
        finally:
            layer.close()
        np.testing.assert_allclose(result.value.heightfield.data, 250.0, atol=1e-3)


class TestImages:
    def test_rgb_gets_opaque_alpha(self, rgb_path, interior_key):
        source = GeoTiffRasterSource(rgb_path)
        source.open("rgb", {})
        try:
            result = source.create_image(interior_key, 8, IOOptions())
        finally:
            source.close()

        data = result.value.data
        assert data.shape == (8, 8, 4)
        assert data.dtype == np.uint8
        assert np.all(data[:, :, 0] == 10)
        assert np.all(data[:, :, 2] == 30)
        assert np.all(data[:, :, 3] == 255)

    def test_single_band_is_grey(self, tmp_path, interior_key):
        path = write_geotiff(tmp_path / "grey.tif", np.full((30, 30), 77, dtype=np.uint8), nodata=0)
        source = GeoTiffRasterSource(path)
        source.open("grey", {})
        try:
            data = source.create_image(interior_key, 4, IOOptions()).value.data
        finally:
            source.close()
        assert np.all(data[:, :, :3] == 77)
        assert np.all(data[:, :, 3] == 255)


class TestLoadGeoid:
    def test_pixel_centres_form_grid(self, tmp_path):
        # rows hold their latitude: north row first on disk
        lats = np.arange(89.5, -90.0, -1.0, dtype=np.float32)
        grid = np.repeat(lats[:, np.newaxis], 360, axis=1)
        path = write_geotiff(tmp_path / "geoid.tif", grid, west=-180.0, north=90.0)

        geoid = load_geoid(path)

        assert geoid.name == path
        assert geoid.get_height(45.5, 10.0) == pytest.approx(45.5, abs=1e-4)
        assert geoid.get_height(-20.25, -100.0) == pytest.approx(-20.25, abs=1e-4)
