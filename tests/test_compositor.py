"""Tests for chuk_mcp_tiles.core.compositor: layer management and tile requests."""

import threading
import time

import numpy as np
import pytest

from chuk_mcp_tiles.core.compositor import (
    HeightfieldResult,
    ImageResult,
    TileCompositor,
)
from chuk_mcp_tiles.core.layers import ElevationLayer, ImageLayer
from chuk_mcp_tiles.core.status import IOOptions, StatusCode
from chuk_mcp_tiles.core.tiling import Profile, TileKey
from chuk_mcp_tiles.models.config import CompositorConfig, LayerConfig

from conftest import constant, write_geotiff


def _half_opaque(color, keep):
    """Color function: ``color`` where ``keep(xs)`` holds, transparent elsewhere."""

    def fn(xs, ys):
        data = np.zeros(xs.shape + (4,))
        mask = keep(xs)
        data[mask] = (*color, 255)
        return data

    return fn


# ---------------------------------------------------------------------------
# Construction and layer management
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_default_profile(self):
        assert TileCompositor().profile == Profile.global_geodetic()

    def test_profile_by_name(self):
        assert TileCompositor("spherical-mercator").profile == Profile.spherical_mercator()

    def test_unknown_profile(self):
        with pytest.raises(ValueError, match="Unknown profile"):
            TileCompositor("web")


class TestLayerManagement:
    def test_duplicate_name_rejected(self, compositor, fake_source_factory):
        with pytest.raises(ValueError, match="already exists"):
            compositor.add_layer(ImageLayer("terrain", fake_source_factory()))

    def test_unknown_layer(self, compositor):
        with pytest.raises(ValueError, match="Unknown layer 'nope'"):
            compositor.get_layer("nope")

    def test_list_layers_priorities(self, compositor, fake_source_factory):
        compositor.add_layer(ImageLayer("labels", fake_source_factory()))

        infos = {info.name: info for info in compositor.list_layers()}

        assert infos["imagery"].priority == 0
        assert infos["labels"].priority == 1
        assert infos["terrain"].priority == 0
        assert infos["terrain"].kind == "elevation"
        assert infos["imagery"].is_open
        assert not infos["labels"].is_open

    def test_open_and_close(self, compositor):
        compositor.close_layer("terrain")
        assert not compositor.get_layer("terrain").is_open
        assert compositor.open_layer("terrain").ok
        assert compositor.get_layer("terrain").is_open

    def test_open_layers_reports_each_status(self, compositor, fake_source_factory, failing_status):
        compositor.add_layer(ImageLayer("broken", fake_source_factory(open_status=failing_status)))

        statuses = compositor.open_layers()

        assert statuses["terrain"].ok
        assert statuses["broken"].code == StatusCode.RESOURCE_UNAVAILABLE

    def test_remove_layer_closes_it(self, compositor):
        layer = compositor.remove_layer("imagery")
        assert not layer.is_open
        assert layer.source.close_count == 1
        assert [info.name for info in compositor.list_layers()] == ["terrain"]

    def test_make_key_uses_profile(self, compositor):
        key = compositor.make_key(3, 1, 2)
        assert key == TileKey(3, 1, 2, Profile.global_geodetic())


# ---------------------------------------------------------------------------
# Elevation
# ---------------------------------------------------------------------------


class TestCreateHeightfield:
    def test_constant_layer(self, compositor):
        result = compositor.create_heightfield(compositor.make_key(2, 4, 1), tile_size=17)

        assert result.valid
        tile = result.value
        assert tile.real_data
        np.testing.assert_allclose(tile.heightfield.heightfield.data, 250.0)
        assert tile.resolutions is None

    def test_with_resolutions(self, compositor):
        key = compositor.make_key(2, 4, 1)
        result = compositor.create_heightfield(key, tile_size=17, with_resolutions=True)

        resolutions = result.value.resolutions
        assert resolutions.shape == (17, 17)
        _, expected = key.resolution_for_tile_size(17)
        np.testing.assert_allclose(resolutions, expected)

    def test_no_layers_is_empty(self):
        result = TileCompositor().create_heightfield(
            TileKey(2, 4, 1, Profile.global_geodetic()), tile_size=9
        )
        assert result.ok
        assert result.value is None

    def test_invalid_tile_size(self, compositor):
        with pytest.raises(ValueError, match="tile_size"):
            compositor.create_heightfield(compositor.make_key(0, 0, 0), tile_size=1)

    def test_invalid_interpolation(self, compositor):
        with pytest.raises(ValueError, match="Invalid interpolation"):
            compositor.create_heightfield(compositor.make_key(0, 0, 0), interpolation="cubic")

    def test_canceled(self, compositor):
        io = IOOptions()
        io.cancel()
        result = compositor.create_heightfield(compositor.make_key(2, 4, 1), io, tile_size=9)
        assert result.ok
        assert result.value is None

    def test_concurrent_requests_share_work(self, fake_source_factory):
        started = threading.Event()
        release = threading.Event()

        def block(key, io):
            started.set()
            release.wait(5)

        source = fake_source_factory(height_fn=constant(10.0), on_fetch=block)
        comp = TileCompositor()
        layer = ElevationLayer("dem", source, tile_size=9)
        comp.add_layer(layer)
        layer.open()
        key = comp.make_key(2, 4, 1)

        results = []

        def request():
            results.append(comp.create_heightfield(key, tile_size=9))

        first = threading.Thread(target=request)
        first.start()
        assert started.wait(5)
        second = threading.Thread(target=request)
        second.start()
        time.sleep(0.2)
        release.set()
        first.join(5)
        second.join(5)

        assert len(results) == 2
        assert all(r.valid for r in results)
        assert len(source.calls) == 1


# ---------------------------------------------------------------------------
# Imagery
# ---------------------------------------------------------------------------


class TestCreateImage:
    def test_single_layer_passthrough(self, compositor):
        result = compositor.create_image(compositor.make_key(2, 4, 1))
        assert result.valid
        assert result.value.image.data.shape == (16, 16, 4)

    def test_no_open_layers_is_empty(self, compositor):
        compositor.close_layer("imagery")
        result = compositor.create_image(compositor.make_key(2, 4, 1))
        assert result.ok
        assert result.value is None

    def test_seam_between_two_layers_is_opaque(self, fake_source_factory):
        comp = TileCompositor()
        west = ImageLayer(
            "west",
            fake_source_factory(color_fn=_half_opaque((255, 0, 0), lambda xs: xs <= 45.0)),
            tile_size=17,
        )
        east = ImageLayer(
            "east",
            fake_source_factory(color_fn=_half_opaque((0, 0, 255), lambda xs: xs >= 45.0)),
            tile_size=17,
        )
        comp.add_layer(west)
        comp.add_layer(east)
        west.open()
        east.open()
        key = comp.make_key(1, 2, 0)  # lon 0..90, lat 0..90; column 8 sits on 45

        result = comp.create_image(key)

        data = result.value.image.data
        assert data.shape == (17, 17, 4)
        assert np.all(data[:, :, 3] == 255)
        assert np.all(data[:, 7, :3] == (255, 0, 0))
        # the higher priority layer wins where both are opaque
        assert np.all(data[:, 8, :3] == (0, 0, 255))
        assert np.all(data[:, -1, :3] == (0, 0, 255))

    def test_single_named_layer(self, compositor):
        result = compositor.create_layer_image("imagery", compositor.make_key(2, 4, 1))
        assert result.valid

    def test_named_layer_must_be_imagery(self, compositor):
        with pytest.raises(ValueError, match="not an image layer"):
            compositor.create_layer_image("terrain", compositor.make_key(2, 4, 1))


# ---------------------------------------------------------------------------
# Async requests
# ---------------------------------------------------------------------------


class TestFetchHeightfield:
    @pytest.mark.asyncio
    async def test_stores_tile_and_preview(self, mock_manager, mock_artifact_store):
        result = await mock_manager.fetch_heightfield(level=2, x=4, y=1, tile_size=17)

        assert isinstance(result, HeightfieldResult)
        assert result.has_data
        assert result.artifact_ref.startswith("tiles/")
        assert result.artifact_ref.endswith(".tif")
        assert result.preview_ref.endswith("_hillshade.png")
        assert result.shape == [17, 17]
        assert result.elevation_range == [250.0, 250.0]
        assert len(result.resolution_range) == 2
        assert result.bounds == pytest.approx([0.0, 0.0, 45.0, 45.0])
        assert mock_artifact_store.store.call_count == 2

    @pytest.mark.asyncio
    async def test_png_format(self, mock_manager, mock_artifact_store):
        result = await mock_manager.fetch_heightfield(
            level=2, x=4, y=1, tile_size=9, output_format="png"
        )
        assert result.artifact_ref.endswith(".png")
        metadata = mock_artifact_store.store.call_args.kwargs["metadata"]
        assert metadata["type"] == "heightfield_tile"

    @pytest.mark.asyncio
    async def test_no_data(self, mock_artifact_store):
        comp = TileCompositor()
        result = await comp.fetch_heightfield(level=0, x=0, y=0, tile_size=9)
        assert not result.has_data
        assert result.artifact_ref is None
        mock_artifact_store.store.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_format(self, mock_manager):
        with pytest.raises(ValueError, match="Invalid output format"):
            await mock_manager.fetch_heightfield(level=0, x=0, y=0, output_format="jpeg")


class TestFetchImage:
    @pytest.mark.asyncio
    async def test_stack(self, mock_manager, mock_artifact_store):
        result = await mock_manager.fetch_image(level=2, x=4, y=1)

        assert isinstance(result, ImageResult)
        assert result.has_data
        assert result.shape == [16, 16]
        assert result.opaque_fraction == 1.0
        assert result.layers == ["imagery"]
        assert result.artifact_ref.endswith(".png")
        mock_artifact_store.store.assert_called_once()

    @pytest.mark.asyncio
    async def test_named_layer_geotiff(self, mock_manager):
        result = await mock_manager.fetch_image(
            level=2, x=4, y=1, layer="imagery", output_format="geotiff"
        )
        assert result.artifact_ref.endswith(".tif")

    @pytest.mark.asyncio
    async def test_no_data(self, mock_manager, mock_artifact_store):
        mock_manager.close_layer("imagery")
        result = await mock_manager.fetch_image(level=2, x=4, y=1)
        assert not result.has_data
        assert result.layers == []
        mock_artifact_store.store.assert_not_called()

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, mock_manager, mock_artifact_store):
        mock_artifact_store.store.side_effect = RuntimeError("bucket gone")
        with pytest.raises(RuntimeError, match="bucket gone"):
            await mock_manager.fetch_image(level=2, x=4, y=1)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestFromConfig:
    def test_builds_geotiff_layers(self, tmp_path):
        dem = write_geotiff(
            tmp_path / "dem.tif", np.full((30, 30), 250.0, dtype=np.float32), nodata=-9999.0
        )
        rgb = write_geotiff(tmp_path / "rgb.tif", np.full((3, 30, 30), 9, dtype=np.uint8))
        config = CompositorConfig(
            layers=[
                LayerConfig(name="dem", kind="elevation", path=dem, tile_size=9),
                LayerConfig(name="rgb", kind="image", path=rgb, open_on_start=False),
            ]
        )

        comp = TileCompositor.from_config(config)
        try:
            assert isinstance(comp.get_layer("dem"), ElevationLayer)
            assert isinstance(comp.get_layer("rgb"), ImageLayer)
            assert comp.get_layer("dem").is_open
            assert not comp.get_layer("rgb").is_open

            result = comp.create_heightfield(TileKey(5, 32, 15, comp.profile), tile_size=9)
            np.testing.assert_allclose(result.value.heightfield.heightfield.data, 250.0, atol=1e-3)
        finally:
            comp.close_layers()

    def test_loads_geoid(self, tmp_path):
        geoid = write_geotiff(
            tmp_path / "geoid.tif",
            np.full((180, 360), 30.0, dtype=np.float32),
            west=-180.0,
            north=90.0,
        )
        comp = TileCompositor.from_config(CompositorConfig(geoid_path=geoid))
        assert comp.geoid.get_height(10.0, 10.0) == pytest.approx(30.0)
