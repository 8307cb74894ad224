"""Tests for chuk_mcp_tiles.tools.tiles.api (tiles_heightfield, tiles_image)."""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from chuk_mcp_tiles.core.compositor import HeightfieldResult, ImageResult
from chuk_mcp_tiles.tools.tiles.api import register_tile_tools


def _register(manager):
    tools = {}
    mcp = MagicMock()

    def capture_tool(**kwargs):
        def decorator(fn):
            tools[fn.__name__] = fn
            return fn

        return decorator

    mcp.tool = capture_tool
    register_tile_tools(mcp, manager)
    return tools


@pytest.fixture
def tile_tools(mock_manager):
    return _register(mock_manager)


@pytest.fixture
def stubbed():
    """Tools bound to a manager whose fetch methods are AsyncMocks."""
    manager = MagicMock()
    manager.profile = "spherical-mercator"
    manager.fetch_heightfield = AsyncMock(
        return_value=HeightfieldResult(key="3/1/2", has_data=False)
    )
    manager.fetch_image = AsyncMock(
        return_value=ImageResult(key="3/1/2", has_data=False, layers=["aerial"])
    )
    return _register(manager), manager


class TestRegistration:
    def test_registers_two_tools(self, tile_tools):
        assert set(tile_tools) == {"tiles_heightfield", "tiles_image"}


class TestHeightfield:
    @pytest.mark.asyncio
    async def test_end_to_end(self, tile_tools, mock_artifact_store):
        data = json.loads(await tile_tools["tiles_heightfield"](2, 4, 1, tile_size=17))

        assert data["has_data"] is True
        assert data["key"] == "2/4/1"
        assert data["profile"] == "global-geodetic"
        assert data["shape"] == [17, 17]
        assert data["elevation_range"] == [250.0, 250.0]
        assert data["artifact_ref"].startswith("tiles/")
        assert data["output_format"] == "geotiff"
        assert data["message"] == "Heightfield 2/4/1 assembled (17x17, real data: True)"

    @pytest.mark.asyncio
    async def test_passes_arguments(self, stubbed):
        tools, manager = stubbed
        await tools["tiles_heightfield"](
            3, 1, 2, tile_size=65, interpolation="nearest", output_format="png"
        )
        manager.fetch_heightfield.assert_awaited_once_with(
            level=3, x=1, y=2, tile_size=65, interpolation="nearest", output_format="png"
        )

    @pytest.mark.asyncio
    async def test_no_data(self, stubbed):
        tools, _ = stubbed
        data = json.loads(await tools["tiles_heightfield"](3, 1, 2))
        assert data["has_data"] is False
        assert data["message"] == "No data available for tile 3/1/2"
        assert data["profile"] == "spherical-mercator"

    @pytest.mark.asyncio
    async def test_invalid_interpolation(self, stubbed):
        tools, manager = stubbed
        data = json.loads(await tools["tiles_heightfield"](0, 0, 0, interpolation="cubic"))
        assert "Invalid interpolation 'cubic'" in data["error"]
        manager.fetch_heightfield.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_tile_size(self, tile_tools):
        data = json.loads(await tile_tools["tiles_heightfield"](0, 0, 0, tile_size=4096))
        assert "tile_size" in data["error"]

    @pytest.mark.asyncio
    async def test_text(self, tile_tools):
        text = await tile_tools["tiles_heightfield"](2, 4, 1, tile_size=9, output_mode="text")
        assert "Heightfield tile: 2/4/1 (global-geodetic)" in text
        assert "Elevation range: 250.0m to 250.0m" in text


class TestImage:
    @pytest.mark.asyncio
    async def test_end_to_end(self, tile_tools):
        data = json.loads(await tile_tools["tiles_image"](2, 4, 1))

        assert data["has_data"] is True
        assert data["shape"] == [16, 16]
        assert data["opaque_fraction"] == 1.0
        assert data["layers"] == ["imagery"]
        assert data["message"] == "Image 2/4/1 assembled (16x16)"

    @pytest.mark.asyncio
    async def test_passes_layer(self, stubbed):
        tools, manager = stubbed
        data = json.loads(await tools["tiles_image"](3, 1, 2, layer="aerial"))
        manager.fetch_image.assert_awaited_once_with(
            level=3, x=1, y=2, layer="aerial", output_format="png"
        )
        assert data["has_data"] is False
        assert data["layers"] == ["aerial"]

    @pytest.mark.asyncio
    async def test_elevation_layer_rejected(self, tile_tools):
        data = json.loads(await tile_tools["tiles_image"](2, 4, 1, layer="terrain"))
        assert "not an image layer" in data["error"]

    @pytest.mark.asyncio
    async def test_store_failure(self, tile_tools, mock_artifact_store):
        mock_artifact_store.store.side_effect = RuntimeError("bucket gone")
        text = await tile_tools["tiles_image"](2, 4, 1, output_mode="text")
        assert text == "Error: bucket gone"
