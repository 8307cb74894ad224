#!/usr/bin/env python3
"""
Layered Tile Compositing Demo -- chuk-mcp-tiles

Builds three synthetic GeoTIFF layers in a temporary directory and
composites them through the MCP tools, without any network access:

  * base      -- coarse rolling terrain (EPSG:4326, 0.05 degree)
  * buildings -- fine offset layer adding block heights over one city
  * aerial    -- RGB imagery in Web Mercator, reprojected on the fly

The same tile is requested with and without the offset layer open, so
the effect of the offset stack is visible in the elevation range.

Usage:
    python examples/compositing_demo.py

Output:
    examples/output/tile_terrain.png
    examples/output/tile_hillshade.png
    examples/output/tile_image.png
"""

import asyncio
import json
import sys
import tempfile
from pathlib import Path

import numpy as np
import rasterio
from pyproj import Transformer
from rasterio.transform import from_bounds

from chuk_mcp_tiles.core.compositor import TileCompositor
from chuk_mcp_tiles.models.config import load_config

from tool_runner import ToolRunner

# -- Configuration -----------------------------------------------------------

BASE_BOUNDS = (0.0, 40.0, 20.0, 60.0)
CITY_BOUNDS = (9.0, 49.0, 11.0, 51.0)
# Level 6 of the global-geodetic profile: lon 8.4375..11.25, lat 47.8125..50.625
TILE = {"level": 6, "x": 67, "y": 14}
OUTPUT_DIR = Path(__file__).parent / "output"


# -- Synthetic layers --------------------------------------------------------


def _write(path: Path, data: np.ndarray, bounds: tuple, crs: str, nodata=None) -> str:
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
        transform=from_bounds(*bounds, width, height),
        nodata=nodata,
    ) as dst:
        dst.write(data)
    return str(path)


def build_layers(workdir: Path) -> Path:
    """Write the three rasters plus a compositor config; return the config path."""
    lon = np.linspace(BASE_BOUNDS[0], BASE_BOUNDS[2], 400)
    lat = np.linspace(BASE_BOUNDS[3], BASE_BOUNDS[1], 400)
    glon, glat = np.meshgrid(lon, lat)
    terrain = 400.0 + 250.0 * np.sin(np.radians(glon * 9)) * np.cos(np.radians(glat * 7))
    base = _write(workdir / "base.tif", terrain.astype(np.float32), BASE_BOUNDS, "EPSG:4326", -9999.0)

    blocks = np.zeros((400, 400), dtype=np.float32)
    rng = np.random.default_rng(42)
    for _ in range(60):
        row, col = rng.integers(0, 380, size=2)
        blocks[row : row + 12, col : col + 12] = rng.uniform(10.0, 80.0)
    buildings = _write(workdir / "buildings.tif", blocks, CITY_BOUNDS, "EPSG:4326", -9999.0)

    to_merc = Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)
    merc_bounds = to_merc.transform_bounds(*BASE_BOUNDS)
    rgb = np.zeros((3, 512, 512), dtype=np.uint8)
    rgb[0] = np.linspace(40, 200, 512, dtype=np.uint8)[np.newaxis, :]
    rgb[1] = 140
    rgb[2] = np.linspace(200, 40, 512, dtype=np.uint8)[:, np.newaxis]
    aerial = _write(workdir / "aerial.tif", rgb, merc_bounds, "EPSG:3857")

    config = {
        "profile": "global-geodetic",
        "layers": [
            {"name": "aerial", "kind": "image", "path": aerial, "tile_size": 256},
            {"name": "base", "kind": "elevation", "path": base, "tile_size": 65},
            {"name": "buildings", "kind": "elevation", "path": buildings, "offset": True},
        ],
    }
    config_path = workdir / "tiles.json"
    config_path.write_text(json.dumps(config, indent=2))
    return config_path


# -- Main pipeline -----------------------------------------------------------


async def main() -> None:
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

    with tempfile.TemporaryDirectory() as tmp:
        config_path = build_layers(Path(tmp))
        compositor = TileCompositor.from_config(load_config(config_path))
        runner = ToolRunner(compositor)
        store = runner.manager._get_store()

        print("=" * 70)
        print("chuk-mcp-tiles -- Layered Tile Compositing")
        print("=" * 70)

        print("\n--- Configured layers ---")
        print(await runner.run_text("tiles_list_layers"))

        print(f"\n--- Heightfield {TILE['level']}/{TILE['x']}/{TILE['y']} (base + buildings) ---")
        with_offsets = await runner.run("tiles_heightfield", tile_size=257, output_format="png", **TILE)
        if "error" in with_offsets:
            print(f"  ERROR: {with_offsets['error']}")
            sys.exit(1)
        print(f"  Elevation: {with_offsets['elevation_range'][0]:.1f}m to "
              f"{with_offsets['elevation_range'][1]:.1f}m")

        (OUTPUT_DIR / "tile_terrain.png").write_bytes(
            await store.retrieve(with_offsets["artifact_ref"])
        )
        if with_offsets.get("preview_ref"):
            (OUTPUT_DIR / "tile_hillshade.png").write_bytes(
                await store.retrieve(with_offsets["preview_ref"])
            )

        print("\n--- Same tile with the buildings layer closed ---")
        await runner.run("tiles_close_layer", name="buildings")
        bare = await runner.run("tiles_heightfield", tile_size=257, **TILE)
        print(f"  Elevation: {bare['elevation_range'][0]:.1f}m to {bare['elevation_range'][1]:.1f}m")
        added = with_offsets["elevation_range"][1] - bare["elevation_range"][1]
        print(f"  Offset layer raised the tile maximum by {added:.1f}m")

        print("\n--- Imagery (reprojected from Web Mercator) ---")
        print(await runner.run_text("tiles_image", **TILE))
        image = await runner.run("tiles_image", **TILE)
        if image.get("artifact_ref"):
            (OUTPUT_DIR / "tile_image.png").write_bytes(await store.retrieve(image["artifact_ref"]))

        print("\n--- A tile far outside every layer ---")
        print(await runner.run_text("tiles_heightfield", level=6, x=0, y=0, tile_size=33))

        compositor.close_layers()

    print(f"\nOutput: {OUTPUT_DIR}")
    print("=" * 70)


if __name__ == "__main__":
    asyncio.run(main())
