"""
Single-layer assembly of a tile whose profile differs from the layer's.

The layer's native tiles intersecting the requested key are fetched (through
the layer's dependency cache), then resampled onto one output grid covering
the requested extent. All grid points go through the coordinate transform
in one batch.
"""

import logging
from typing import TYPE_CHECKING, Any, cast

import numpy as np
from numpy.typing import NDArray

from ..constants import NO_DATA_VALUE, RasterKind
from .raster import GeoHeightfield, GeoImage, Heightfield, Image, Raster
from .srs import GeoExtent
from .status import IOOptions, Result
from .tiling import TileKey

if TYPE_CHECKING:
    from .layers import ElevationLayer, ImageLayer, RasterLayer

logger = logging.getLogger(__name__)


class CompositeImage(Image):
    """Image mosaic that keeps its source images alive."""

    dependencies: list[Raster]


class HeightfieldMosaic(Heightfield):
    """Heightfield mosaic that keeps its source heightfields alive."""

    dependencies: list[Raster]


def collect_intersecting_keys(layer: "RasterLayer", key: TileKey) -> list[TileKey]:
    """Native keys of ``layer`` needed to cover ``key``.

    Above level 0 the keys intersecting every ancestor of ``key`` are
    included as gap filler. At level 0 the search level is lowered until
    some intersecting key may have data.
    """
    profile = layer.profile
    if profile is None:
        return []
    keys: list[TileKey] = []

    if key.level > 0:
        current: TileKey | None = key
        while current is not None and current.level > 0:
            keys.extend(current.intersecting_keys(profile))
            current = current.make_parent()
    else:
        lod = profile.equivalent_lod(key.profile, key.level)
        while lod >= 0:
            keys = profile.intersecting_keys(key.extent, lod)
            if any(layer.may_have_data(k) for k in keys):
                break
            lod -= 1

    return list(dict.fromkeys(keys))


def _fetch(layer: "RasterLayer", key: TileKey, io: IOOptions) -> Result[Any]:
    cached = layer.dependency_cache.get(key)
    if cached is not None:
        return Result(cached)
    result = layer.fetch_from_source(key, io)
    if result.valid:
        return Result(layer.dependency_cache.put(key, result.value))
    return result


def grid_points(extent: GeoExtent, width: int, height: int) -> NDArray[np.float64]:
    """(width * height, 3) corner-registered sample points, row 0 at ymin."""
    dx = extent.width / (width - 1) if width > 1 else 0.0
    dy = extent.height / (height - 1) if height > 1 else 0.0
    xs = extent.xmin + dx * np.arange(width, dtype=np.float64)
    ys = extent.ymin + dy * np.arange(height, dtype=np.float64)
    gx, gy = np.meshgrid(xs, ys)

    points = np.zeros((width * height, 3), dtype=np.float64)
    points[:, 0] = gx.ravel()
    points[:, 1] = gy.ravel()
    return points


def assemble_image(layer: "ImageLayer", key: TileKey, io: IOOptions) -> CompositeImage | None:
    """Mosaic the layer's native images onto ``key``'s extent.

    Each output texel takes the first opaque sample in source order. None
    when no source had data or the operation was canceled.
    """
    sources: list[GeoImage] = []
    for layer_key in collect_intersecting_keys(layer, key):
        if io.canceled():
            return None
        if not layer.is_key_in_legal_range(layer_key):
            continue
        result = _fetch(layer, layer_key, io)
        if result.valid:
            sources.append(GeoImage(result.value, layer_key.extent))

    if not sources:
        return None

    width = max(s.image.width for s in sources if s.image is not None)
    height = max(s.image.height for s in sources if s.image is not None)

    output = CompositeImage.create(width, height)
    layer.dependency_cache.track(output, [s.image for s in sources])

    points = grid_points(key.extent, width, height)
    xform = key.extent.srs.to(sources[0].srs)
    if xform.valid():
        xform.transform_array(points)

    pixels = np.zeros((width * height, 4), dtype=np.float32)
    unresolved = np.ones(width * height, dtype=bool)

    for source in sources:
        if io.canceled():
            return None
        index = np.flatnonzero(unresolved)
        if index.size == 0:
            break
        sampled, inside = source.read(
            points[index, 0], points[index, 1], interpolation=layer.interpolation
        )
        opaque = inside & (sampled[:, 3] > 0.0)
        pixels[index[opaque]] = sampled[opaque]
        unresolved[index[opaque]] = False

    output.write_normalized(pixels.reshape(height, width, 4))

    if io.canceled():
        return None
    return output


def assemble_heightfield(
    layer: "ElevationLayer", key: TileKey, io: IOOptions
) -> HeightfieldMosaic | None:
    """Mosaic the layer's native heightfields onto ``key``'s extent.

    Keys the source cannot serve fall back to their parents. A mosaic is
    only built when at least one source sits at the target level; sources
    are sampled finest resolution first.
    """
    if layer.profile is None:
        return None
    intersecting = list(dict.fromkeys(key.intersecting_keys(layer.profile)))
    if not intersecting:
        return None
    target_level = intersecting[0].level

    sources: list[GeoHeightfield] = []
    has_target_level = False

    for layer_key in intersecting:
        sub_key: TileKey | None = layer_key
        result: Result[Any] = Result.empty()
        while sub_key is not None:
            result = _fetch(layer, sub_key, io)
            if io.canceled():
                return None
            if not result.failed:
                break
            sub_key = sub_key.make_parent()

        if sub_key is not None and result.valid:
            if sub_key.level == target_level:
                has_target_level = True
            sources.append(GeoHeightfield(result.value, sub_key.extent))

    if not has_target_level:
        return None

    width = max(s.heightfield.width for s in sources if s.heightfield is not None)
    height = max(s.heightfield.height for s in sources if s.heightfield is not None)

    sources.sort(key=lambda s: s.resolution)

    output = HeightfieldMosaic.create(width, height)
    layer.dependency_cache.track(output, [s.heightfield for s in sources])

    points = grid_points(key.extent, width, height)
    xform = key.extent.srs.to(sources[0].srs)
    if xform.valid():
        xform.transform_array(points)

    heights = np.full(width * height, NO_DATA_VALUE, dtype=np.float64)
    for source in sources:
        if io.canceled():
            return None
        index = np.flatnonzero(heights == NO_DATA_VALUE)
        if index.size == 0:
            break
        sampled = source.heights_at(
            points[index, 0], points[index, 1], interpolation=layer.interpolation
        )
        heights[index] = sampled

    # back to the requesting key's vertical datum, defined samples only
    defined = heights != NO_DATA_VALUE
    if xform.valid() and np.any(defined):
        points[:, 2] = heights
        subset = points[defined].copy()
        xform.inverse_array(subset)
        heights[defined] = subset[:, 2]

    output.data[...] = heights.reshape(height, width).astype(np.float32)

    if io.canceled():
        return None
    return output


def assemble(layer: "RasterLayer", key: TileKey, io: IOOptions) -> Raster | None:
    """Assemble ``key`` from ``layer``, dispatching on the layer's raster kind."""
    if layer.kind == RasterKind.IMAGE:
        return assemble_image(cast("ImageLayer", layer), key, io)
    if layer.kind == RasterKind.ELEVATION:
        return assemble_heightfield(cast("ElevationLayer", layer), key, io)
    raise ValueError(f"Unsupported raster kind: {layer.kind}")
