"""
Composite a prioritized stack of elevation layers into one heightfield.

Layers are held lowest priority first. For each output texel the highest
priority base layer ("contender") with a defined sample wins; additive
offset layers sitting at or above the winning layer are then summed in.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from ..constants import (
    DEFAULT_INTERPOLATION,
    LOCAL_RASTER_CACHE_MAX,
    NO_DATA_VALUE,
)
from .layers import ElevationLayer
from .nodata import GeoidProvider, resolve_invalid_heights
from .raster import GeoHeightfield, Heightfield
from .status import IOOptions
from .tiling import Profile, TileKey

logger = logging.getLogger(__name__)

FLT_MAX = float(np.finfo(np.float32).max)

_OFFSET_EPSILON = 1e-6


@dataclass
class _LayerData:
    layer: ElevationLayer
    key: TileKey
    is_fallback: bool
    index: int


class _RasterCache:
    """Per-call LRU of fetched heightfields, bounded in entries."""

    def __init__(self, max_entries: int = LOCAL_RASTER_CACHE_MAX) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[int, GeoHeightfield] = OrderedDict()

    def get(self, slot: int) -> GeoHeightfield | None:
        entry = self._entries.get(slot)
        if entry is not None:
            self._entries.move_to_end(slot)
        return entry

    def put(self, slot: int, heightfield: GeoHeightfield) -> None:
        self._entries[slot] = heightfield
        self._entries.move_to_end(slot)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


class ElevationLayerVector(list[ElevationLayer]):
    """Ordered elevation layers, lowest priority first."""

    def _classify(
        self, key: TileKey, query_key: TileKey, width: int
    ) -> tuple[list[_LayerData], list[_LayerData], int]:
        contenders: list[_LayerData] = []
        offsets: list[_LayerData] = []
        num_fallback = 0

        for index in range(len(self) - 1, -1, -1):
            layer = self[index]
            if not layer.is_open:
                continue
            if key.level < layer.min_level:
                continue

            mapped = query_key.map_resolution(width, layer.tile_size)
            best, above_ceiling = layer.resolve_best_key(mapped)
            if best is None:
                continue

            is_fallback = above_ceiling or best != mapped
            if is_fallback:
                num_fallback += 1

            data = _LayerData(layer, best, is_fallback, index)
            (offsets if layer.offset else contenders).append(data)

        return contenders, offsets, num_fallback

    def populate_heightfield(
        self,
        hf: Heightfield | None,
        key: TileKey,
        hae_profile: Profile | None = None,
        interpolation: str = DEFAULT_INTERPOLATION,
        io: IOOptions | None = None,
        resolutions: NDArray[np.float32] | None = None,
        geoid: GeoidProvider | None = None,
    ) -> bool:
        """Fill ``hf`` from the stack for ``key``.

        Returns True when real (non-fallback) data contributed. On False the
        caller must ignore ``hf``; a canceled call leaves it untouched.
        """
        if hf is None:
            return False
        io = io or IOOptions()

        query_key = key
        if hae_profile is not None:
            query_key = TileKey(key.level, key.x, key.y, hae_profile)

        contenders, offsets, num_fallback = self._classify(key, query_key, hf.width)

        if not contenders and not offsets:
            return False

        if len(contenders) + len(offsets) == num_fallback:
            logger.debug(f"All layers for {key} would supply fallback data")
            return False

        scratch = hf.data.copy()
        scratch_res = np.full(scratch.shape, FLT_MAX, dtype=np.float32)
        real_data = False
        requires_resample = True

        if len(contenders) == 1 and not offsets:
            only = contenders[0]
            result = only.layer.create_heightfield(only.key, io)
            layer_hf = result.value.heightfield if result.valid else None
            if layer_hf is not None and layer_hf.data.shape == scratch.shape:
                requires_resample = False
                scratch[...] = layer_hf.data
                real_data = True
                _, res_y = only.key.resolution_for_tile_size(hf.width)
                scratch_res[...] = res_y

        if requires_resample:
            outcome = self._composite(
                scratch, scratch_res, key, query_key, contenders, offsets, interpolation, io
            )
            if outcome is None:
                return False
            real_data = outcome

        resolve_invalid_heights(
            Heightfield(scratch), key.extent, NO_DATA_VALUE, geoid
        )

        if io.canceled():
            return False

        hf.data[...] = scratch
        if resolutions is not None:
            resolutions[...] = scratch_res.reshape(resolutions.shape)
        io.report(
            f"Composited {key} from {len(contenders)} layers and {len(offsets)} offsets"
        )
        return real_data

    def _composite(
        self,
        out: NDArray[np.float32],
        out_res: NDArray[np.float32],
        key: TileKey,
        query_key: TileKey,
        contenders: list[_LayerData],
        offsets: list[_LayerData],
        interpolation: str,
        io: IOOptions,
    ) -> bool | None:
        """General resampling pass, one output column at a time.

        Returns None when canceled, else whether real data contributed.
        """
        num_rows, num_cols = out.shape
        extent = key.extent
        dx = extent.width / max(num_cols - 1, 1)
        dy = extent.height / max(num_rows - 1, 1)
        ys = extent.ymin + dy * np.arange(num_rows, dtype=np.float64)
        key_srs = query_key.profile.srs
        width = num_cols

        cache = _RasterCache()
        actual_keys: list[TileKey | None] = [c.key for c in contenders]
        height_fallback = [False] * len(contenders)
        height_failed = [False] * len(contenders)
        offset_fields: list[GeoHeightfield | None] = [None] * len(offsets)
        offset_failed = [False] * len(offsets)
        real_data = False

        for c in range(num_cols):
            if io.canceled():
                return None

            xs = np.full(num_rows, extent.xmin + dx * c, dtype=np.float64)
            column = np.full(num_rows, NO_DATA_VALUE, dtype=np.float32)
            column_res = np.full(num_rows, FLT_MAX, dtype=np.float32)
            resolved_index = np.full(num_rows, -1, dtype=np.int64)

            for i, contender in enumerate(contenders):
                unresolved = np.flatnonzero(resolved_index < 0)
                if unresolved.size == 0:
                    break
                if height_failed[i]:
                    continue

                layer_hf = cache.get(i)
                if layer_hf is None:
                    layer_hf = self._fetch_with_fallback(contender, actual_keys, i, io)
                    if layer_hf is None:
                        height_failed[i] = True
                        continue
                    height_fallback[i] = contender.is_fallback or actual_keys[i] != contender.key
                    cache.put(i, layer_hf)

                values = layer_hf.heights_at(
                    xs[unresolved], ys[unresolved], key_srs, interpolation
                )
                defined = values != NO_DATA_VALUE
                if not np.any(defined):
                    continue

                rows = unresolved[defined]
                column[rows] = values[defined]
                resolved_index[rows] = contender.index
                actual = actual_keys[i]
                if actual is not None:
                    column_res[rows] = actual.resolution_for_tile_size(width)[1]

                if not height_fallback[i]:
                    real_data = True

            for i in range(len(offsets) - 1, -1, -1):
                if io.canceled():
                    return None
                if offset_failed[i]:
                    continue

                offset = offsets[i]
                applies = np.flatnonzero((resolved_index < 0) | (resolved_index <= offset.index))
                if applies.size == 0:
                    continue

                offset_hf = offset_fields[i]
                if offset_hf is None:
                    result = offset.layer.create_heightfield(offset.key, io)
                    if not result.valid:
                        offset_failed[i] = True
                        continue
                    offset_hf = offset_fields[i] = result.value

                real_data = True

                values = offset_hf.heights_at(xs[applies], ys[applies], key_srs, interpolation)
                usable = (values != NO_DATA_VALUE) & (np.abs(values) > _OFFSET_EPSILON)
                if not np.any(usable):
                    continue

                rows = applies[usable]
                base = column[rows]
                column[rows] = np.where(base == NO_DATA_VALUE, 0.0, base) + values[usable]

                offset_res = offset.key.resolution_for_tile_size(width)[1]
                prior = column_res[rows]
                column_res[rows] = np.where(
                    prior == FLT_MAX, offset_res, np.maximum(prior, offset_res)
                )

            out[:, c] = column
            out_res[:, c] = column_res

        return real_data

    @staticmethod
    def _fetch_with_fallback(
        contender: _LayerData,
        actual_keys: list[TileKey | None],
        slot: int,
        io: IOOptions,
    ) -> GeoHeightfield | None:
        """Fetch the contender's raster, walking up parents until one is served."""
        layer = contender.layer
        actual = actual_keys[slot]
        while actual is not None and layer.is_key_in_legal_range(actual):
            result = layer.create_heightfield(actual, io)
            if result.valid:
                actual_keys[slot] = actual
                return result.value
            actual = actual.make_parent()
        actual_keys[slot] = actual
        return None
