"""Tests for chuk_mcp_tiles.core.dependency_cache."""

import gc
import threading

from chuk_mcp_tiles.core.dependency_cache import DependencyCache


class _Raster:
    """Weak-referenceable stand-in for a raster."""

    def __init__(self, label):
        self.label = label


class _Composite:
    pass


class TestGetPut:
    def test_get_missing(self):
        assert DependencyCache().get("a") is None

    def test_put_then_get(self):
        cache = DependencyCache()
        value = _Raster("a")
        assert cache.put("a", value) is value
        assert cache.get("a") is value
        assert "a" in cache
        assert len(cache) == 1

    def test_put_keeps_existing_value(self):
        cache = DependencyCache()
        first = _Raster("first")
        second = _Raster("second")
        cache.put("k", first)
        assert cache.put("k", second) is first
        assert cache.get("k") is first

    def test_put_replaces_dead_value(self):
        cache = DependencyCache()
        cache.put("k", _Raster("gone"))
        gc.collect()
        replacement = _Raster("new")
        assert cache.put("k", replacement) is replacement

    def test_cache_does_not_own_values(self):
        cache = DependencyCache()
        cache.put("k", _Raster("temp"))
        gc.collect()
        assert cache.get("k") is None
        assert "k" not in cache


class TestConcurrentPut:
    def test_racing_publishers_converge_on_one_value(self):
        cache = DependencyCache()
        n = 16
        candidates = [_Raster(i) for i in range(n)]
        observed = [None] * n
        barrier = threading.Barrier(n)

        def publish(i):
            barrier.wait()
            observed[i] = cache.put("key", candidates[i])

        threads = [threading.Thread(target=publish, args=(i,)) for i in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        canonical = cache.get("key")
        assert canonical is not None
        assert all(value is canonical for value in observed)
        assert len(cache) == 1


class TestTrackAndClean:
    def test_composite_keeps_dependencies_alive(self):
        cache = DependencyCache()
        composite = _Composite()
        cache.track(composite, [cache.put("a", _Raster("a")), cache.put("b", _Raster("b"))])
        gc.collect()
        assert len(cache) == 2
        assert [d.label for d in composite.dependencies] == ["a", "b"]

    def test_clean_sweeps_after_composite_released(self):
        cache = DependencyCache()
        composite = _Composite()
        cache.track(composite, [cache.put("a", _Raster("a"))])
        del composite
        gc.collect()
        cache.clean()
        assert len(cache) == 0

    def test_clean_keeps_live_entries(self):
        cache = DependencyCache()
        held = _Raster("held")
        cache.put("held", held)
        cache.put("dropped", _Raster("dropped"))
        gc.collect()
        cache.clean()
        assert len(cache) == 1
        assert cache.get("held") is held

    def test_finalizer_does_not_keep_cache_alive(self):
        import weakref

        cache = DependencyCache()
        composite = _Composite()
        cache.track(composite, [])
        cache_ref = weakref.ref(cache)
        del cache
        gc.collect()
        assert cache_ref() is None
        # releasing the composite after the cache is gone is harmless
        del composite
        gc.collect()

    def test_release_sweeps_own_entries(self):
        cache = DependencyCache()
        composite = _Composite()
        cache.track(composite, [cache.put("a", _Raster("a")), cache.put("b", _Raster("b"))])
        held = cache.put("held", _Raster("held"))
        del composite
        gc.collect()
        # no explicit clean(): the release itself swept the dead entries
        assert len(cache) == 1
        assert cache.get("held") is held
