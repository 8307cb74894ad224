"""
Weak-valued cache of source rasters shared by composite tiles.

The cache never owns its values. Composite rasters hold strong references
to the sources they were built from; once every composite referencing an
entry is gone the entry's weak reference dies and the next ``clean()``
sweeps it.
"""

import logging
import threading
import weakref
from collections.abc import Hashable, Iterable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def _sweep(cache_ref: "weakref.ref[DependencyCache[Any, Any]]", dependencies: list[Any]) -> None:
    # release the pins first so the sweep sees this composite's entries as dead
    dependencies.clear()
    cache = cache_ref()
    if cache is not None:
        cache.clean()


class DependencyCache(Generic[K, V]):
    """Keyed store of weakly-held rasters with insert-if-absent publishing."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[K, weakref.ref[V]] = {}

    def get(self, key: K) -> V | None:
        with self._lock:
            ref = self._entries.get(key)
            if ref is None:
                return None
            value = ref()
            if value is None:
                del self._entries[key]
            return value

    def put(self, key: K, value: V) -> V:
        """Publish ``value`` under ``key`` unless a live value is already there.

        Returns the canonical value: the existing one if present, else ``value``.
        """
        with self._lock:
            ref = self._entries.get(key)
            existing = ref() if ref is not None else None
            if existing is not None:
                return existing
            self._entries[key] = weakref.ref(value)
            return value

    def clean(self) -> None:
        """Drop entries whose values are no longer referenced anywhere."""
        with self._lock:
            dead = [key for key, ref in self._entries.items() if ref() is None]
            for key in dead:
                del self._entries[key]
        if dead:
            logger.debug(f"Dependency cache swept {len(dead)} entries ({len(self._entries)} left)")

    def track(self, composite: Any, dependencies: Iterable[V]) -> None:
        """Pin ``dependencies`` to ``composite`` and sweep this cache when it is released."""
        pinned = list(dependencies)
        composite.dependencies = pinned
        weakref.finalize(composite, _sweep, weakref.ref(self), pinned)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Any) -> bool:
        return self.get(key) is not None
