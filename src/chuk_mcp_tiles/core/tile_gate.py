"""
Per-key gate so concurrent identical requests share one computation.
"""

import logging
import threading
from collections.abc import Callable, Hashable
from concurrent.futures import Future
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TileGate:
    """Map of in-flight computations keyed by request."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: dict[Hashable, Future[Any]] = {}

    def run(self, key: Hashable, fn: Callable[[], T]) -> T:
        """Run ``fn`` for ``key``, or wait for the identical call already running.

        Exceptions raised by the leader are re-raised in every waiter.
        """
        with self._lock:
            future = self._in_flight.get(key)
            leader = future is None
            if future is None:
                future = Future()
                self._in_flight[key] = future

        if not leader:
            logger.debug(f"Waiting on in-flight request for {key}")
            return future.result()

        try:
            value = fn()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(value)
            return value
        finally:
            with self._lock:
                self._in_flight.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._in_flight)
