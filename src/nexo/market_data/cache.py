"""Shared in-memory TTL cache for upstream quotes.

Cache-aside only: callers look up a key, compute on a miss and write the
result back with their own TTL. The cache never computes anything itself.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, NamedTuple, TypeVar

from nexo.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float


class Lookup(NamedTuple, Generic[T]):
    """A service result plus whether it was served from the cache."""

    value: T
    cache_hit: bool


class TTLCache:
    """Process-wide key/value cache with per-entry expiry.

    Expiry is lazy: an entry past its deadline is evicted by the next
    ``get`` for that key. A ``threading.Lock`` guards the map so reads and
    writes stay atomic even when called from a threadpool.

    Args:
        clock: Monotonic clock in seconds (injectable for tests).
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        with self._lock:
            self._entries[key] = CacheEntry(value, self._clock() + ttl_seconds)
        logger.debug("cache_set", key=key, ttl=ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
