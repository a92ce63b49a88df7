"""Short-TTL in-memory observation cache.

Entries are keyed by (source, scope), where scope is usually the symbol.
An entry older than the TTL is treated as absent and dropped on read; it is
never served stale. Size is bounded by the fixed source/symbol set, so there
is no eviction beyond TTL.
"""

import time
from collections.abc import Callable
from typing import Generic, TypeVar

from oracle_watch.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ObservationCache(Generic[T]):
    """TTL cache shared by the collector and the reference price service.

    All operations are synchronous dict accesses, so concurrent coroutines
    touching different keys never wait on each other.
    """

    def __init__(self, ttl_ms: int = 30_000, clock: Callable[[], float] = time.time) -> None:
        self._ttl = ttl_ms / 1000
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[T, float]] = {}

    @property
    def ttl_ms(self) -> int:
        return int(self._ttl * 1000)

    def get(self, source: str, scope: str) -> T | None:
        """Return the cached value, or None if missing or older than the TTL."""
        key = (source, scope)
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._clock() - stored_at > self._ttl:
            del self._entries[key]
            return None
        logger.debug("cache_hit", source=source, scope=scope)
        return value

    def set(self, source: str, scope: str, value: T) -> None:
        """Store a value after a successful upstream fetch."""
        self._entries[(source, scope)] = (value, self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
