"""
In-process TTL cache for leaderboard queries.

Leaderboards are aggregations over committed data and do not need to be
real-time; entries expire after a short TTL and the whole cache is cleared
whenever an ingestion run inserts records.
"""

import logging
import threading
import time
from collections.abc import Callable, Hashable
from typing import Any

logger = logging.getLogger(__name__)


class QueryCache:
    """LRU-ish cache for query results with TTL."""

    def __init__(
        self,
        maxsize: int = 256,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cache: dict[Hashable, tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._maxsize = maxsize
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def get(self, key: Hashable) -> Any | None:
        """Get a cached result if not expired."""
        with self._lock:
            if key in self._cache:
                result, timestamp = self._cache[key]
                if self._clock() - timestamp < self._ttl_seconds:
                    self._hits += 1
                    return result
                del self._cache[key]
            self._misses += 1
            return None

    def set(self, key: Hashable, result: Any) -> None:
        """Cache a result with current timestamp."""
        if self._ttl_seconds <= 0:
            return
        with self._lock:
            # Evict oldest entry if at capacity
            if key not in self._cache and len(self._cache) >= self._maxsize:
                oldest_key = min(self._cache.keys(), key=lambda k: self._cache[k][1])
                del self._cache[oldest_key]
            self._cache[key] = (result, self._clock())

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        result = compute()
        self.set(key, result)
        return result

    def clear(self) -> None:
        """Clear all cached entries."""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        if count:
            logger.debug(f"Query cache cleared ({count} entries)")

    def stats(self) -> dict[str, Any]:
        """Return cache statistics."""
        with self._lock:
            now = self._clock()
            valid_count = sum(
                1 for _, (_, ts) in self._cache.items() if now - ts < self._ttl_seconds
            )
            return {
                "total_entries": len(self._cache),
                "valid_entries": valid_count,
                "maxsize": self._maxsize,
                "ttl_seconds": self._ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
            }
