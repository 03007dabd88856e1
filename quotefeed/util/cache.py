"""
In-memory response cache for market data calls.
Fixed-size, time-based: entries expire after their TTL and the oldest entry
is evicted once the cache is full.
"""

import time
import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class TTLCache:
    """Bounded TTL cache keyed by request signature."""

    def __init__(self, max_entries: int = 256, clock: Callable[[], float] = time.time):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._clock = clock
        # key -> (expires_at_ms, value)
        self._cache: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def get(self, key: str) -> Optional[Any]:
        """Return a fresh cached value, or None on miss/expiry."""
        entry = self._cache.get(key)
        if entry is None:
            self.misses += 1
            return None

        expires_at, value = entry
        if self._now_ms() >= expires_at:
            logger.debug(f"Cache expired for {key}")
            del self._cache[key]
            self.misses += 1
            return None

        logger.debug(f"Cache hit for {key}")
        self.hits += 1
        return value

    def set(self, key: str, value: Any, ttl_ms: int) -> None:
        """Store a value for ttl_ms milliseconds."""
        if key in self._cache:
            del self._cache[key]
        elif len(self._cache) >= self.max_entries:
            self._evict()
        self._cache[key] = (self._now_ms() + ttl_ms, value)
        logger.debug(f"Cache updated for {key}")

    def _evict(self) -> None:
        now = self._now_ms()
        expired = [key for key, (expires_at, _) in self._cache.items() if now >= expires_at]
        for key in expired:
            del self._cache[key]
        while len(self._cache) >= self.max_entries:
            oldest, _ = self._cache.popitem(last=False)
            logger.debug(f"Cache evicted {oldest}")

    def clear(self) -> None:
        """Clear all cached data."""
        self._cache.clear()
        logger.info("Cache cleared")

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        now = self._now_ms()
        valid_entries = sum(1 for expires_at, _ in self._cache.values() if now < expires_at)

        return {
            "total_entries": len(self._cache),
            "valid_entries": valid_entries,
            "expired_entries": len(self._cache) - valid_entries,
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "keys": list(self._cache.keys())
        }
