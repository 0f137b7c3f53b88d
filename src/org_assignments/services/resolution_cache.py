"""In-memory cache of effective assignments keyed by position."""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached effective assignment with expiry."""

    value: Any
    valid_until: datetime | None
    cached_at: float
    ttl_seconds: int

    @property
    def is_expired(self) -> bool:
        return (time.monotonic() - self.cached_at) > self.ttl_seconds

    def is_valid_at(self, at: datetime) -> bool:
        """False once a delegation or assignment boundary known at caching time has passed."""
        return self.valid_until is None or at < self.valid_until


class ResolutionCache:
    """Thread-safe cache keyed by position ID with TTL and LRU eviction.

    Ledger mutations invalidate a position's entry through the event bus.
    Each invalidation bumps the position's generation, and put() drops a
    value computed under an older generation, so a resolution that raced an
    invalidation can never repopulate the cache with stale data.
    """

    def __init__(self, enabled: bool = True, ttl_seconds: int = 300, max_size: int = 5000):
        self.enabled = enabled
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._cache: dict[int, CacheEntry] = {}
        self._generations: dict[int, int] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._invalidations = 0
        self._insert_count = 0

    @classmethod
    def from_config(cls, resolution_config: dict) -> "ResolutionCache":
        return cls(
            enabled=resolution_config.get("cache_enabled", True),
            ttl_seconds=resolution_config.get("cache_ttl_seconds", 300),
            max_size=resolution_config.get("cache_max_size", 5000),
        )

    def generation(self, position_id: int) -> int:
        with self._lock:
            return self._generations.get(position_id, 0)

    def get(self, position_id: int, at: datetime) -> CacheEntry | None:
        """Look up a position's effective assignment.

        Returns:
            CacheEntry if present, within TTL and still valid at the given
            instant, None otherwise
        """
        with self._lock:
            if not self.enabled:
                self._misses += 1
                return None

            entry = self._cache.get(position_id)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired or not entry.is_valid_at(at):
                del self._cache[position_id]
                self._misses += 1
                return None

            self._hits += 1
            return entry

    def put(
        self,
        position_id: int,
        value: Any,
        valid_until: datetime | None = None,
        generation: int | None = None,
    ) -> bool:
        """Store a value. Returns False when skipped (disabled or invalidated since generation)."""
        if not self.enabled:
            return False

        entry = CacheEntry(
            value=value,
            valid_until=valid_until,
            cached_at=time.monotonic(),
            ttl_seconds=self.ttl_seconds,
        )

        with self._lock:
            if generation is not None and self._generations.get(position_id, 0) != generation:
                logger.debug(f"Resolution cache put skipped for position {position_id}: invalidated")
                return False

            self._cache[position_id] = entry
            self._insert_count += 1

            # LRU eviction: remove oldest entry when at capacity
            if len(self._cache) > self.max_size:
                oldest_key = min(self._cache, key=lambda k: self._cache[k].cached_at)
                del self._cache[oldest_key]

            # Periodic expired entry eviction (every 100 inserts)
            if self._insert_count % 100 == 0:
                expired_keys = [k for k, v in self._cache.items() if v.is_expired]
                for key in expired_keys:
                    del self._cache[key]
            return True

    def invalidate(self, position_id: int) -> bool:
        """Drop a position's entry. Returns True if an entry was present."""
        with self._lock:
            self._generations[position_id] = self._generations.get(position_id, 0) + 1
            self._invalidations += 1
            return self._cache.pop(position_id, None) is not None

    def clear(self) -> None:
        """Clear all cached entries."""
        with self._lock:
            for position_id in self._cache:
                self._generations[position_id] = self._generations.get(position_id, 0) + 1
            self._cache.clear()

    def evict_expired(self) -> int:
        """Remove all expired entries. Returns count of evicted entries."""
        with self._lock:
            expired_keys = [k for k, v in self._cache.items() if v.is_expired]
            for key in expired_keys:
                del self._cache[key]
            return len(expired_keys)

    @property
    def stats(self) -> dict:
        """Return cache statistics."""
        with self._lock:
            return {
                "enabled": self.enabled,
                "ttl_seconds": self.ttl_seconds,
                "max_size": self.max_size,
                "size": len(self._cache),
                "hits": self._hits,
                "misses": self._misses,
                "invalidations": self._invalidations,
                "hit_rate": self._hits / max(self._hits + self._misses, 1),
            }
