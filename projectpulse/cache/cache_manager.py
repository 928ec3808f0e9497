"""
In-memory cache manager with TTL support, invalidation patterns, and LRU eviction.

Features:
- TTL-based entry expiration with lazy cleanup on read
- Glob pattern-based key invalidation
- Thread-safe operations with RLock
- O(1) LRU eviction when max size reached (ordered map, most recent last)
- Namespace support (e.g., "overview:{...}", "health:alpha")
- Hit/miss/eviction statistics tracking
"""

import fnmatch
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    invalidations: int = 0
    size: int = 0
    max_size: int = 0
    hit_rate: float = 0.0
    oldest_entry_age: float | None = None

    def to_dict(self) -> dict:
        """Convert to dict."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "invalidations": self.invalidations,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": self.hit_rate,
            "oldest_entry_age": self.oldest_entry_age,
        }


def _hit_rate(hits: int, misses: int) -> float:
    total = hits + misses
    return hits / total if total > 0 else 0.0


class CacheManager:
    """Thread-safe in-memory cache with TTL, LRU eviction, and pattern invalidation."""

    def __init__(
        self,
        max_size: int = 10000,
        default_ttl: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize cache manager.

        Args:
            max_size: Maximum number of entries before LRU eviction. Defaults to 10000.
            default_ttl: Default TTL in seconds. Defaults to 300 (5 minutes).
            clock: Monotonic time source, injectable for tests.
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        # key -> (value, expiry_time, access_time); least recently used first
        self._cache: OrderedDict[str, tuple[Any, float, float]] = OrderedDict()
        self._lock = threading.RLock()
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._invalidations = 0

    def get(self, key: str) -> Any | None:
        """
        Get value from cache.

        Performs lazy cleanup of expired entries. Returns None if key not found
        or entry has expired.

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found/expired
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None

            value, expiry_time, _access_time = entry
            now = self._clock()

            if now >= expiry_time:
                del self._cache[key]
                self._expirations += 1
                self._misses += 1
                return None

            self._cache[key] = (value, expiry_time, now)
            self._cache.move_to_end(key)
            self._hits += 1
            return value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """
        Set value in cache with TTL.

        Args:
            key: Cache key
            value: Value to cache
            ttl_seconds: TTL in seconds. If None, uses default_ttl.
        """
        if ttl_seconds is None:
            ttl_seconds = self._default_ttl

        with self._lock:
            now = self._clock()
            self._cache[key] = (value, now + ttl_seconds, now)
            self._cache.move_to_end(key)

            while len(self._cache) > self._max_size:
                self._evict_lru()

    def delete(self, key: str) -> None:
        """
        Delete specific key from cache.

        Args:
            key: Cache key to delete
        """
        with self._lock:
            self._cache.pop(key, None)

    def invalidate_pattern(self, pattern: str) -> int:
        """
        Invalidate all keys matching a glob pattern.

        Examples:
            - "health:*" matches "health:alpha", "health:beta"
            - "overview:*" matches every cached overview query

        Args:
            pattern: Glob pattern to match

        Returns:
            Number of keys invalidated
        """
        with self._lock:
            keys_to_delete = [key for key in self._cache if fnmatch.fnmatchcase(key, pattern)]

            for key in keys_to_delete:
                del self._cache[key]

            self._invalidations += len(keys_to_delete)
            return len(keys_to_delete)

    def clear(self) -> None:
        """Clear entire cache."""
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def stats(self) -> CacheStats:
        """
        Get cache statistics.

        Returns:
            CacheStats with hits, misses, evictions, size, hit_rate, oldest_entry_age
        """
        with self._lock:
            oldest_entry_age = None
            if self._cache:
                # Front of the ordered map is the least recently accessed entry
                _value, _expiry, oldest_access_time = next(iter(self._cache.values()))
                oldest_entry_age = self._clock() - oldest_access_time

            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                invalidations=self._invalidations,
                size=len(self._cache),
                max_size=self._max_size,
                hit_rate=_hit_rate(self._hits, self._misses),
                oldest_entry_age=oldest_entry_age,
            )

    def _evict_lru(self) -> None:
        """
        Evict least-recently-used entry.

        Should only be called while holding the lock.
        """
        if not self._cache:
            return

        lru_key, _entry = self._cache.popitem(last=False)
        self._evictions += 1
        logger.debug("Evicted LRU key: %s", lru_key)

    def cleanup_expired(self) -> int:
        """
        Clean up all expired entries.

        Returns:
            Number of expired entries removed
        """
        with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, (_, expiry_time, _) in self._cache.items() if now >= expiry_time
            ]

            for key in expired_keys:
                del self._cache[key]

            self._expirations += len(expired_keys)
            return len(expired_keys)
