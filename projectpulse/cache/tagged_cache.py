"""
Bounded cache with priorities, tags, and a background expiry sweep.

Features:
- Hard max_size: overflow evicts before inserting, never raises
- EvictionPolicy.LRU evicts the least recently accessed entry
- EvictionPolicy.PRIORITY evicts the lowest-priority entry (LRU within a priority)
- invalidate_by_tag() purges every entry carrying any of the given tags
- Access count / last-accessed tracking per entry
- Optional sweeper thread removing expired entries independent of reads

Eviction is O(1): entries live in one ordered map (global recency) plus one
ordered map per priority level. Every mutation, including the sweep, runs
under the same RLock.
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from typing import Any

from .cache_manager import CacheStats, _hit_rate

logger = logging.getLogger(__name__)


class CachePriority(IntEnum):
    """Eviction priority; lower values are evicted first."""

    LOW = 0
    NORMAL = 1
    HIGH = 2


class EvictionPolicy(StrEnum):
    """Which entry to drop when the cache is full."""

    LRU = "lru"
    PRIORITY = "priority"


@dataclass
class CacheEntry:
    """One cached computation result."""

    key: str
    value: Any
    created_at: float
    ttl: float
    last_accessed: float
    priority: CachePriority = CachePriority.NORMAL
    tags: frozenset[str] = field(default_factory=frozenset)
    access_count: int = 0

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def metadata(self, now: float) -> dict:
        return {
            "key": self.key,
            "created_at": self.created_at,
            "last_accessed": self.last_accessed,
            "ttl": self.ttl,
            "priority": self.priority.name.lower(),
            "tags": sorted(self.tags),
            "access_count": self.access_count,
            "age": now - self.created_at,
            "expires_at": self.expires_at,
            "is_expired": self.is_expired(now),
        }


class TaggedCache:
    """Thread-safe bounded cache with tag invalidation and priority-aware eviction."""

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float = 300,
        eviction_policy: EvictionPolicy = EvictionPolicy.LRU,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            max_size: Hard cap on the number of entries.
            default_ttl: TTL in seconds used when set() is given none.
            eviction_policy: LRU or PRIORITY.
            clock: Monotonic time source, injectable for tests.
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")

        self._max_size = max_size
        self._default_ttl = default_ttl
        self._policy = EvictionPolicy(eviction_policy)
        self._clock = clock
        self._lock = threading.RLock()

        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._by_priority: dict[CachePriority, OrderedDict[str, None]] = {
            priority: OrderedDict() for priority in CachePriority
        }
        self._tag_index: dict[str, set[str]] = {}

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._invalidations = 0

        self._sweeper: threading.Thread | None = None
        self._stop_event = threading.Event()

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def eviction_policy(self) -> EvictionPolicy:
        return self._policy

    # =========================================================================
    # READS / WRITES
    # =========================================================================

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None on a miss or an expired entry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            now = self._clock()
            if entry.is_expired(now):
                self._remove(key)
                self._expirations += 1
                self._misses += 1
                return None

            entry.last_accessed = now
            entry.access_count += 1
            self._touch(entry)
            self._hits += 1
            return entry.value

    def peek(self, key: str) -> Any | None:
        """Read a live value without touching stats or recency. Expired entries are left to the sweep."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return None
            return entry.value

    def set(
        self,
        key: str,
        value: Any,
        ttl: float | None = None,
        priority: CachePriority = CachePriority.NORMAL,
        tags: Iterable[str] = (),
    ) -> None:
        """
        Store a value, replacing any existing entry for the key.

        When the key is new and the cache is full, one entry is evicted first
        so the freshly stored value is always retrievable.
        """
        if ttl is None:
            ttl = self._default_ttl
        if isinstance(tags, str):
            tags = [tags]
        priority = CachePriority(priority)

        with self._lock:
            if key in self._entries:
                self._remove(key)
            else:
                while len(self._entries) >= self._max_size:
                    self._evict_one()

            now = self._clock()
            entry = CacheEntry(
                key=key,
                value=value,
                created_at=now,
                ttl=ttl,
                last_accessed=now,
                priority=priority,
                tags=frozenset(tags),
            )
            self._entries[key] = entry
            self._by_priority[priority][key] = None
            for tag in entry.tags:
                self._tag_index.setdefault(tag, set()).add(key)

    def delete(self, key: str) -> bool:
        """Remove one key. Returns True if it was present."""
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
            return True

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        """Drop every entry. Counters are kept."""
        with self._lock:
            self._entries.clear()
            for bucket in self._by_priority.values():
                bucket.clear()
            self._tag_index.clear()

    # =========================================================================
    # TAGS
    # =========================================================================

    def invalidate_by_tag(self, tags: Iterable[str] | str) -> int:
        """
        Remove every entry carrying at least one of the given tags.

        Returns:
            Number of entries removed
        """
        if isinstance(tags, str):
            tags = [tags]

        with self._lock:
            keys: set[str] = set()
            for tag in tags:
                keys.update(self._tag_index.get(tag, ()))

            for key in keys:
                self._remove(key)

            self._invalidations += len(keys)
            if keys:
                logger.debug("Invalidated %d cache entries by tags", len(keys))
            return len(keys)

    def keys_by_tag(self, tags: Iterable[str] | str) -> list[str]:
        """Keys carrying at least one of the given tags, sorted."""
        if isinstance(tags, str):
            tags = [tags]

        with self._lock:
            keys: set[str] = set()
            for tag in tags:
                keys.update(self._tag_index.get(tag, ()))
            return sorted(keys)

    def entry_metadata(self, key: str) -> dict | None:
        """Inspect an entry without counting a hit or refreshing recency."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            return entry.metadata(self._clock())

    # =========================================================================
    # EXPIRY
    # =========================================================================

    def sweep_expired(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                self._remove(key)
            self._expirations += len(expired)
            return len(expired)

    def start_sweeper(self, interval: float = 60.0) -> None:
        """Start the background thread that calls sweep_expired() every `interval` seconds."""
        if interval <= 0:
            raise ValueError("interval must be positive")

        with self._lock:
            if self._sweeper is not None and self._sweeper.is_alive():
                return
            self._stop_event.clear()
            self._sweeper = threading.Thread(
                target=self._sweep_loop,
                args=(interval,),
                name="projectpulse-cache-sweeper",
                daemon=True,
            )
            self._sweeper.start()
        logger.debug("Cache sweeper started (interval=%ss)", interval)

    def stop_sweeper(self, timeout: float | None = 5.0) -> None:
        """Signal the sweeper to stop and wait for it."""
        self._stop_event.set()
        sweeper = self._sweeper
        if sweeper is not None:
            sweeper.join(timeout)
        self._sweeper = None

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def __enter__(self) -> "TaggedCache":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop_sweeper()

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop_event.wait(interval):
            try:
                removed = self.sweep_expired()
            except Exception:
                logger.exception("Cache sweep failed")
                continue
            if removed:
                logger.debug("Swept %d expired cache entries", removed)

    # =========================================================================
    # STATS
    # =========================================================================

    def stats(self) -> CacheStats:
        with self._lock:
            oldest_entry_age = None
            if self._entries:
                oldest = next(iter(self._entries.values()))
                oldest_entry_age = self._clock() - oldest.last_accessed

            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                invalidations=self._invalidations,
                size=len(self._entries),
                max_size=self._max_size,
                hit_rate=_hit_rate(self._hits, self._misses),
                oldest_entry_age=oldest_entry_age,
            )

    # =========================================================================
    # INTERNALS (lock must be held)
    # =========================================================================

    def _touch(self, entry: CacheEntry) -> None:
        self._entries.move_to_end(entry.key)
        self._by_priority[entry.priority].move_to_end(entry.key)

    def _remove(self, key: str) -> CacheEntry:
        entry = self._entries.pop(key)
        del self._by_priority[entry.priority][key]
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tag_index[tag]
        return entry

    def _evict_one(self) -> None:
        if not self._entries:
            return

        victim = next(iter(self._entries))
        if self._policy is EvictionPolicy.PRIORITY:
            for priority in CachePriority:
                bucket = self._by_priority[priority]
                if bucket:
                    victim = next(iter(bucket))
                    break

        self._remove(victim)
        self._evictions += 1
        logger.debug("Evicted cache key: %s", victim)
