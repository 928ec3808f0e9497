"""
In-memory cache layer for Project Pulse.

Provides:
- CacheManager: simple TTL cache with LRU eviction and pattern invalidation
- TaggedCache: bounded cache with priorities, tags and a background sweep
- make_cache_key: deterministic keys from (operation, parameters)
- @cached / @cache_invalidate: decorators bound to an explicit cache
"""

from .cache_manager import CacheManager, CacheStats
from .decorators import cache_invalidate, cached
from .keys import make_cache_key
from .tagged_cache import CacheEntry, CachePriority, EvictionPolicy, TaggedCache

__all__ = [
    "CacheManager",
    "CacheStats",
    "TaggedCache",
    "CacheEntry",
    "CachePriority",
    "EvictionPolicy",
    "make_cache_key",
    "cached",
    "cache_invalidate",
]
