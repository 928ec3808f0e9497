"""
Caching decorators for functions.

Provides decorators to cache function results and invalidate cache on writes.
Both take the cache instance explicitly so independent engines never share
cached state.
"""

import functools
import inspect
import logging
from collections.abc import Callable
from typing import Any

from .keys import make_cache_key
from .tagged_cache import CachePriority, TaggedCache

logger = logging.getLogger(__name__)


def cached(
    cache: TaggedCache,
    ttl: float | None = None,
    key_func: Callable[..., str] | None = None,
    tags: Callable[..., list[str]] | list[str] = (),
    priority: CachePriority = CachePriority.NORMAL,
) -> Callable:
    """
    Decorator to cache function results.

    Args:
        cache: Cache to read from and write to.
        ttl: Time-to-live in seconds. None uses the cache default.
        key_func: Optional function building the key from the call arguments.
            Defaults to make_cache_key(func name, bound arguments).
        tags: Tags for the stored entry, or a function of the call arguments
            returning them.
        priority: Eviction priority of the stored entry.

    Example:
        @cached(cache, ttl=120, tags=lambda name: [f"project:{name}"])
        def project_health(name):
            ...
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            if key_func:
                cache_key = key_func(*args, **kwargs)
            else:
                bound = signature.bind(*args, **kwargs)
                bound.apply_defaults()
                params = {k: v for k, v in bound.arguments.items() if k != "self"}
                cache_key = make_cache_key(func.__qualname__, params)

            cached_value = cache.get(cache_key)
            if cached_value is not None:
                logger.debug("Cache hit for %s", cache_key)
                return cached_value

            result = func(*args, **kwargs)

            entry_tags = tags(*args, **kwargs) if callable(tags) else tags
            cache.set(cache_key, result, ttl=ttl, priority=priority, tags=entry_tags)
            return result

        return wrapper

    return decorator


def cache_invalidate(cache: TaggedCache, tags: Callable[..., list[str]] | list[str]) -> Callable:
    """
    Decorator to invalidate tagged cache entries after a write.

    Invalidation runs AFTER the function, even when it raises.

    Example:
        @cache_invalidate(cache, lambda name, data: [f"project:{name}"])
        def update_project(name, data):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            finally:
                entry_tags = tags(*args, **kwargs) if callable(tags) else tags
                count = cache.invalidate_by_tag(entry_tags)
                logger.debug("Invalidated %d cache keys for tags %s", count, entry_tags)

        return wrapper

    return decorator
