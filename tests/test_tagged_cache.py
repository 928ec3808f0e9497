"""
Tests for TaggedCache: bounded size, eviction policies, tags, metadata and
the background expiry sweep.
"""

import threading
import time

import pytest

from projectpulse.cache import CachePriority, EvictionPolicy, TaggedCache


class TestBoundedSize:
    """The cache never grows past max_size and never refuses a write."""

    def test_overflow_evicts_instead_of_raising(self):
        cache = TaggedCache(max_size=3)
        for i in range(10):
            cache.set(f"k{i}", i)
            assert len(cache) <= 3

        assert cache.get("k9") == 9
        assert cache.stats().evictions == 7

    def test_replacing_key_does_not_evict(self):
        cache = TaggedCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)

        assert cache.get("a") == 10
        assert cache.get("b") == 2
        assert cache.stats().evictions == 0

    def test_invalid_construction(self):
        with pytest.raises(ValueError):
            TaggedCache(max_size=0)
        with pytest.raises(ValueError):
            TaggedCache(default_ttl=0)


class TestLRUPolicy:
    def test_least_recently_accessed_is_evicted(self, monotonic):
        cache = TaggedCache(max_size=3, clock=monotonic)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        cache.get("a")

        cache.set("d", 4)

        assert "b" not in cache
        assert "a" in cache
        assert "d" in cache

    def test_priority_ignored_under_lru(self):
        cache = TaggedCache(max_size=2, eviction_policy=EvictionPolicy.LRU)
        cache.set("important", 1, priority=CachePriority.HIGH)
        cache.set("cheap", 2, priority=CachePriority.LOW)
        cache.set("new", 3)

        assert "important" not in cache
        assert "cheap" in cache


class TestPriorityPolicy:
    def test_lowest_priority_evicted_first(self):
        cache = TaggedCache(max_size=3, eviction_policy=EvictionPolicy.PRIORITY)
        cache.set("high", 1, priority=CachePriority.HIGH)
        cache.set("low", 2, priority=CachePriority.LOW)
        cache.set("normal", 3, priority=CachePriority.NORMAL)

        cache.set("extra", 4, priority=CachePriority.HIGH)

        assert "low" not in cache
        assert "high" in cache
        assert "normal" in cache
        assert "extra" in cache

    def test_lru_order_within_same_priority(self):
        cache = TaggedCache(max_size=2, eviction_policy="priority")
        cache.set("first", 1, priority=CachePriority.NORMAL)
        cache.set("second", 2, priority=CachePriority.NORMAL)
        cache.get("first")

        cache.set("third", 3, priority=CachePriority.NORMAL)

        assert "second" not in cache
        assert "first" in cache

    def test_falls_back_to_higher_levels_when_lower_empty(self):
        cache = TaggedCache(max_size=2, eviction_policy=EvictionPolicy.PRIORITY)
        cache.set("a", 1, priority=CachePriority.HIGH)
        cache.set("b", 2, priority=CachePriority.HIGH)
        cache.set("c", 3, priority=CachePriority.HIGH)

        assert "a" not in cache
        assert len(cache) == 2


class TestTags:
    def test_invalidate_by_single_tag(self):
        cache = TaggedCache()
        cache.set("health:alpha", 1, tags=["project:alpha"])
        cache.set("health:beta", 2, tags=["project:beta"])
        cache.set("overview", 3, tags=["projects"])

        assert cache.invalidate_by_tag("project:alpha") == 1
        assert "health:alpha" not in cache
        assert "health:beta" in cache
        assert "overview" in cache

    def test_invalidate_by_any_of_several_tags(self):
        cache = TaggedCache()
        cache.set("health:alpha", 1, tags=["project:alpha"])
        cache.set("overview", 2, tags=["projects"])
        cache.set("health:beta", 3, tags=["project:beta"])

        removed = cache.invalidate_by_tag(["project:alpha", "projects"])

        assert removed == 2
        assert cache.keys_by_tag(["project:alpha", "projects"]) == []
        assert "health:beta" in cache

    def test_entry_with_multiple_tags_counted_once(self):
        cache = TaggedCache()
        cache.set("both", 1, tags=["x", "y"])

        assert cache.invalidate_by_tag(["x", "y"]) == 1
        assert cache.stats().invalidations == 1

    def test_unknown_tag_is_noop(self):
        cache = TaggedCache()
        cache.set("a", 1, tags=["x"])
        assert cache.invalidate_by_tag("nope") == 0
        assert "a" in cache

    def test_string_tag_on_set_is_one_tag(self):
        cache = TaggedCache()
        cache.set("a", 1, tags="projects")
        assert cache.keys_by_tag("projects") == ["a"]
        assert cache.keys_by_tag("p") == []

    def test_evicted_entry_leaves_tag_index(self):
        cache = TaggedCache(max_size=1)
        cache.set("a", 1, tags=["t"])
        cache.set("b", 2)

        assert cache.keys_by_tag("t") == []
        assert cache.invalidate_by_tag("t") == 0

    def test_replacing_entry_replaces_tags(self):
        cache = TaggedCache()
        cache.set("a", 1, tags=["old"])
        cache.set("a", 2, tags=["new"])

        assert cache.keys_by_tag("old") == []
        assert cache.keys_by_tag("new") == ["a"]


class TestExpiry:
    def test_expired_entry_is_a_miss(self, monotonic):
        cache = TaggedCache(default_ttl=10, clock=monotonic)
        cache.set("a", 1)
        monotonic.advance(10)

        assert cache.get("a") is None
        stats = cache.stats()
        assert stats.misses == 1
        assert stats.expirations == 1
        assert stats.size == 0

    def test_contains_respects_expiry_without_counting(self, monotonic):
        cache = TaggedCache(clock=monotonic)
        cache.set("a", 1, ttl=5)
        assert "a" in cache
        monotonic.advance(5)
        assert "a" not in cache

        stats = cache.stats()
        assert stats.hits == 0
        assert stats.misses == 0

    def test_sweep_expired_removes_only_expired(self, monotonic):
        cache = TaggedCache(clock=monotonic)
        cache.set("short", 1, ttl=1)
        cache.set("long", 2, ttl=100)
        monotonic.advance(2)

        assert cache.sweep_expired() == 1
        assert len(cache) == 1
        assert cache.get("long") == 2


class TestMetadata:
    def test_entry_metadata(self, monotonic):
        cache = TaggedCache(clock=monotonic)
        cache.set("a", {"x": 1}, ttl=60, priority=CachePriority.HIGH, tags=["b", "a"])
        monotonic.advance(5)
        cache.get("a")
        cache.get("a")
        monotonic.advance(1)

        meta = cache.entry_metadata("a")

        assert meta["key"] == "a"
        assert meta["priority"] == "high"
        assert meta["tags"] == ["a", "b"]
        assert meta["access_count"] == 2
        assert meta["age"] == pytest.approx(6)
        assert meta["last_accessed"] == pytest.approx(monotonic.now - 1)
        assert meta["expires_at"] == pytest.approx(meta["created_at"] + 60)
        assert meta["is_expired"] is False

    def test_metadata_does_not_count_as_access(self):
        cache = TaggedCache()
        cache.set("a", 1)
        cache.entry_metadata("a")
        assert cache.stats().hits == 0
        assert cache.entry_metadata("missing") is None

    def test_peek_leaves_stats_and_recency_alone(self, monotonic):
        cache = TaggedCache(max_size=2, clock=monotonic)
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.peek("a") == 1
        assert cache.peek("missing") is None
        cache.set("c", 3)

        assert "a" not in cache
        stats = cache.stats()
        assert (stats.hits, stats.misses) == (0, 0)
        assert cache.entry_metadata("b")["access_count"] == 0

    def test_peek_hides_expired_entry_until_sweep(self, monotonic):
        cache = TaggedCache(clock=monotonic)
        cache.set("a", 1, ttl=5)
        monotonic.advance(5)

        assert cache.peek("a") is None
        assert len(cache) == 1
        assert cache.stats().expirations == 0
        assert cache.sweep_expired() == 1


class TestStats:
    def test_hit_rate_and_max_size(self):
        cache = TaggedCache(max_size=7)
        cache.set("a", 1)
        cache.get("a")
        cache.get("b")

        stats = cache.stats()
        assert stats.hit_rate == 0.5
        assert stats.max_size == 7

    def test_clear_keeps_counters(self):
        cache = TaggedCache()
        cache.set("a", 1)
        cache.get("a")
        cache.clear()

        stats = cache.stats()
        assert stats.size == 0
        assert stats.hits == 1


class TestSweeper:
    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            TaggedCache().start_sweeper(interval=0)

    @pytest.mark.slow
    def test_sweeper_removes_expired_entries_in_background(self):
        with TaggedCache(default_ttl=0.05) as cache:
            cache.set("a", 1)
            cache.start_sweeper(interval=0.02)
            assert cache.sweeper_running

            deadline = time.monotonic() + 2
            while len(cache) and time.monotonic() < deadline:
                time.sleep(0.01)

            assert len(cache) == 0
            assert cache.stats().expirations == 1

        assert not cache.sweeper_running

    def test_start_twice_keeps_one_thread(self):
        cache = TaggedCache()
        try:
            cache.start_sweeper(interval=30)
            first = cache._sweeper
            cache.start_sweeper(interval=30)
            assert cache._sweeper is first
            assert first in threading.enumerate()
        finally:
            cache.stop_sweeper()
        assert not cache.sweeper_running
