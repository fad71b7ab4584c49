"""
Tests for the in-process TimedCache.

Covers TTL expiry on read, hit statistics, sweeping and the
APScheduler-driven background sweeper.
"""

import gc
import threading

import pytest

from jobwaterfall.orchestrator.timed_cache import TimedCache


@pytest.fixture
def cache(fake_clock):
    return TimedCache(default_ttl=60, sweep_interval=3600, clock=fake_clock)


class TestTimedCacheBasics:
    """Test get/set/invalidate behaviour."""

    def test_set_and_get(self, cache):
        """Test a stored value is returned before expiry."""
        cache.set("jobs:a", ["x"])
        assert cache.get("jobs:a") == ["x"]

    def test_missing_key_is_miss(self, cache):
        """Test an unknown key returns None and counts a miss."""
        assert cache.get("nope") is None
        assert cache.get_statistics()["misses"] == 1

    def test_last_write_wins(self, cache):
        """Test a second set replaces the first value."""
        cache.set("k", 1)
        cache.set("k", 2)
        assert cache.get("k") == 2

    def test_invalidate(self, cache):
        """Test invalidate removes an entry and reports whether it existed."""
        cache.set("k", 1)
        assert cache.invalidate("k") is True
        assert cache.invalidate("k") is False
        assert cache.get("k") is None

    def test_hit_metadata(self, cache, fake_clock):
        """Test hits update hit count and last access time."""
        cache.set("k", 1)
        fake_clock.advance(5)
        cache.get("k")
        cache.get("k")

        entry = cache.get_entry("k")
        assert entry.metadata.hit_count == 2
        assert entry.metadata.last_accessed == fake_clock.now


class TestTimedCacheExpiry:
    """Test the TTL invariant."""

    def test_expired_entry_never_returned(self, cache, fake_clock):
        """Test get after expires_at is a miss and evicts the entry."""
        cache.set("k", "value", ttl=10)
        fake_clock.advance(10)

        assert cache.get("k") is None
        assert cache.get_entry("k") is None
        assert len(cache) == 0
        assert cache.get_statistics()["expired_on_read"] == 1

    def test_entry_live_until_expiry(self, cache, fake_clock):
        """Test an entry is still served just before it expires."""
        cache.set("k", "value", ttl=10)
        fake_clock.advance(9.99)
        assert cache.get("k") == "value"

    def test_contains_respects_expiry(self, cache, fake_clock):
        """Test membership ignores expired entries."""
        cache.set("k", 1, ttl=1)
        assert "k" in cache
        fake_clock.advance(2)
        assert "k" not in cache

    def test_sweep_evicts_only_expired(self, cache, fake_clock):
        """Test sweep removes expired entries and keeps live ones."""
        cache.set("short", 1, ttl=5)
        cache.set("long", 2, ttl=500)
        fake_clock.advance(10)

        assert cache.sweep() == 1
        assert cache.get("long") == 2
        stats = cache.get_statistics()
        assert stats["swept"] == 1
        assert stats["sweeps"] == 1


class TestTimedCacheConcurrency:
    """Test concurrent access from several threads."""

    def test_concurrent_writers_distinct_keys(self, cache):
        """Test many threads writing distinct keys lose nothing."""

        def writer(offset: int):
            for i in range(50):
                cache.set(f"k{offset}-{i}", i)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) == 400
        assert cache.get("k7-49") == 49

    def test_concurrent_counters_exact(self, cache):
        """Test hit and miss counters stay exact under concurrent readers."""
        cache.set("shared", 1)

        def reader():
            for i in range(500):
                cache.get("shared")
                cache.get(f"missing-{i}")

        threads = [threading.Thread(target=reader) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stats = cache.get_statistics()
        assert stats["hits"] == 4000
        assert stats["misses"] == 4000

    def test_key_locks_released(self, cache, fake_clock):
        """Test no key locks remain after entries are swept or invalidated."""
        for i in range(1000):
            cache.set(f"k{i}", i, ttl=10 if i % 2 else 1000)
        fake_clock.advance(20)

        assert cache.sweep() == 500
        for i in range(0, 1000, 2):
            cache.invalidate(f"k{i}")
        gc.collect()

        assert len(cache) == 0
        assert len(cache._key_locks) == 0


class TestTimedCacheSweeper:
    """Test the background sweeper lifecycle."""

    def test_start_and_stop(self, cache):
        """Test the sweeper starts once and stops cleanly."""
        cache.start_sweeper()
        assert cache.get_statistics()["sweeper_running"] is True

        cache.start_sweeper()  # second start is ignored

        cache.stop_sweeper()
        assert cache.get_statistics()["sweeper_running"] is False

    def test_clear_and_hit_rate(self, cache):
        """Test clear empties the cache and hit rate is computed."""
        cache.set("a", 1)
        cache.get("a")
        cache.get("b")

        assert cache.get_statistics()["hit_rate"] == 0.5
        assert cache.clear() == 1
        assert len(cache) == 0
