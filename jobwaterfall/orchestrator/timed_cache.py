"""
In-process TTL cache.

The fastest waterfall tier: a dictionary of CacheEntry objects with hit
statistics, per-key locking and a periodic background sweep driven by
APScheduler.
"""

import logging
import threading
import time
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from jobwaterfall.config import CacheConfig

logger = logging.getLogger(__name__)


@dataclass
class EntryMetadata:
    """Bookkeeping attached to a cache entry."""

    created_at: float
    hit_count: int = 0
    last_accessed: Optional[float] = None


@dataclass
class CacheEntry:
    """Cached value with an absolute expiry instant."""

    value: Any
    expires_at: float
    metadata: EntryMetadata = field(default_factory=lambda: EntryMetadata(created_at=time.time()))

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TimedCache:
    """
    Thread-safe in-memory cache with TTL, hit counters and background sweep.

    Each key owns a lock, so readers and writers of unrelated keys never
    contend. Key locks live only while some caller holds them; a short
    registry lock is held while one is looked up or created. Counters are
    updated under their own lock.

    Attributes:
        default_ttl: TTL in seconds when ``set`` is called without one
        sweep_interval: Seconds between background sweeps

    Example:
        >>> cache = TimedCache(default_ttl=60)
        >>> cache.set("jobs:abc", [{"title": "Sales Rep"}])
        >>> cache.get("jobs:abc")
        [{'title': 'Sales Rep'}]
    """

    def __init__(
        self,
        default_ttl: Optional[float] = None,
        sweep_interval: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize cache.

        Args:
            default_ttl: Default TTL in seconds (defaults to CacheConfig.FAST_TTL_SECONDS)
            sweep_interval: Sweep interval in seconds (defaults to CacheConfig.SWEEP_INTERVAL_SECONDS)
            clock: Time source returning epoch seconds (defaults to time.time)
        """
        self.default_ttl = default_ttl or CacheConfig.FAST_TTL_SECONDS
        self.sweep_interval = sweep_interval or CacheConfig.SWEEP_INTERVAL_SECONDS
        self._clock = clock or time.time

        self._entries: Dict[str, CacheEntry] = {}
        self._key_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._registry_lock = threading.Lock()
        self._stats_lock = threading.Lock()

        self._scheduler: Optional[BackgroundScheduler] = None

        self._stats = {
            "hits": 0,
            "misses": 0,
            "expired_on_read": 0,
            "sets": 0,
            "invalidations": 0,
            "swept": 0,
            "sweeps": 0,
        }

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            return self._key_locks.setdefault(key, threading.Lock())

    def _count(self, **increments: int) -> None:
        with self._stats_lock:
            for name, amount in increments.items():
                self._stats[name] += amount

    def get(self, key: str) -> Optional[Any]:
        """
        Retrieve a live value.

        An entry whose ``expires_at`` has passed is removed and reported
        as a miss; stale values are never returned.

        Args:
            key: Cache key

        Returns:
            Cached value, or None on miss
        """
        with self._lock_for(key):
            entry = self._entries.get(key)
            if entry is None:
                self._count(misses=1)
                return None

            now = self._clock()
            if entry.is_expired(now):
                del self._entries[key]
                self._count(misses=1, expired_on_read=1)
                logger.debug(f"Expired on read: {key}")
                return None

            entry.metadata.hit_count += 1
            entry.metadata.last_accessed = now
            self._count(hits=1)
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Store a value, replacing any existing entry (last write wins).

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time-to-live in seconds (defaults to ``default_ttl``)
        """
        ttl = self.default_ttl if ttl is None else ttl
        now = self._clock()
        entry = CacheEntry(
            value=value,
            expires_at=now + ttl,
            metadata=EntryMetadata(created_at=now),
        )
        with self._lock_for(key):
            self._entries[key] = entry
            self._count(sets=1)
        logger.debug(f"Cached: {key} (ttl={ttl}s)")

    def invalidate(self, key: str) -> bool:
        """
        Remove an entry.

        Returns:
            True if an entry was removed
        """
        with self._lock_for(key):
            removed = self._entries.pop(key, None) is not None
        if removed:
            self._count(invalidations=1)
            logger.debug(f"Invalidated: {key}")
        return removed

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Inspect an entry and its metadata without counting a hit."""
        with self._lock_for(key):
            return self._entries.get(key)

    def sweep(self) -> int:
        """
        Evict every expired entry.

        Returns:
            Number of entries evicted
        """
        now = self._clock()
        evicted = 0
        for key in list(self._entries):
            with self._lock_for(key):
                entry = self._entries.get(key)
                if entry is not None and entry.is_expired(now):
                    del self._entries[key]
                    evicted += 1

        self._count(swept=evicted, sweeps=1)
        if evicted:
            logger.info(f"Swept {evicted} expired cache entries")
        return evicted

    def start_sweeper(self) -> None:
        """Start the periodic background sweep."""
        if self._scheduler is not None:
            logger.warning("Cache sweeper is already running")
            return

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            func=self.sweep,
            trigger=IntervalTrigger(seconds=self.sweep_interval),
            id="timed_cache_sweep",
            name="Timed Cache Sweep",
            replace_existing=True,
            max_instances=1,
        )
        self._scheduler.start()
        logger.info(f"Cache sweeper started (every {self.sweep_interval}s)")

    def stop_sweeper(self, wait: bool = False) -> None:
        """Stop the background sweep if running."""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("Cache sweeper stopped")

    def clear(self) -> int:
        """Drop every entry; returns the number removed."""
        count = len(self._entries)
        for key in list(self._entries):
            with self._lock_for(key):
                self._entries.pop(key, None)
        return count

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def get_statistics(self) -> dict:
        """
        Get cache statistics.

        Returns:
            Dictionary with entry counts, hit/miss counters and hit rate
        """
        with self._stats_lock:
            stats = dict(self._stats)
        lookups = stats["hits"] + stats["misses"]
        return {
            "entries": len(self._entries),
            **stats,
            "hit_rate": round(stats["hits"] / lookups, 3) if lookups else 0.0,
            "default_ttl": self.default_ttl,
            "sweeper_running": self._scheduler is not None,
        }

    def __repr__(self) -> str:
        return f"TimedCache(entries={len(self._entries)}, default_ttl={self.default_ttl})"
