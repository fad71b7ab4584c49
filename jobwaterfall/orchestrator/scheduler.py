"""
Maintenance Scheduler.

APScheduler-based housekeeping for the acquisition tiers: expiry sweeps,
store purges, the daily budget reset and optional prefetching of popular
searches.
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from jobwaterfall.config import CacheConfig, SchedulerConfig
from jobwaterfall.normalizer.schemas import SourceTier
from jobwaterfall.orchestrator.job_aggregator import JobAggregator
from jobwaterfall.utils.exceptions import AcquisitionError, BudgetExhaustedError

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """
    Background scheduler for cache and store maintenance.

    Scheduled Tasks:
        - Hourly: Sweep the in-process cache and purge expired shared cache rows
        - Daily: Purge expired searches from the store
        - Daily: Reset budget tracking
        - Daily (optional): Re-run the most popular stored searches

    Jobs run on the event loop that calls ``start``, so they share the
    aggregator's clients and sessions.

    Example:
        >>> scheduler = MaintenanceScheduler(aggregator, prefetch_enabled=True)
        >>> scheduler.start()
        >>> # ... serve requests ...
        >>> scheduler.stop()
    """

    def __init__(
        self,
        aggregator: JobAggregator,
        sweep_interval_seconds: Optional[int] = None,
        daily_hour: Optional[int] = None,
        prefetch_enabled: Optional[bool] = None,
        prefetch_limit: Optional[int] = None,
    ):
        """
        Initialize maintenance scheduler.

        Args:
            aggregator: Aggregator whose tiers are maintained
            sweep_interval_seconds: Cache sweep interval (default: CacheConfig)
            daily_hour: Hour of day for daily jobs (default: SchedulerConfig)
            prefetch_enabled: Schedule popular-search prefetch (default: SchedulerConfig)
            prefetch_limit: Searches prefetched per run (default: SchedulerConfig)
        """
        self.aggregator = aggregator
        self.sweep_interval_seconds = sweep_interval_seconds or CacheConfig.SWEEP_INTERVAL_SECONDS
        self.daily_hour = SchedulerConfig.DAILY_HOUR if daily_hour is None else daily_hour
        self.prefetch_enabled = (
            SchedulerConfig.PREFETCH_ENABLED if prefetch_enabled is None else prefetch_enabled
        )
        self.prefetch_limit = prefetch_limit or SchedulerConfig.PREFETCH_LIMIT

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._is_running = False

        self._last_sweep: Optional[datetime] = None
        self._last_purge: Optional[datetime] = None
        self._last_budget_reset: Optional[datetime] = None
        self._last_prefetch: Optional[datetime] = None

        self._stats = {
            "sweeps": 0,
            "fast_cache_evicted": 0,
            "shared_cache_evicted": 0,
            "store_purges": 0,
            "searches_purged": 0,
            "budget_resets": 0,
            "prefetch_runs": 0,
            "searches_prefetched": 0,
            "prefetch_failures": 0,
            "errors": 0,
        }

    def start(self) -> None:
        """
        Start the scheduler on the running event loop.

        Configures the hourly sweep, daily purge, daily budget reset and,
        when enabled, the daily prefetch.
        """
        if self._is_running:
            logger.warning("Maintenance scheduler is already running")
            return

        self.scheduler = AsyncIOScheduler()

        self.scheduler.add_job(
            func=self.sweep_caches,
            trigger=IntervalTrigger(seconds=self.sweep_interval_seconds),
            id="sweep_caches",
            name="Cache Sweep",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            func=self.purge_store,
            trigger=CronTrigger(hour=self.daily_hour, minute=0),
            id="purge_store",
            name="Search Store Purge",
            replace_existing=True,
        )
        self.scheduler.add_job(
            func=self.reset_budget,
            trigger=CronTrigger(hour=0, minute=0),
            id="reset_budget",
            name="Daily Budget Reset",
            replace_existing=True,
        )
        if self.prefetch_enabled:
            self.scheduler.add_job(
                func=self.prefetch_popular,
                trigger=CronTrigger(hour=self.daily_hour, minute=30),
                id="prefetch_popular",
                name="Popular Search Prefetch",
                replace_existing=True,
                max_instances=1,
            )

        self.scheduler.start()
        self._is_running = True

        logger.info(
            "Maintenance scheduler started",
            extra={"jobs": [job.id for job in self.scheduler.get_jobs()]},
        )

    def stop(self, wait: bool = False) -> None:
        """Stop the scheduler."""
        if not self._is_running or self.scheduler is None:
            logger.warning("Maintenance scheduler is not running")
            return

        self.scheduler.shutdown(wait=wait)
        self.scheduler = None
        self._is_running = False
        logger.info("Maintenance scheduler stopped")

    async def sweep_caches(self) -> dict:
        """
        Evict expired entries from the in-process and shared caches.

        Returns:
            Number of entries evicted per cache
        """
        evicted = {"fast_cache": self.aggregator.fast_cache.sweep(), "shared_cache": 0}

        if self.aggregator.shared_cache is not None:
            try:
                evicted["shared_cache"] = await self.aggregator.shared_cache.clear_expired()
            except AcquisitionError as e:
                self._stats["errors"] += 1
                logger.error(f"Shared cache sweep failed: {e}", exc_info=True)

        self._last_sweep = datetime.now()
        self._stats["sweeps"] += 1
        self._stats["fast_cache_evicted"] += evicted["fast_cache"]
        self._stats["shared_cache_evicted"] += evicted["shared_cache"]

        logger.info("Cache sweep completed", extra=evicted)
        return evicted

    async def purge_store(self) -> int:
        """Delete expired searches from the store; returns the number removed."""
        if self.aggregator.store is None:
            return 0
        try:
            purged = await self.aggregator.store.purge_expired()
        except AcquisitionError as e:
            self._stats["errors"] += 1
            logger.error(f"Search store purge failed: {e}", exc_info=True)
            return 0

        self._last_purge = datetime.now()
        self._stats["store_purges"] += 1
        self._stats["searches_purged"] += purged
        logger.info(f"Search store purge completed: {purged} searches removed")
        return purged

    def reset_budget(self) -> Optional[dict]:
        """
        Reset budget tracking.

        Returns:
            The tracker's reset summary, or None without a tracker
        """
        tracker = self.aggregator.cost_tracker
        if tracker is None:
            return None

        reset_result = tracker.reset(confirm=True)
        self._last_budget_reset = datetime.now()
        self._stats["budget_resets"] += 1

        logger.info(
            "Daily budget reset completed",
            extra={
                "previous_total_cost": reset_result["previous_statistics"]["total_cost"],
                "previous_requests": reset_result["previous_statistics"]["total_requests"],
            },
        )
        return reset_result

    async def prefetch_popular(self) -> int:
        """
        Re-run the most popular stored searches so their caches stay warm.

        Stops early when the budget is exhausted.

        Returns:
            Number of searches refreshed
        """
        if self.aggregator.store is None:
            return 0

        try:
            searches = await self.aggregator.store.popular_searches(self.prefetch_limit)
        except AcquisitionError as e:
            self._stats["errors"] += 1
            logger.error(f"Could not list popular searches: {e}", exc_info=True)
            return 0

        tracker = self.aggregator.cost_tracker
        refreshed = 0
        for search in searches:
            query = search.to_query()
            try:
                if tracker is not None:
                    tracker.can_make_request(SourceTier.PRIMARY_SOURCE.value)
                await self.aggregator.acquire(query, refresh=True)
                refreshed += 1

            except BudgetExhaustedError:
                logger.error(
                    "Budget exhausted during prefetch - stopping",
                    extra={"refreshed": refreshed, "remaining": len(searches) - refreshed},
                )
                break

            except AcquisitionError as e:
                self._stats["prefetch_failures"] += 1
                logger.warning(
                    f"Prefetch failed for {search.search_key}: {e}",
                    extra={"search_key": search.search_key},
                )

        self._last_prefetch = datetime.now()
        self._stats["prefetch_runs"] += 1
        self._stats["searches_prefetched"] += refreshed
        logger.info(f"Prefetched {refreshed}/{len(searches)} popular searches")
        return refreshed

    def is_running(self) -> bool:
        """Check if scheduler is currently running."""
        return self._is_running

    def get_statistics(self) -> dict:
        """
        Get scheduler statistics.

        Returns:
            Dictionary with scheduler state, last activity and job info
        """
        def stamp(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "is_running": self._is_running,
            "prefetch_enabled": self.prefetch_enabled,
            "last_activity": {
                "last_sweep": stamp(self._last_sweep),
                "last_purge": stamp(self._last_purge),
                "last_budget_reset": stamp(self._last_budget_reset),
                "last_prefetch": stamp(self._last_prefetch),
            },
            **self._stats,
            "scheduled_jobs": [
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                }
                for job in self.scheduler.get_jobs()
            ]
            if self._is_running and self.scheduler is not None
            else [],
        }

    def __repr__(self) -> str:
        return (
            f"MaintenanceScheduler(running={self._is_running}, "
            f"sweep_interval={self.sweep_interval_seconds}s, prefetch={self.prefetch_enabled})"
        )
