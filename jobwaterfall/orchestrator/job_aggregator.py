"""
Job Aggregator Orchestrator.

Tiered acquisition waterfall: in-process cache, shared cache, search
store, primary job API, job-board scrapers and finally the generative
service. Each tier is only entered when the earlier ones came back
short of the minimum record count.
"""

import asyncio
import logging
from typing import Any, Iterable, Optional, Sequence

from jobwaterfall.clients.generative_source import GenerativeJobSource
from jobwaterfall.config import AcquisitionConfig, ScraperConfig
from jobwaterfall.normalizer.schemas import AcquisitionResult, JobListing, JobQuery, SourceTier
from jobwaterfall.orchestrator.circuit_breaker import CircuitBreaker
from jobwaterfall.orchestrator.cost_tracker import CostTracker
from jobwaterfall.orchestrator.resilient_caller import ResilientCaller, RetryContext
from jobwaterfall.orchestrator.timed_cache import TimedCache
from jobwaterfall.scrapers.adapters import JobBoardAdapter
from jobwaterfall.scrapers.rate_limited_fetcher import RateLimitedFetcher
from jobwaterfall.storage.search_store import SearchStore
from jobwaterfall.storage.shared_cache import SqliteSharedCache
from jobwaterfall.utils.exceptions import AcquisitionFailedError, BudgetExhaustedError

logger = logging.getLogger(__name__)


# Merge precedence of the tiers that can contribute to a fresh result
LIVE_TIER_ORDER = (
    SourceTier.PERSISTENT_STORE,
    SourceTier.PRIMARY_SOURCE,
    SourceTier.SCRAPER,
    SourceTier.GENERATIVE,
)

GENERATIVE_OPERATION_KEY = "generative:job_search"


def _describe(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class _WaterfallState:
    """Records gathered so far in one ``acquire`` call."""

    def __init__(self):
        self.batches: dict[SourceTier, list[JobListing]] = {}
        self.tier_failures: dict[str, str] = {}
        self.search_count: Optional[int] = None

    def add(self, tier: SourceTier, records: Iterable[JobListing]) -> None:
        self.batches.setdefault(tier, []).extend(records)

    def fail(self, label: str, error: BaseException) -> None:
        self.tier_failures[label] = _describe(error)

    def ordered_batches(self) -> list[list[JobListing]]:
        return [self.batches[tier] for tier in LIVE_TIER_ORDER if tier in self.batches]

    def tiers_used(self) -> list[SourceTier]:
        return [tier for tier in LIVE_TIER_ORDER if self.batches.get(tier)]

    def unique_count(self) -> int:
        return len(JobAggregator.merge_records(self.ordered_batches()))


class JobAggregator:
    """
    Tiered job acquisition with short-circuiting and write-back.

    Retrieval Priority:
        1. TimedCache (in-process, returns on hit)
        2. Shared cache (returns on hit, backfills the TimedCache)
        3. Search store (returns when it holds enough records, else seeds the merge)
        4. Primary job API (paid; budget, circuit breaker and retries per keyword)
        5. Job-board scrapers (every board x keyword, failures ignored)
        6. Generative service (paid; only while still below the minimum)

    Tiers run strictly in order; calls within a tier run concurrently.
    Results gathered from tiers 3-6 are de-duplicated (earliest tier wins)
    and written to both caches and the store. One deadline bounds the
    whole call: when it elapses the records gathered so far are returned
    with ``timed_out=True`` and are not cached.

    Example:
        >>> aggregator = JobAggregator(
        ...     fast_cache=TimedCache(),
        ...     shared_cache=SqliteSharedCache(),
        ...     store=SearchStore(),
        ...     primary=JSearchClient(),
        ...     scrapers=default_adapters(),
        ...     fetcher=RateLimitedFetcher(PlaywrightPageFetcher()),
        ...     generative=GenerativeJobSource(PerplexityClient(), cost_tracker=tracker),
        ...     cost_tracker=tracker,
        ... )
        >>> result = await aggregator.acquire(JobQuery(keywords=["sales"], location="Edmonton, AB"))
        >>> print(result.source_tier, result.total)
    """

    def __init__(
        self,
        fast_cache: Optional[TimedCache] = None,
        shared_cache: Optional[SqliteSharedCache] = None,
        store: Optional[SearchStore] = None,
        primary: Optional[Any] = None,
        scrapers: Optional[Sequence[JobBoardAdapter]] = None,
        fetcher: Optional[RateLimitedFetcher] = None,
        generative: Optional[GenerativeJobSource] = None,
        caller: Optional[ResilientCaller] = None,
        breaker: Optional[CircuitBreaker] = None,
        cost_tracker: Optional[CostTracker] = None,
        min_results: Optional[int] = None,
        max_live_keywords: Optional[int] = None,
        deadline: Optional[float] = None,
        generative_limit: Optional[int] = None,
        scrapers_enabled: Optional[bool] = None,
    ):
        """
        Initialize aggregator.

        Every collaborator is optional; a missing one is skipped as a tier.

        Args:
            fast_cache: In-process cache (a fresh TimedCache when omitted)
            shared_cache: Cache shared between workers
            store: Persistent search store
            primary: Primary job API client exposing
                ``search(query, location, page, result_count)``
            scrapers: Job-board adapters
            fetcher: Rate-limited page fetcher used by the adapters
            generative: Generative job source
            caller: Retry wrapper for live calls
            breaker: Per-operation circuit breaker
            cost_tracker: Budget tracker for paid tiers
            min_results: Record count that ends the waterfall
            max_live_keywords: Keywords fanned out to live tiers
            deadline: Seconds allowed for the whole waterfall
            generative_limit: Listings requested from the generative tier
            scrapers_enabled: Overrides ScraperConfig.ENABLED
        """
        self.fast_cache = fast_cache or TimedCache()
        self.shared_cache = shared_cache
        self.store = store
        self.primary = primary
        self.scrapers = list(scrapers or [])
        self.fetcher = fetcher
        self.generative = generative
        self.caller = caller or ResilientCaller()
        self.breaker = breaker or CircuitBreaker()
        self.cost_tracker = cost_tracker

        self.min_results = min_results or AcquisitionConfig.MIN_RESULTS
        self.max_live_keywords = max_live_keywords or AcquisitionConfig.MAX_LIVE_KEYWORDS
        self.deadline = deadline or AcquisitionConfig.DEADLINE_SECONDS
        self.generative_limit = generative_limit or AcquisitionConfig.GENERATIVE_LIMIT
        self.scrapers_enabled = (
            ScraperConfig.ENABLED if scrapers_enabled is None else scrapers_enabled
        )

        self._stats = self._empty_stats()

        logger.info(
            "JobAggregator initialized",
            extra={
                "min_results": self.min_results,
                "deadline": self.deadline,
                "scrapers": [adapter.name for adapter in self.scrapers],
                "primary": self.primary is not None,
                "generative": self.generative is not None,
            },
        )

    @staticmethod
    def _empty_stats() -> dict:
        return {
            "total_requests": 0,
            "fast_cache_hits": 0,
            "shared_cache_hits": 0,
            "store_hits": 0,
            "store_seeds": 0,
            "primary_calls": 0,
            "primary_failures": 0,
            "scraper_calls": 0,
            "scraper_failures": 0,
            "generative_calls": 0,
            "generative_failures": 0,
            "hybrid_results": 0,
            "timeouts": 0,
            "failed_acquisitions": 0,
            "refreshes": 0,
        }

    @staticmethod
    def operation_key(keyword: str, location: str) -> str:
        """Circuit breaker key for a primary source call."""
        return f"{SourceTier.PRIMARY_SOURCE.value}:{keyword.strip().lower()}:{location.strip().lower()}"

    @staticmethod
    def merge_records(batches: Iterable[Iterable[JobListing]]) -> list[JobListing]:
        """
        Merge batches in order, keeping the first record per dedup key.

        Pure and idempotent: ``merge_records([merge_records(b)])`` equals
        ``merge_records(b)``.

        Args:
            batches: Record batches, earliest tier first

        Returns:
            De-duplicated records in first-seen order
        """
        seen: set[str] = set()
        merged: list[JobListing] = []
        for batch in batches:
            for record in batch:
                key = record.dedup_key()
                if key in seen:
                    continue
                seen.add(key)
                merged.append(record)
        return merged

    async def acquire(self, query: JobQuery, refresh: bool = False) -> AcquisitionResult:
        """
        Run the waterfall for ``query``.

        Args:
            query: Search parameters
            refresh: Skip reading the caches and the store so the live tiers
                answer; results are still written back to all three

        Returns:
            AcquisitionResult annotated with the tier(s) that supplied it

        Raises:
            AcquisitionFailedError: Every tier failed or returned no records
        """
        self._stats["total_requests"] += 1
        if refresh:
            self._stats["refreshes"] += 1
        state = _WaterfallState()

        try:
            return await asyncio.wait_for(self._waterfall(query, state, refresh), timeout=self.deadline)

        except asyncio.TimeoutError:
            self._stats["timeouts"] += 1
            logger.warning(
                f"Acquisition deadline of {self.deadline}s elapsed",
                extra={"search_key": query.search_key(), "tiers": [t.value for t in state.tiers_used()]},
            )
            return await self._finalize(query, state, timed_out=True)

    async def acquire_for_keywords(
        self,
        keywords: Sequence[str],
        location: str,
        **kwargs: Any,
    ) -> AcquisitionResult:
        """
        Search with a long keyword list such as one extracted from a resume.

        Only the first 10 distinct keywords are used.

        Example:
            >>> await aggregator.acquire_for_keywords(["python", "sql", "aws"], "Calgary, AB")
        """
        query = JobQuery(keywords=list(keywords), location=location, **kwargs)
        query = query.model_copy(update={"keywords": query.top_keywords(10)})
        return await self.acquire(query)

    async def _waterfall(self, query: JobQuery, state: _WaterfallState, refresh: bool = False) -> AcquisitionResult:
        if not refresh:
            result = await self._read_stored_tiers(query, state)
            if result is not None:
                return result

        # Tier 4: primary job API
        await self._run_primary(query, state)
        if state.unique_count() >= self.min_results:
            return await self._finalize(query, state)

        # Tier 5: job-board scrapers
        await self._run_scrapers(query, state)
        if state.unique_count() >= self.min_results:
            return await self._finalize(query, state)

        # Tier 6: generative service
        await self._run_generative(query, state)
        return await self._finalize(query, state)

    async def _read_stored_tiers(self, query: JobQuery, state: _WaterfallState) -> Optional[AcquisitionResult]:
        """Tiers 1-3; returns a result on a hit, otherwise seeds ``state`` from the store."""
        cache_key = query.cache_key()

        # Tier 1: in-process cache
        cached = self.fast_cache.get(cache_key)
        if cached:
            self._stats["fast_cache_hits"] += 1
            logger.debug(f"Fast cache hit for {query.search_key()}")
            return self._cached_result(cached, SourceTier.FAST_CACHE)

        # Tier 2: shared cache
        shared = await self._read_shared_cache(cache_key, state)
        if shared:
            self._stats["shared_cache_hits"] += 1
            self.fast_cache.set(cache_key, shared)
            logger.debug(f"Shared cache hit for {query.search_key()}")
            return self._cached_result(shared, SourceTier.DISTRIBUTED_CACHE)

        # Tier 3: search store
        stored = await self._read_store(query, state)
        if stored is not None and stored.records:
            state.search_count = stored.search_count
            state.add(SourceTier.PERSISTENT_STORE, stored.records)
            if state.unique_count() >= self.min_results:
                self._stats["store_hits"] += 1
                records = self.merge_records(state.ordered_batches())[: query.max_results]
                self.fast_cache.set(cache_key, records)
                await self._write_shared_cache(cache_key, records)
                logger.info(
                    f"Search store hit for {query.search_key()}: {len(records)} records",
                    extra={"search_count": stored.search_count},
                )
                return AcquisitionResult(
                    records=records,
                    source_tier=SourceTier.PERSISTENT_STORE,
                    cached=True,
                    search_count=stored.search_count,
                    tiers_used=[SourceTier.PERSISTENT_STORE],
                )
            self._stats["store_seeds"] += 1
            logger.debug(f"Search store returned {len(stored.records)} records; below minimum")
        return None

    def _cached_result(self, records: list[JobListing], tier: SourceTier) -> AcquisitionResult:
        return AcquisitionResult(records=list(records), source_tier=tier, cached=True, tiers_used=[tier])

    async def _read_shared_cache(self, cache_key: str, state: _WaterfallState) -> list[JobListing]:
        if self.shared_cache is None:
            return []
        try:
            payload = await self.shared_cache.get(cache_key)
            return [JobListing.from_dict(item) for item in payload or []]
        except Exception as e:
            # Unavailable or corrupt shared cache never fails the call
            state.fail(SourceTier.DISTRIBUTED_CACHE.value, e)
            logger.warning(f"Shared cache read failed, skipping tier: {e}")
            return []

    async def _write_shared_cache(self, cache_key: str, records: list[JobListing]) -> None:
        if self.shared_cache is None:
            return
        try:
            await self.shared_cache.set(cache_key, [record.to_dict() for record in records])
        except Exception as e:
            logger.warning(f"Shared cache write failed: {e}")

    async def _read_store(self, query: JobQuery, state: _WaterfallState):
        if self.store is None:
            return None
        try:
            return await self.store.find(query)
        except Exception as e:
            state.fail(SourceTier.PERSISTENT_STORE.value, e)
            logger.warning(f"Search store read failed, skipping tier: {e}")
            return None

    async def _call_primary(self, keyword: str, location: str, limit: int) -> list[JobListing]:
        """One primary source call gated by budget, then breaker, then retries."""
        tier = SourceTier.PRIMARY_SOURCE.value
        key = self.operation_key(keyword, location)

        if self.cost_tracker is not None:
            self.cost_tracker.can_make_request(tier)
        self.breaker.ensure_call_allowed(key)

        def charge_failed_attempt(context: RetryContext) -> None:
            if self.cost_tracker is not None:
                self.cost_tracker.record_request(tier, keyword, success=False)

        self._stats["primary_calls"] += 1
        try:
            response = await self.caller.call(
                lambda: self.primary.search(keyword, location, 1, limit),
                name=key,
                on_retry=charge_failed_attempt,
            )
        except asyncio.CancelledError:
            self.breaker.release(key)
            raise
        except Exception:
            self.breaker.record_failure(key)
            if self.cost_tracker is not None:
                self.cost_tracker.record_request(tier, keyword, success=False)
            raise

        self.breaker.record_success(key)
        if self.cost_tracker is not None:
            self.cost_tracker.record_request(tier, keyword, success=True)
        return list(response.get("records") or [])

    async def _run_primary(self, query: JobQuery, state: _WaterfallState) -> None:
        if self.primary is None:
            return
        keywords = query.top_keywords(self.max_live_keywords)

        async def run(keyword: str) -> list[JobListing]:
            records = await self._call_primary(keyword, query.location, query.max_results)
            state.add(SourceTier.PRIMARY_SOURCE, records)
            return records

        results = await asyncio.gather(*(run(k) for k in keywords), return_exceptions=True)

        found = 0
        for keyword, outcome in zip(keywords, results):
            if isinstance(outcome, BaseException):
                self._stats["primary_failures"] += 1
                state.fail(f"{SourceTier.PRIMARY_SOURCE.value}[{keyword}]", outcome)
                logger.warning(
                    f"Primary source failed for '{keyword}': {_describe(outcome)}",
                    extra={"keyword": keyword, "error_type": type(outcome).__name__},
                )
            else:
                found += len(outcome)

        logger.info(
            f"Primary source returned {found} records for {len(keywords)} keywords",
            extra={"search_key": query.search_key(), "records": found},
        )

    async def _run_scrapers(self, query: JobQuery, state: _WaterfallState) -> None:
        if not self.scrapers_enabled or not self.scrapers or self.fetcher is None:
            return
        keywords = query.top_keywords(self.max_live_keywords)
        jobs = [(adapter, keyword) for adapter in self.scrapers for keyword in keywords]

        async def run(adapter: JobBoardAdapter, keyword: str) -> list[JobListing]:
            records = await adapter.search(self.fetcher, keyword, query.location)
            state.add(SourceTier.SCRAPER, records)
            return records

        self._stats["scraper_calls"] += len(jobs)
        results = await asyncio.gather(*(run(a, k) for a, k in jobs), return_exceptions=True)

        failures = []
        found = 0
        for (adapter, keyword), outcome in zip(jobs, results):
            if isinstance(outcome, BaseException):
                failures.append(outcome)
                logger.warning(
                    f"Scraper {adapter.name} failed for '{keyword}': {_describe(outcome)}",
                    extra={"board": adapter.name, "keyword": keyword},
                )
            else:
                found += len(outcome)

        self._stats["scraper_failures"] += len(failures)
        if failures and len(failures) == len(jobs):
            state.fail(SourceTier.SCRAPER.value, failures[-1])

        logger.info(
            f"Scrapers returned {found} records ({len(failures)}/{len(jobs)} searches failed)",
            extra={"search_key": query.search_key(), "records": found},
        )

    async def _run_generative(self, query: JobQuery, state: _WaterfallState) -> None:
        if self.generative is None:
            return
        key = GENERATIVE_OPERATION_KEY
        self._stats["generative_calls"] += 1

        try:
            self.breaker.ensure_call_allowed(key)
            try:
                records = await self.caller.call(
                    lambda: self.generative.search(query, self.generative_limit),
                    name=key,
                )
            except (asyncio.CancelledError, BudgetExhaustedError):
                self.breaker.release(key)
                raise
            except Exception:
                self.breaker.record_failure(key)
                raise
            self.breaker.record_success(key)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats["generative_failures"] += 1
            state.fail(SourceTier.GENERATIVE.value, e)
            logger.warning(f"Generative tier failed: {_describe(e)}")
            return

        state.add(SourceTier.GENERATIVE, records)
        logger.info(f"Generative tier returned {len(records)} records")

    async def _finalize(
        self,
        query: JobQuery,
        state: _WaterfallState,
        timed_out: bool = False,
    ) -> AcquisitionResult:
        records = self.merge_records(state.ordered_batches())[: query.max_results]

        if not records:
            self._stats["failed_acquisitions"] += 1
            logger.error(
                f"No records from any tier for {query.search_key()}",
                extra={"tier_failures": state.tier_failures, "timed_out": timed_out},
            )
            raise AcquisitionFailedError(tier_failures=state.tier_failures, timed_out=timed_out)

        tiers = state.tiers_used()
        source_tier = tiers[0] if len(tiers) == 1 else SourceTier.HYBRID
        if source_tier == SourceTier.HYBRID:
            self._stats["hybrid_results"] += 1

        if not timed_out:
            await self._write_back(query, records)

        logger.info(
            f"Acquired {len(records)} records for {query.search_key()}",
            extra={
                "source_tier": source_tier.value,
                "tiers": [t.value for t in tiers],
                "timed_out": timed_out,
                "tier_failures": len(state.tier_failures),
            },
        )
        return AcquisitionResult(
            records=records,
            source_tier=source_tier,
            cached=False,
            timed_out=timed_out,
            search_count=state.search_count,
            tier_failures=dict(state.tier_failures),
            tiers_used=tiers,
        )

    async def _write_back(self, query: JobQuery, records: list[JobListing]) -> None:
        cache_key = query.cache_key()
        self.fast_cache.set(cache_key, records)
        await self._write_shared_cache(cache_key, records)
        if self.store is not None:
            try:
                await self.store.insert(query, records)
            except Exception as e:
                logger.warning(f"Search store write failed: {e}")

    async def invalidate(self, query: JobQuery) -> bool:
        """
        Drop ``query`` from both cache tiers.

        The search store keeps its copy until it expires.

        Returns:
            True if either cache held an entry
        """
        cache_key = query.cache_key()
        removed = self.fast_cache.invalidate(cache_key)
        if self.shared_cache is not None:
            try:
                removed = await self.shared_cache.delete(cache_key) or removed
            except Exception as e:
                logger.warning(f"Shared cache delete failed: {e}")
        logger.info(f"Invalidated cached results for {query.search_key()}", extra={"removed": removed})
        return removed

    def get_statistics(self) -> dict:
        """
        Get aggregator statistics.

        Returns:
            Dictionary with per-tier counters, hit rates and the
            statistics of the in-process cache, caller and breaker
        """
        total = self._stats["total_requests"]
        cache_hits = (
            self._stats["fast_cache_hits"]
            + self._stats["shared_cache_hits"]
            + self._stats["store_hits"]
        )
        statistics = {
            **self._stats,
            "cache_hit_rate_pct": round(cache_hits / total * 100, 2) if total else 0,
            "fast_cache": self.fast_cache.get_statistics(),
            "caller": self.caller.get_statistics(),
            "breaker": self.breaker.get_statistics(),
        }
        if self.cost_tracker is not None:
            statistics["cost"] = self.cost_tracker.get_statistics()
        if self.fetcher is not None:
            statistics["fetcher"] = self.fetcher.get_statistics()
        return statistics

    def reset_statistics(self) -> dict:
        """Reset counters; returns the values before the reset."""
        previous = dict(self._stats)
        self._stats = self._empty_stats()
        self.caller.reset_statistics()
        logger.info("Aggregator statistics reset")
        return previous

    async def cleanup(self) -> None:
        """Close clients and stores owned by the tiers."""
        for resource in (self.primary, getattr(self.generative, "client", None)):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()
        if self.fetcher is not None:
            page_fetcher = getattr(self.fetcher, "page_fetcher", None)
            close = getattr(page_fetcher, "close", None)
            if close is not None:
                await close()
        for resource in (self.shared_cache, self.store):
            if resource is not None:
                resource.close()
        self.fast_cache.stop_sweeper()
        logger.info("JobAggregator cleaned up")

    def __repr__(self) -> str:
        tiers = ["fast_cache"]
        if self.shared_cache is not None:
            tiers.append("shared_cache")
        if self.store is not None:
            tiers.append("store")
        if self.primary is not None:
            tiers.append("primary")
        if self.scrapers:
            tiers.append(f"scrapers({len(self.scrapers)})")
        if self.generative is not None:
            tiers.append("generative")
        return f"JobAggregator(tiers={'>'.join(tiers)}, min_results={self.min_results})"
