"""
Per-source rate limiting and retry for browser-backed scraping.

Requests to the same job board are spaced by a minimum interval; the
gate, page fetch and parse are retried together with exponential
backoff.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from jobwaterfall.config import ScraperConfig
from jobwaterfall.utils.exceptions import (
    RetryExhaustedError,
    SelectorMissingError,
    TransientUpstreamError,
)

logger = logging.getLogger(__name__)


class PageFetcher(Protocol):
    """Anything that can render a page to HTML."""

    async def fetch_page(self, url: str, wait_selector: Optional[str] = None) -> str:
        ...


class RateLimitedFetcher:
    """
    Gate page fetches per source and retry failed fetch-and-parse runs.

    Each source owns an ``asyncio.Lock``; a caller holds it only while
    waiting out the remaining interval and stamping its request time, so
    concurrent callers for one source queue while other sources proceed.

    Attributes:
        min_interval: Minimum seconds between requests to one source
        max_retries: Total attempts per fetch
        retry_delay: First backoff delay in seconds (doubles each retry)

    Example:
        >>> fetcher = RateLimitedFetcher(PlaywrightPageFetcher())
        >>> listings = await fetcher.fetch("indeed", url, parse=parse_page)
    """

    def __init__(
        self,
        page_fetcher: PageFetcher,
        min_interval: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        """
        Initialize fetcher.

        Args:
            page_fetcher: Browser collaborator
            min_interval: Seconds between requests per source (default: ScraperConfig)
            max_retries: Attempts per fetch (default: ScraperConfig.MAX_RETRIES)
            retry_delay: Initial backoff delay (default: ScraperConfig.RETRY_DELAY_SECONDS)
            clock: Monotonic time source (default: time.monotonic)
            sleep: Async sleep (default: asyncio.sleep)
        """
        self.page_fetcher = page_fetcher
        self.min_interval = (
            min_interval if min_interval is not None else ScraperConfig.MIN_INTERVAL_SECONDS
        )
        self.max_retries = max_retries or ScraperConfig.MAX_RETRIES
        self.retry_delay = (
            retry_delay if retry_delay is not None else ScraperConfig.RETRY_DELAY_SECONDS
        )
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep

        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_request: Dict[str, float] = {}

        self._stats = {
            "requests": 0,
            "throttled": 0,
            "retries": 0,
            "failures": 0,
        }

    def _lock_for(self, source: str) -> asyncio.Lock:
        lock = self._locks.get(source)
        if lock is None:
            lock = self._locks.setdefault(source, asyncio.Lock())
        return lock

    async def wait_turn(self, source: str) -> None:
        """Block until ``source`` may be requested again, then claim the slot."""
        async with self._lock_for(source):
            last = self._last_request.get(source)
            if last is not None:
                remaining = self.min_interval - (self._clock() - last)
                if remaining > 0:
                    self._stats["throttled"] += 1
                    logger.debug(f"Throttling {source} for {remaining:.2f}s")
                    await self._sleep(remaining)
            self._last_request[source] = self._clock()
            self._stats["requests"] += 1

    async def fetch(
        self,
        source: str,
        url: str,
        parse: Optional[Callable[[str], Any]] = None,
        wait_selector: Optional[str] = None,
    ) -> Any:
        """
        Fetch a page for ``source`` and optionally parse it.

        Transient browser errors and selector misses are retried; any
        other error propagates unchanged.

        Args:
            source: Source name used for rate limiting
            url: Page URL
            parse: Function applied to the HTML
            wait_selector: Selector the browser waits for

        Returns:
            Parsed value, or the HTML when no parser is given

        Raises:
            RetryExhaustedError: All attempts failed
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            await self.wait_turn(source)
            try:
                html = await self.page_fetcher.fetch_page(url, wait_selector)
                return parse(html) if parse else html

            except (TransientUpstreamError, SelectorMissingError) as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    self._stats["retries"] += 1
                    logger.warning(
                        f"Retrying {source} fetch in {delay:.1f}s: {e}",
                        extra={
                            "source": source,
                            "attempt": attempt + 1,
                            "max_retries": self.max_retries,
                            "url": url,
                        },
                    )
                    await self._sleep(delay)

        self._stats["failures"] += 1
        logger.error(
            f"{source} fetch failed after {self.max_retries} attempts",
            extra={"source": source, "url": url},
        )
        raise RetryExhaustedError(f"{source}:fetch", self.max_retries, last_error) from last_error

    def get_statistics(self) -> dict:
        return {
            **self._stats,
            "sources": sorted(self._last_request),
            "min_interval": self.min_interval,
        }

    def reset_statistics(self) -> None:
        for key in self._stats:
            self._stats[key] = 0

    def __repr__(self) -> str:
        return f"RateLimitedFetcher(min_interval={self.min_interval}, max_retries={self.max_retries})"
