"""
Shared headless browser for job-board scraping.

One Chromium instance is launched lazily for the whole process and pages
are checked out of it under a semaphore.
"""

import asyncio
import logging
from typing import Optional

from playwright.async_api import Browser, Error as PlaywrightError, Playwright, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from jobwaterfall.config import ScraperConfig
from jobwaterfall.utils.exceptions import TransientUpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)


class PlaywrightPageFetcher:
    """
    Render pages with a single shared headless Chromium.

    The browser is started on first use behind an ``asyncio.Lock`` so
    concurrent first callers never launch two instances. At most
    ``max_pages`` pages are open at once.

    Example:
        >>> fetcher = PlaywrightPageFetcher()
        >>> html = await fetcher.fetch_page("https://ca.indeed.com/jobs?q=sales&l=Edmonton")
        >>> await fetcher.close()
    """

    def __init__(
        self,
        max_pages: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        user_agent: Optional[str] = None,
    ):
        """
        Initialize fetcher.

        Args:
            max_pages: Concurrent page limit (defaults to ScraperConfig.MAX_PAGES)
            timeout_ms: Navigation timeout in milliseconds
            user_agent: User agent for every page
        """
        self.max_pages = max_pages or ScraperConfig.MAX_PAGES
        self.timeout_ms = timeout_ms or ScraperConfig.PAGE_TIMEOUT_MS
        self.user_agent = user_agent or ScraperConfig.USER_AGENT

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._launch_lock = asyncio.Lock()
        self._pages = asyncio.Semaphore(self.max_pages)

        self._stats = {"launches": 0, "pages_fetched": 0, "errors": 0}

    async def _ensure_browser(self) -> Browser:
        async with self._launch_lock:
            if self._browser is None or not self._browser.is_connected():
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=True)
                self._stats["launches"] += 1
                logger.info("Launched headless Chromium")
            return self._browser

    async def fetch_page(self, url: str, wait_selector: Optional[str] = None) -> str:
        """
        Fetch the rendered HTML of a page.

        Args:
            url: Page URL
            wait_selector: Selector to wait for before reading the DOM

        Returns:
            Rendered HTML

        Raises:
            UpstreamTimeoutError: Navigation exceeded the timeout
            TransientUpstreamError: Any other browser failure
        """
        browser = await self._ensure_browser()

        async with self._pages:
            context = None
            try:
                context = await browser.new_context(user_agent=self.user_agent)
                page = await context.new_page()
                await page.set_extra_http_headers({
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                    "Accept-Language": "en-CA,en;q=0.9",
                })
                await page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
                if wait_selector:
                    try:
                        await page.wait_for_selector(wait_selector, timeout=self.timeout_ms // 3)
                    except PlaywrightError as e:
                        # The parser decides whether a missing selector matters
                        logger.debug(f"Selector {wait_selector} not found on {url}: {e}")
                html = await page.content()
                self._stats["pages_fetched"] += 1
                return html

            except PlaywrightTimeoutError as e:
                self._stats["errors"] += 1
                raise UpstreamTimeoutError(
                    f"Page load timed out: {url}",
                    timeout=self.timeout_ms / 1000,
                    endpoint=url,
                ) from e

            except PlaywrightError as e:
                self._stats["errors"] += 1
                raise TransientUpstreamError(f"Browser fetch failed: {e}", endpoint=url) from e

            finally:
                if context is not None:
                    await context.close()

    async def close(self) -> None:
        """Close the shared browser and the Playwright driver."""
        async with self._launch_lock:
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
                logger.info("Closed headless Chromium")
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None

    async def __aenter__(self) -> "PlaywrightPageFetcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def get_statistics(self) -> dict:
        return {**self._stats, "browser_running": self._browser is not None}

    def __repr__(self) -> str:
        return f"PlaywrightPageFetcher(max_pages={self.max_pages}, running={self._browser is not None})"
