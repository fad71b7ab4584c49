"""
Tests for the scraping layer: rate-limited fetcher, board adapters and
the Playwright page fetcher (browser mocked).
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from jobwaterfall.normalizer.schemas import SourceTier
from jobwaterfall.scrapers.adapters import IndeedAdapter, JobBankAdapter, default_adapters
from jobwaterfall.scrapers.browser import PlaywrightPageFetcher
from jobwaterfall.scrapers.rate_limited_fetcher import RateLimitedFetcher
from jobwaterfall.utils.exceptions import (
    AuthError,
    RetryExhaustedError,
    SelectorMissingError,
    TransientUpstreamError,
    UpstreamTimeoutError,
)


class ScriptedPageFetcher:
    """Returns or raises the scripted outcomes in order."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    async def fetch_page(self, url, wait_selector=None):
        self.requests.append((url, wait_selector))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_fetcher(page_fetcher, fake_clock, **kwargs):
    options = {"min_interval": 2.0, "max_retries": 3, "retry_delay": 1.0}
    options.update(kwargs)
    return RateLimitedFetcher(page_fetcher, clock=fake_clock, sleep=fake_clock.sleep, **options)


class TestRateLimiting:
    """Test per-source request spacing."""

    @pytest.mark.asyncio
    async def test_same_source_spaced(self, fake_clock):
        """Test a second request to one source waits out the interval."""
        fetcher = make_fetcher(ScriptedPageFetcher(["<html></html>"]), fake_clock)

        await fetcher.fetch("indeed", "https://a")
        await fetcher.fetch("indeed", "https://b")

        assert fake_clock.sleeps == [2.0]
        assert fetcher.get_statistics()["throttled"] == 1

    @pytest.mark.asyncio
    async def test_partial_interval_waits_remainder(self, fake_clock):
        """Test only the remaining part of the interval is slept."""
        fetcher = make_fetcher(ScriptedPageFetcher(["<html></html>"]), fake_clock)

        await fetcher.fetch("indeed", "https://a")
        fake_clock.advance(1.5)
        await fetcher.fetch("indeed", "https://b")

        assert fake_clock.sleeps == [0.5]

    @pytest.mark.asyncio
    async def test_sources_independent(self, fake_clock):
        """Test different sources do not throttle each other."""
        fetcher = make_fetcher(ScriptedPageFetcher(["<html></html>"]), fake_clock)

        await fetcher.fetch("indeed", "https://a")
        await fetcher.fetch("jobbank", "https://b")

        assert fake_clock.sleeps == []
        assert fetcher.get_statistics()["sources"] == ["indeed", "jobbank"]

    @pytest.mark.asyncio
    async def test_concurrent_callers_queue(self, fake_clock):
        """Test concurrent callers for one source are each spaced."""
        fetcher = make_fetcher(ScriptedPageFetcher(["<html></html>"]), fake_clock)

        await asyncio.gather(*(fetcher.wait_turn("indeed") for _ in range(3)))

        assert fake_clock.sleeps == [2.0, 2.0]


class TestRetry:
    """Test retry of fetch-and-parse."""

    @pytest.mark.asyncio
    async def test_selector_miss_retried_then_parsed(self, fake_clock):
        """Test a parse failure is retried with backoff and the next page parsed."""
        pages = ScriptedPageFetcher(["<bad/>", "<good/>"])
        fetcher = make_fetcher(pages, fake_clock, min_interval=0.0)

        def parse(html):
            if html == "<bad/>":
                raise SelectorMissingError("no cards", source="indeed")
            return ["listing"]

        assert await fetcher.fetch("indeed", "https://a", parse=parse) == ["listing"]
        assert fake_clock.sleeps == [1.0]
        assert fetcher.get_statistics()["retries"] == 1

    @pytest.mark.asyncio
    async def test_exhaustion(self, fake_clock):
        """Test exhausting attempts raises RetryExhaustedError with the last cause."""
        last = TransientUpstreamError("browser crashed")
        pages = ScriptedPageFetcher([TransientUpstreamError("first"), TransientUpstreamError("second"), last])
        fetcher = make_fetcher(pages, fake_clock, min_interval=0.0)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await fetcher.fetch("indeed", "https://a")

        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is last
        assert fake_clock.sleeps == [1.0, 2.0]
        assert fetcher.get_statistics()["failures"] == 1

    @pytest.mark.asyncio
    async def test_fatal_errors_propagate(self, fake_clock):
        """Test non-transient errors are not retried."""
        pages = ScriptedPageFetcher([AuthError("blocked", status_code=403)])
        fetcher = make_fetcher(pages, fake_clock, min_interval=0.0)

        with pytest.raises(AuthError):
            await fetcher.fetch("indeed", "https://a")
        assert len(pages.requests) == 1


class TestAdapters:
    """Test board adapters."""

    def test_build_url(self):
        """Test board-specific query parameters."""
        assert IndeedAdapter().build_url("sales", "Edmonton, AB") == "https://ca.indeed.com/jobs?q=sales&l=Edmonton%2C+AB"
        assert "searchstring=sales" in JobBankAdapter().build_url("sales", "Edmonton")

    def test_default_adapters_share_parser(self):
        """Test the default adapters cover every board with one parser."""
        adapters = default_adapters()
        assert [a.name for a in adapters] == ["indeed", "jobbank", "linkedin"]
        assert len({id(a.parser) for a in adapters}) == 1

    @pytest.mark.asyncio
    async def test_search_parses_page(self, fake_clock, indeed_html):
        """Test search fetches with the card selector and parses listings."""
        pages = ScriptedPageFetcher([indeed_html])
        fetcher = make_fetcher(pages, fake_clock)

        listings = await IndeedAdapter().search(fetcher, "sales", "Edmonton, AB")

        assert len(listings) == 2
        assert listings[0].source == SourceTier.SCRAPER
        assert pages.requests[0][1] == ".job_seen_beacon"


@pytest.fixture
def mock_browser():
    """Patched async_playwright yielding a mocked browser and page."""
    page = MagicMock()
    page.set_extra_http_headers = AsyncMock()
    page.goto = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.content = AsyncMock(return_value="<html>ok</html>")

    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()

    browser = MagicMock()
    browser.is_connected = MagicMock(return_value=True)
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()

    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock()

    with patch("jobwaterfall.scrapers.browser.async_playwright") as mock_ap:
        mock_ap.return_value.start = AsyncMock(return_value=playwright)
        yield {"page": page, "context": context, "browser": browser, "playwright": playwright}


class TestPlaywrightPageFetcher:
    """Test the shared browser with Playwright mocked."""

    @pytest.mark.asyncio
    async def test_fetch_launches_once(self, mock_browser):
        """Test two fetches share one browser launch and close their contexts."""
        fetcher = PlaywrightPageFetcher(max_pages=2, timeout_ms=3000)

        assert await fetcher.fetch_page("https://a", ".card") == "<html>ok</html>"
        await fetcher.fetch_page("https://b")

        assert mock_browser["playwright"].chromium.launch.await_count == 1
        assert mock_browser["context"].close.await_count == 2
        mock_browser["page"].wait_for_selector.assert_awaited_once_with(".card", timeout=1000)
        assert fetcher.get_statistics()["pages_fetched"] == 2

        await fetcher.close()
        mock_browser["browser"].close.assert_awaited_once()
        assert fetcher.get_statistics()["browser_running"] is False

    @pytest.mark.asyncio
    async def test_missing_selector_still_returns_html(self, mock_browser):
        """Test a wait_for_selector miss leaves the decision to the parser."""
        mock_browser["page"].wait_for_selector.side_effect = PlaywrightError("not found")
        fetcher = PlaywrightPageFetcher()

        assert await fetcher.fetch_page("https://a", ".card") == "<html>ok</html>"

    @pytest.mark.asyncio
    async def test_timeout_mapped(self, mock_browser):
        """Test navigation timeouts become UpstreamTimeoutError."""
        mock_browser["page"].goto.side_effect = PlaywrightTimeoutError("Timeout 3000ms exceeded")
        fetcher = PlaywrightPageFetcher(timeout_ms=3000)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await fetcher.fetch_page("https://a")

        assert exc_info.value.timeout == 3.0
        mock_browser["context"].close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_browser_error_mapped(self, mock_browser):
        """Test other browser errors become TransientUpstreamError."""
        mock_browser["page"].goto.side_effect = PlaywrightError("net::ERR_CONNECTION_RESET")
        fetcher = PlaywrightPageFetcher()

        with pytest.raises(TransientUpstreamError):
            await fetcher.fetch_page("https://a")
        assert fetcher.get_statistics()["errors"] == 1

    @pytest.mark.asyncio
    async def test_page_setup_error_closes_context(self, mock_browser):
        """Test a failure opening the page is mapped and the context still closed."""
        mock_browser["context"].new_page.side_effect = PlaywrightError("Target page, context or browser has been closed")
        fetcher = PlaywrightPageFetcher()

        with pytest.raises(TransientUpstreamError):
            await fetcher.fetch_page("https://a")

        mock_browser["context"].close.assert_awaited_once()
        assert fetcher.get_statistics()["errors"] == 1

    @pytest.mark.asyncio
    async def test_context_creation_error_mapped(self, mock_browser):
        """Test a failure creating the context is mapped with nothing to close."""
        mock_browser["browser"].new_context.side_effect = PlaywrightError("Browser has been closed")
        fetcher = PlaywrightPageFetcher()

        with pytest.raises(TransientUpstreamError):
            await fetcher.fetch_page("https://a")

        mock_browser["context"].close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_page_setup_error_retried_by_rate_limited_fetcher(self, mock_browser, fake_clock):
        """Test a page setup failure is retried and the next attempt succeeds."""
        page = mock_browser["page"]
        mock_browser["context"].new_page.side_effect = [PlaywrightError("crashed"), page]
        fetcher = make_fetcher(PlaywrightPageFetcher(), fake_clock, min_interval=0.0)

        assert await fetcher.fetch("indeed", "https://a") == "<html>ok</html>"
        assert fake_clock.sleeps == [1.0]
        assert mock_browser["context"].close.await_count == 2
