"""
Scrapers Module

Browser-backed job board scraping.

Components:
    - browser: Shared headless Chromium (Playwright)
    - rate_limited_fetcher: Per-board request spacing and retry
    - adapters: Indeed, Job Bank and LinkedIn search adapters
"""

from jobwaterfall.scrapers.adapters import (
    IndeedAdapter,
    JobBankAdapter,
    JobBoardAdapter,
    LinkedInAdapter,
    default_adapters,
)
from jobwaterfall.scrapers.rate_limited_fetcher import RateLimitedFetcher

__all__ = [
    "RateLimitedFetcher",
    "JobBoardAdapter",
    "IndeedAdapter",
    "JobBankAdapter",
    "LinkedInAdapter",
    "default_adapters",
]
