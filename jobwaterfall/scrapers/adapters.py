"""
Job board adapters.

Each adapter knows how to build a board's search URL and which
selectors describe its result cards. Fetching goes through a shared
RateLimitedFetcher.
"""

from typing import Optional
from urllib.parse import urlencode

from jobwaterfall.normalizer.schemas import JobListing
from jobwaterfall.parsers.job_board_parser import (
    INDEED_SELECTORS,
    JOBBANK_SELECTORS,
    LINKEDIN_SELECTORS,
    BoardSelectors,
    JobBoardParser,
)
from jobwaterfall.scrapers.rate_limited_fetcher import RateLimitedFetcher


class JobBoardAdapter:
    """
    Base adapter for one job board.

    Subclasses set ``selectors`` and ``search_url`` and map the query
    onto board parameters in ``search_params``.
    """

    selectors: BoardSelectors
    search_url: str

    def __init__(self, parser: Optional[JobBoardParser] = None):
        self.parser = parser or JobBoardParser()

    @property
    def name(self) -> str:
        return self.selectors.board

    def search_params(self, keyword: str, location: str) -> dict[str, str]:
        raise NotImplementedError

    def build_url(self, keyword: str, location: str) -> str:
        return f"{self.search_url}?{urlencode(self.search_params(keyword, location))}"

    async def search(self, fetcher: RateLimitedFetcher, keyword: str, location: str) -> list[JobListing]:
        """
        Search the board for one keyword.

        Returns:
            Scraper-tier listings (empty for a no-results page)
        """
        url = self.build_url(keyword, location)
        return await fetcher.fetch(
            self.name,
            url,
            parse=lambda html: self.parser.parse_listings(html, self.selectors, url),
            wait_selector=self.selectors.card,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class IndeedAdapter(JobBoardAdapter):
    selectors = INDEED_SELECTORS
    search_url = "https://ca.indeed.com/jobs"

    def search_params(self, keyword: str, location: str) -> dict[str, str]:
        return {"q": keyword, "l": location}


class JobBankAdapter(JobBoardAdapter):
    """Government of Canada Job Bank."""

    selectors = JOBBANK_SELECTORS
    search_url = "https://www.jobbank.gc.ca/jobsearch/jobsearch"

    def search_params(self, keyword: str, location: str) -> dict[str, str]:
        return {"searchstring": keyword, "locationstring": location}


class LinkedInAdapter(JobBoardAdapter):
    """LinkedIn public (guest) job search."""

    selectors = LINKEDIN_SELECTORS
    search_url = "https://www.linkedin.com/jobs/search/"

    def search_params(self, keyword: str, location: str) -> dict[str, str]:
        return {"keywords": keyword, "location": location}


def default_adapters(parser: Optional[JobBoardParser] = None) -> list[JobBoardAdapter]:
    """One adapter per supported board, sharing a parser."""
    parser = parser or JobBoardParser()
    return [IndeedAdapter(parser), JobBankAdapter(parser), LinkedInAdapter(parser)]
