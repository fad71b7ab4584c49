"""
Job board HTML parser.

Extracts job cards from rendered search-result pages using per-board CSS
selectors. Cards missing any required field (title, company, url) are
skipped; optional fields that do not match become None.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from jobwaterfall.normalizer.schemas import JobListing
from jobwaterfall.normalizer.transformer import RecordTransformer
from jobwaterfall.utils.exceptions import NormalizationError, SelectorMissingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoardSelectors:
    """
    CSS selectors describing one job board's result page.

    Attributes:
        board: Board name used as the listing's ``board``
        card: Selector matching one job card
        title: Title selector (required)
        company: Company selector (required unless default_company is set)
        link: Anchor selector providing the listing URL (required)
        location: Location selector
        salary: Salary selector
        description: Snippet selector
        posted_date: Posting date selector
        empty_marker: Selector present when a search has no results
        default_company: Company used when the company selector misses
        base_url: Base for resolving relative links
    """

    board: str
    card: str
    title: str
    company: str
    link: str
    location: Optional[str] = None
    salary: Optional[str] = None
    description: Optional[str] = None
    posted_date: Optional[str] = None
    empty_marker: Optional[str] = None
    default_company: Optional[str] = None
    base_url: Optional[str] = None

    @property
    def required(self) -> list[str]:
        return [self.title, self.company, self.link]


INDEED_SELECTORS = BoardSelectors(
    board="indeed",
    card=".job_seen_beacon",
    title=".jobTitle",
    company='[data-testid="company-name"]',
    link=".jobTitle a",
    location='[data-testid="text-location"]',
    salary=".salary-snippet",
    description=".job-snippet",
    posted_date=".date",
    empty_marker=".jobsearch-NoResult-messageContainer",
    base_url="https://ca.indeed.com",
)

JOBBANK_SELECTORS = BoardSelectors(
    board="jobbank",
    card="article.resultJobItem",
    title=".resultJobItemTitle",
    company=".resultJobItemEmployer",
    link=".resultJobItemTitle a",
    location=".resultJobItemLocation",
    salary=".resultJobItemWage",
    posted_date=".date",
    empty_marker=".noresult",
    default_company="Government of Canada",
    base_url="https://www.jobbank.gc.ca",
)

LINKEDIN_SELECTORS = BoardSelectors(
    board="linkedin",
    card=".base-search-card",
    title=".base-search-card__title",
    company=".base-search-card__subtitle",
    link="a.base-card__full-link",
    location=".job-search-card__location",
    salary=".job-search-card__salary-info",
    posted_date="time",
    empty_marker=".jobs-search-no-results-banner",
    base_url="https://www.linkedin.com",
)


def _text(element: Optional[Tag]) -> Optional[str]:
    if element is None:
        return None
    text = re.sub(r"\s+", " ", element.get_text(" ", strip=True)).strip()
    return text or None


class JobBoardParser:
    """
    Selector-driven job card extraction.

    Example:
        >>> parser = JobBoardParser()
        >>> listings = parser.parse_listings(html, INDEED_SELECTORS, url)
        >>> listings[0].board
        'indeed'
    """

    def __init__(self, parser: str = "lxml"):
        """
        Initialize parser.

        Args:
            parser: BeautifulSoup parser backend (lxml, html.parser)
        """
        self.parser = parser

    def extract_cards(self, html: str, selectors: BoardSelectors, url: str) -> list[dict[str, Optional[str]]]:
        """
        Extract raw field values from every usable card on a page.

        Args:
            html: Rendered page HTML
            selectors: Board selectors
            url: Page URL (for errors and relative links)

        Returns:
            One dict per usable card; an empty list for a genuine
            no-results page

        Raises:
            SelectorMissingError: If cards exist but none carries the
                required fields, or neither cards nor the empty-results
                marker are present
        """
        soup = BeautifulSoup(html or "", self.parser)
        cards = soup.select(selectors.card)

        if not cards:
            if selectors.empty_marker and soup.select_one(selectors.empty_marker):
                logger.info(f"{selectors.board}: no results at {url}")
                return []
            raise SelectorMissingError(
                f"No job cards found on {selectors.board} page",
                source=selectors.board,
                url=url,
                selectors=[selectors.card],
            )

        extracted = []
        skipped = 0
        for card in cards:
            fields = self._extract_card(card, selectors)
            if all(fields.get(name) for name in ("title", "company", "url")):
                extracted.append(fields)
            else:
                skipped += 1

        if not extracted:
            raise SelectorMissingError(
                f"{len(cards)} {selectors.board} cards found but none had the required fields",
                source=selectors.board,
                url=url,
                selectors=selectors.required,
            )

        logger.debug(
            f"{selectors.board}: extracted {len(extracted)} cards",
            extra={"board": selectors.board, "cards": len(cards), "skipped": skipped},
        )
        return extracted

    def parse_listings(self, html: str, selectors: BoardSelectors, url: str) -> list[JobListing]:
        """
        Extract cards and convert them to scraper-tier listings.

        Cards that fail record validation are dropped.
        """
        listings = []
        for card in self.extract_cards(html, selectors, url):
            try:
                listings.append(RecordTransformer.from_board_card(card, selectors.board))
            except (ValueError, NormalizationError) as e:
                logger.debug(f"Dropped {selectors.board} card: {e}")
        return listings

    def _extract_card(self, card: Tag, selectors: BoardSelectors) -> dict[str, Optional[str]]:
        def select(selector: Optional[str]) -> Optional[str]:
            return _text(card.select_one(selector)) if selector else None

        link = card.select_one(selectors.link)
        href = link.get("href") if link is not None else None
        if isinstance(href, list):
            href = href[0] if href else None
        url = urljoin(selectors.base_url, href.strip()) if href and selectors.base_url else href

        return {
            "title": select(selectors.title),
            "company": select(selectors.company) or selectors.default_company,
            "url": url or None,
            "location": select(selectors.location),
            "salary": select(selectors.salary),
            "description": select(selectors.description),
            "posted_date": select(selectors.posted_date),
        }

    def __repr__(self) -> str:
        return f"JobBoardParser(parser={self.parser!r})"
