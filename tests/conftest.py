"""
Pytest configuration and shared fixtures for Job Waterfall tests.

Provides:
    - Temporary directories for SQLite databases and logs
    - A fake clock with a recording async sleep
    - Sample listings, queries and upstream payloads
    - Job-board HTML samples
"""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest

from jobwaterfall.normalizer.schemas import JobListing, JobQuery, SourceTier
from jobwaterfall.storage.search_store import SearchStore
from jobwaterfall.storage.shared_cache import SqliteSharedCache


# ========== Directory and Path Fixtures ==========


@pytest.fixture
def temp_data_dir():
    """
    Create temporary directory for SQLite databases.

    Yields:
        Path to temporary directory
    """
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def temp_log_dir():
    """
    Create temporary directory for log files.

    Yields:
        Path to temporary directory
    """
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


# ========== Time Fixtures ==========


class FakeClock:
    """
    Manually advanced clock.

    ``clock()`` returns the current reading; ``await clock.sleep(s)``
    records the delay and advances time instead of waiting.
    """

    def __init__(self, start: float = 1_000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeDateClock:
    """Aware-datetime clock for the SQLite tiers."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def date_clock() -> FakeDateClock:
    return FakeDateClock()


# ========== Record Fixtures ==========


@pytest.fixture
def make_listing() -> Callable[..., JobListing]:
    """
    Factory for listings with distinct URLs.

    Example:
        >>> make_listing(1, source=SourceTier.SCRAPER, prefix="indeed")
    """

    def factory(n: int, source: SourceTier = SourceTier.PRIMARY_SOURCE, prefix: str = "job", **fields) -> JobListing:
        data = {
            "title": f"Sales Representative {n}",
            "company": f"Company {prefix} {n}",
            "location": "Edmonton, AB",
            "url": f"https://jobs.example.com/{prefix}/{n}",
            "source": source,
        }
        data.update(fields)
        return JobListing(**data)

    return factory


@pytest.fixture
def sales_query() -> JobQuery:
    return JobQuery(keywords=["sales"], location="Edmonton, AB")


@pytest.fixture
def jsearch_item() -> dict:
    """One raw JSearch ``data[]`` item."""
    return {
        "job_id": "abc123",
        "job_title": "Senior Account Executive",
        "employer_name": "Acme Corp",
        "job_city": "Edmonton",
        "job_state": "AB",
        "job_country": "CA",
        "job_is_remote": False,
        "job_employment_type": "FULLTIME",
        "job_apply_link": "https://acme.example.com/careers/abc123",
        "job_description": "Own the full sales cycle for mid-market accounts.",
        "job_min_salary": 70000,
        "job_max_salary": 90000,
        "job_salary_currency": "CAD",
        "job_salary_period": "YEAR",
        "job_posted_at_timestamp": 1767225600,
        "job_publisher": "LinkedIn",
        "job_required_skills": ["CRM", "Negotiation"],
    }


@pytest.fixture
def generative_items() -> list[dict]:
    """Decoded items as the generative service returns them."""
    return [
        {
            "title": "Inside Sales Representative",
            "company": "Northwind",
            "location": "Edmonton, AB",
            "url": "https://northwind.example.com/jobs/1",
            "summary": "Outbound calling and pipeline management.",
            "salary": "$55,000 - $65,000",
            "postedDate": "2026-02-20",
            "source": "Indeed",
            "skillMatchPercent": 80,
            "skills": ["Salesforce", "Cold calling"],
            "workType": "On-site",
            "experienceLevel": "Entry level",
        },
        {
            "title": "Territory Sales Manager",
            "company": "Contoso",
            "location": "Edmonton, AB",
            "url": "https://contoso.example.com/careers/77",
            "summary": "Manage dealer relationships across northern Alberta.",
            "salary": None,
            "postedDate": None,
            "source": "Company website",
            "skillMatchPercent": 65,
            "skills": ["Negotiation"],
            "workType": "hybrid",
            "experienceLevel": "Senior",
        },
    ]


# ========== Storage Fixtures ==========


@pytest.fixture
def shared_cache(temp_data_dir, date_clock):
    """SqliteSharedCache in a temporary directory with a fake clock."""
    cache = SqliteSharedCache(db_path=temp_data_dir / "shared_cache.db", default_ttl=3600, clock=date_clock)
    yield cache
    cache.close()


@pytest.fixture
def search_store(temp_data_dir, date_clock):
    """SearchStore in a temporary directory with a fake clock."""
    store = SearchStore(db_path=temp_data_dir / "search_store.db", ttl_days=21, clock=date_clock)
    yield store
    store.close()


# ========== Job Board HTML Fixtures ==========


@pytest.fixture
def indeed_html() -> str:
    """Indeed results page: two complete cards and one without a link."""
    return """
    <html><body>
      <div id="mosaic-provider-jobcards">
        <div class="job_seen_beacon">
          <h2 class="jobTitle"><a href="/viewjob?jk=111">Sales Associate</a></h2>
          <span data-testid="company-name">Best Retail</span>
          <div data-testid="text-location">Edmonton, AB</div>
          <div class="salary-snippet">$18 - $22 an hour</div>
          <div class="job-snippet">Help customers in store. Hybrid schedule available.</div>
          <span class="date">Posted 3 days ago</span>
        </div>
        <div class="job_seen_beacon">
          <h2 class="jobTitle"><a href="https://ca.indeed.com/viewjob?jk=222">Senior Sales Manager</a></h2>
          <span data-testid="company-name">Prairie Motors</span>
          <div data-testid="text-location">Sherwood Park, AB</div>
        </div>
        <div class="job_seen_beacon">
          <h2 class="jobTitle">Sales Lead (no link)</h2>
          <span data-testid="company-name">Ghost Inc</span>
        </div>
      </div>
    </body></html>
    """


@pytest.fixture
def indeed_empty_html() -> str:
    """Indeed page for a search with no results."""
    return """
    <html><body>
      <div class="jobsearch-NoResult-messageContainer">
        The search did not match any jobs.
      </div>
    </body></html>
    """


@pytest.fixture
def jobbank_html() -> str:
    """Job Bank page whose cards have no employer element."""
    return """
    <html><body>
      <article class="resultJobItem">
        <span class="resultJobItemTitle"><a href="/jobsearch/jobposting/4001">Retail sales supervisor</a></span>
        <span class="resultJobItemLocation">Edmonton (AB)</span>
        <span class="resultJobItemWage">$20.00 hourly</span>
      </article>
    </body></html>
    """
