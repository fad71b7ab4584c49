"""
JSearch API client.

Asynchronous client for the JSearch job search API (RapidAPI), the
primary structured source of the waterfall. One ``search`` call is a
single HTTP request; retries, circuit breaking and budgeting are applied
by the caller.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from jobwaterfall.config import JSearchConfig, ResilienceConfig
from jobwaterfall.normalizer.schemas import JobListing
from jobwaterfall.normalizer.transformer import RecordTransformer
from jobwaterfall.utils.exceptions import (
    FatalUpstreamError,
    NormalizationError,
    TransientUpstreamError,
    classify_status,
)

logger = logging.getLogger(__name__)


@dataclass
class JSearchClientConfig:
    """Configuration for the JSearch client.

    Attributes:
        api_key: RapidAPI key
        host: RapidAPI host header
        base_url: API base URL
        country: Two-letter country filter
        date_posted: Posting age filter (all, today, 3days, week, month)
        timeout: Request timeout in seconds
    """

    api_key: str
    host: str = "jsearch.p.rapidapi.com"
    base_url: str = "https://jsearch.p.rapidapi.com"
    country: str = "ca"
    date_posted: str = "month"
    timeout: float = 30

    @classmethod
    def from_env(cls) -> "JSearchClientConfig":
        """Create configuration from environment variables."""
        return cls(
            api_key=JSearchConfig.API_KEY,
            host=JSearchConfig.HOST,
            base_url=JSearchConfig.BASE_URL,
            country=JSearchConfig.COUNTRY,
            date_posted=JSearchConfig.DATE_POSTED,
            timeout=ResilienceConfig.ATTEMPT_TIMEOUT_SECONDS,
        )


class JSearchClient:
    """Asynchronous JSearch API client.

    Non-success statuses are mapped onto the error taxonomy: 429, 408 and
    5xx raise transient errors, 401/403 raise AuthError and other 4xx
    raise FatalUpstreamError. Network failures become
    TransientUpstreamError.

    Example:
        ```python
        async with JSearchClient(JSearchClientConfig.from_env()) as client:
            result = await client.search("sales representative", "Edmonton, AB")
            print(len(result["records"]))
        ```
    """

    SEARCH_PATH = "/search"

    def __init__(self, config: Optional[JSearchClientConfig] = None):
        """Initialize JSearch client.

        Args:
            config: Client configuration (defaults to environment)
        """
        self.config = config or JSearchClientConfig.from_env()
        self._session: Optional[aiohttp.ClientSession] = None
        self._stats = {
            "requests_made": 0,
            "records_returned": 0,
            "records_dropped": 0,
            "errors": 0,
        }

        logger.info(
            "Initialized JSearchClient",
            extra={"country": self.config.country, "date_posted": self.config.date_posted},
        )

    async def __aenter__(self) -> "JSearchClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure aiohttp session is initialized."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            logger.debug("Created new aiohttp session")

    async def close(self) -> None:
        """Close aiohttp session and cleanup resources."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Closed aiohttp session")

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}{self.SEARCH_PATH}"

    def _headers(self) -> dict[str, str]:
        return {
            "x-rapidapi-host": self.config.host,
            "x-rapidapi-key": self.config.api_key,
        }

    def build_params(self, query: str, location: str, page: int = 1, num_pages: int = 1) -> dict[str, str]:
        """Request parameters for one search page."""
        return {
            "query": f"{query} in {location}" if location else query,
            "page": str(page),
            "num_pages": str(num_pages),
            "date_posted": self.config.date_posted,
            "country": self.config.country,
        }

    async def _request(self, params: dict[str, str]) -> dict[str, Any]:
        """Make one GET request and return the decoded JSON body.

        Raises:
            TransientUpstreamError: 408/429/5xx or network failure
            FatalUpstreamError: 401/403 and other 4xx
        """
        await self._ensure_session()
        self._stats["requests_made"] += 1

        logger.debug("Making JSearch request", extra={"params": params})

        try:
            async with self._session.get(self.endpoint, headers=self._headers(), params=params) as response:
                if response.status >= 400:
                    body = await response.text()
                    retry_after = response.headers.get("Retry-After")
                    self._stats["errors"] += 1
                    logger.error(
                        f"JSearch request failed: {response.status}",
                        extra={"status": response.status, "query": params.get("query")},
                    )
                    raise classify_status(
                        response.status,
                        endpoint=self.endpoint,
                        response_body=body,
                        retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                    )

                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    self._stats["errors"] += 1
                    raise FatalUpstreamError(
                        "JSearch returned a non-JSON body",
                        endpoint=self.endpoint,
                        status_code=response.status,
                    ) from e

        except aiohttp.ClientError as e:
            self._stats["errors"] += 1
            logger.error("HTTP client error", extra={"error": str(e)})
            raise TransientUpstreamError(
                f"HTTP client error: {e}",
                endpoint=self.endpoint,
            ) from e

    async def search(
        self,
        query: str,
        location: str,
        page: int = 1,
        result_count: Optional[int] = None,
    ) -> dict[str, Any]:
        """Search for jobs.

        Args:
            query: Keyword or phrase
            location: Location text (appended as ``in <location>``)
            page: Result page
            result_count: Maximum records to return

        Returns:
            ``{"records": list[JobListing], "request_id": str | None}``

        Raises:
            TransientUpstreamError: Retryable failure
            FatalUpstreamError: Non-retryable failure, including an
                error status in the body
        """
        body = await self._request(self.build_params(query, location, page=page))

        if body.get("status") not in (None, "OK"):
            raise FatalUpstreamError(
                f"JSearch reported status {body.get('status')}",
                endpoint=self.endpoint,
                request_id=body.get("request_id"),
            )

        records = self.parse_records(body.get("data") or [])
        if result_count is not None:
            records = records[:result_count]

        self._stats["records_returned"] += len(records)
        logger.info(
            f"JSearch returned {len(records)} records for '{query}'",
            extra={"query": query, "location": location, "request_id": body.get("request_id")},
        )
        return {"records": records, "request_id": body.get("request_id")}

    def parse_records(self, items: list[dict[str, Any]]) -> list[JobListing]:
        """Convert raw ``data[]`` items, dropping ones that cannot be normalized."""
        records = []
        for item in items:
            try:
                records.append(RecordTransformer.from_jsearch(item))
            except (NormalizationError, ValueError, TypeError) as e:
                self._stats["records_dropped"] += 1
                logger.debug(f"Dropped JSearch item: {e}")
        return records

    def get_statistics(self) -> dict:
        return dict(self._stats)

    def __repr__(self) -> str:
        return f"JSearchClient(country={self.config.country!r}, configured={bool(self.config.api_key)})"
