"""
Persistent search store.

Keeps the records of past searches for three weeks so a repeat search
can be answered without calling any live source. Each stored search
tracks how often it was served, which also drives prefetching of
popular searches.
"""

import asyncio
import json
import logging
import re
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from jobwaterfall.config import CacheConfig
from jobwaterfall.normalizer.schemas import JobListing, JobQuery, WorkType
from jobwaterfall.utils.exceptions import CacheError

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StoredSearch:
    """A persisted search and its records."""

    search_id: int
    search_key: str
    keywords: list[str]
    location: str
    work_type: str
    radius_km: int
    records: list[JobListing]
    search_count: int
    created_at: datetime
    last_searched: datetime
    expires_at: datetime

    def to_query(self) -> JobQuery:
        """Rebuild the query this search answered."""
        return JobQuery(
            keywords=self.keywords,
            location=self.location,
            work_type=WorkType(self.work_type),
            radius_km=self.radius_km,
        )


class SearchStore:
    """
    SQLite-backed store of past searches.

    A stored search matches a query when it contains every query keyword,
    its location matches the query location case-insensitively, its work
    type equals the query's (or is 'any'), and it has not expired. The
    most recently searched match wins.

    Example:
        >>> store = SearchStore(Path("data/search_store.db"))
        >>> await store.insert(query, listings)
        >>> hit = await store.find(query)
        >>> hit.search_count
        2
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        ttl_days: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize store.

        Args:
            db_path: SQLite database path (defaults to CacheConfig.SEARCH_STORE_DB_PATH)
            ttl_days: Retention in days (defaults to CacheConfig.STORE_TTL_DAYS)
            clock: Returns the current aware datetime (defaults to UTC now)
        """
        self.db_path = Path(db_path or CacheConfig.SEARCH_STORE_DB_PATH)
        self.ttl_days = ttl_days or CacheConfig.STORE_TTL_DAYS
        self._clock = clock or _utc_now
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

        logger.info(f"SearchStore initialized: db={self.db_path}, ttl={self.ttl_days} days")

    def _initialize_database(self) -> None:
        try:
            cursor = self._get_connection().cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS searches (
                    search_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    search_key TEXT NOT NULL UNIQUE,
                    keywords TEXT NOT NULL,
                    location TEXT NOT NULL,
                    work_type TEXT NOT NULL,
                    radius_km INTEGER NOT NULL,
                    jobs TEXT NOT NULL,
                    result_count INTEGER NOT NULL,
                    search_count INTEGER DEFAULT 1,
                    created_at TEXT NOT NULL,
                    last_searched TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_searches_expires_at
                ON searches(expires_at)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_searches_last_searched
                ON searches(last_searched)
            """)
        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to initialize search store: {e}",
                operation="initialize",
                db_path=str(self.db_path),
            ) from e

    def _get_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            self._connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,
            )
            self._connection.row_factory = sqlite3.Row
        return self._connection

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        def locked() -> Any:
            with self._lock:
                return func(*args)
        return await asyncio.to_thread(locked)

    @staticmethod
    def _row_to_search(row: sqlite3.Row) -> StoredSearch:
        return StoredSearch(
            search_id=row["search_id"],
            search_key=row["search_key"],
            keywords=json.loads(row["keywords"]),
            location=row["location"],
            work_type=row["work_type"],
            radius_km=row["radius_km"],
            records=[JobListing.from_dict(item) for item in json.loads(row["jobs"])],
            search_count=row["search_count"],
            created_at=datetime.fromisoformat(row["created_at"]),
            last_searched=datetime.fromisoformat(row["last_searched"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
        )

    # ---- synchronous implementations ---------------------------------

    def _find(self, query: JobQuery) -> Optional[StoredSearch]:
        now = self._clock().isoformat()
        wanted = set(query.normalized_keywords())
        location_pattern = re.compile(re.escape(query.location), re.IGNORECASE)

        try:
            rows = self._get_connection().execute(
                """
                SELECT * FROM searches
                WHERE expires_at > ?
                AND (work_type = ? OR work_type = ?)
                ORDER BY last_searched DESC
                """,
                (now, query.work_type.value, WorkType.ANY.value),
            ).fetchall()
        except sqlite3.Error as e:
            raise CacheError(f"Failed to query search store: {e}", operation="read", cache_key=query.search_key()) from e

        for row in rows:
            stored_keywords = {k.lower() for k in json.loads(row["keywords"])}
            if wanted <= stored_keywords and location_pattern.search(row["location"]):
                self._touch(row["search_id"])
                refreshed = self._get_connection().execute(
                    "SELECT * FROM searches WHERE search_id = ?", (row["search_id"],)
                ).fetchone()
                search = self._row_to_search(refreshed)
                logger.debug(
                    f"Search store hit: {search.search_key}",
                    extra={"search_count": search.search_count, "records": len(search.records)},
                )
                return search

        logger.debug(f"Search store miss: {query.search_key()}")
        return None

    def _insert(self, query: JobQuery, records: list[JobListing], ttl_days: int) -> int:
        now = self._clock()
        expires_at = now + timedelta(days=ttl_days)
        search_key = query.search_key()
        try:
            jobs = json.dumps([record.to_dict() for record in records], ensure_ascii=False)
            connection = self._get_connection()
            connection.execute(
                """
                INSERT INTO searches (
                    search_key, keywords, location, work_type, radius_km, jobs,
                    result_count, search_count, created_at, last_searched, expires_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
                ON CONFLICT(search_key) DO UPDATE SET
                    jobs = excluded.jobs,
                    result_count = excluded.result_count,
                    last_searched = excluded.last_searched,
                    expires_at = excluded.expires_at
                """,
                (
                    search_key,
                    json.dumps(query.normalized_keywords()),
                    query.location,
                    query.work_type.value,
                    query.radius_km,
                    jobs,
                    len(records),
                    now.isoformat(),
                    now.isoformat(),
                    expires_at.isoformat(),
                ),
            )
            row = connection.execute(
                "SELECT search_id FROM searches WHERE search_key = ?", (search_key,)
            ).fetchone()
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise CacheError(f"Failed to store search: {e}", operation="write", cache_key=search_key) from e

        logger.info(
            f"Stored search {search_key} ({len(records)} records)",
            extra={"expires_at": expires_at.isoformat()},
        )
        return row["search_id"]

    def _touch(self, search_id: int) -> bool:
        try:
            cursor = self._get_connection().execute(
                "UPDATE searches SET search_count = search_count + 1, last_searched = ? WHERE search_id = ?",
                (self._clock().isoformat(), search_id),
            )
        except sqlite3.Error as e:
            raise CacheError(f"Failed to update search usage: {e}", operation="touch", search_id=search_id) from e
        return cursor.rowcount > 0

    def _purge_expired(self) -> int:
        try:
            cursor = self._get_connection().execute(
                "DELETE FROM searches WHERE expires_at <= ?", (self._clock().isoformat(),)
            )
        except sqlite3.Error as e:
            raise CacheError(f"Failed to purge expired searches: {e}", operation="purge_expired") from e
        if cursor.rowcount:
            logger.info(f"Purged {cursor.rowcount} expired searches")
        return cursor.rowcount

    def _popular(self, limit: int) -> list[StoredSearch]:
        try:
            rows = self._get_connection().execute(
                """
                SELECT * FROM searches
                WHERE expires_at > ?
                ORDER BY search_count DESC, last_searched DESC
                LIMIT ?
                """,
                (self._clock().isoformat(), limit),
            ).fetchall()
        except sqlite3.Error as e:
            raise CacheError(f"Failed to list popular searches: {e}", operation="popular") from e
        return [self._row_to_search(row) for row in rows]

    def _statistics(self) -> dict:
        try:
            row = self._get_connection().execute(
                """
                SELECT COUNT(*) AS searches,
                       COALESCE(SUM(result_count), 0) AS jobs,
                       COALESCE(SUM(search_count), 0) AS served
                FROM searches
                """
            ).fetchone()
        except sqlite3.Error as e:
            raise CacheError(f"Failed to get statistics: {e}", operation="statistics") from e

        searches = row["searches"]
        return {
            "total_searches": searches,
            "total_cached_jobs": row["jobs"],
            "average_jobs_per_search": round(row["jobs"] / searches, 2) if searches else 0.0,
            "total_times_served": row["served"],
            "ttl_days": self.ttl_days,
            "db_path": str(self.db_path),
        }

    # ---- public async API --------------------------------------------

    async def find(self, query: JobQuery) -> Optional[StoredSearch]:
        """
        Find the best stored search for ``query`` and record the hit.

        Returns:
            StoredSearch with ``search_count`` already incremented, or None
        """
        return await self._run(self._find, query)

    async def insert(self, query: JobQuery, records: list[JobListing], ttl_days: Optional[int] = None) -> int:
        """
        Store (or refresh) the records for ``query``.

        Returns:
            The search id
        """
        return await self._run(self._insert, query, records, ttl_days or self.ttl_days)

    async def touch(self, search_id: int) -> bool:
        """Increment the usage counter and stamp ``last_searched``."""
        return await self._run(self._touch, search_id)

    async def purge_expired(self) -> int:
        return await self._run(self._purge_expired)

    async def popular_searches(self, limit: int = 10) -> list[StoredSearch]:
        """Unexpired searches ordered by how often they were served."""
        return await self._run(self._popular, limit)

    async def get_statistics(self) -> dict:
        return await self._run(self._statistics)

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def __repr__(self) -> str:
        return f"SearchStore(db_path={str(self.db_path)!r}, ttl_days={self.ttl_days})"
