"""
Shared cache tier backed by SQLite.

Cache entries outlive the process and are visible to every worker that
points at the same database file. The interface is asynchronous; the
blocking SQLite calls run in a worker thread.
"""

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from jobwaterfall.config import CacheConfig
from jobwaterfall.utils.exceptions import CacheError

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SqliteSharedCache:
    """
    SQLite-based shared cache with per-entry TTL and hit statistics.

    Values must be JSON serializable. Expired rows are never returned and
    are removed by ``clear_expired``.

    Attributes:
        db_path: Path to SQLite database file
        default_ttl: TTL in seconds when ``set`` is called without one

    Example:
        >>> cache = SqliteSharedCache(Path("data/shared_cache.db"))
        >>> await cache.set("jobs:abc", [{"title": "Sales Rep"}], ttl=3600)
        >>> await cache.get("jobs:abc")
        [{'title': 'Sales Rep'}]
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        default_ttl: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize shared cache.

        Args:
            db_path: Path to SQLite database (defaults to CacheConfig.SHARED_CACHE_DB_PATH)
            default_ttl: TTL in seconds (defaults to CacheConfig.SHARED_TTL_SECONDS)
            clock: Returns the current aware datetime (defaults to UTC now)
        """
        self.db_path = Path(db_path or CacheConfig.SHARED_CACHE_DB_PATH)
        self.default_ttl = default_ttl or CacheConfig.SHARED_TTL_SECONDS
        self._clock = clock or _utc_now
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

        logger.info(f"SqliteSharedCache initialized: db={self.db_path}, ttl={self.default_ttl}s")

    def _initialize_database(self) -> None:
        """Create database schema if it doesn't exist."""
        try:
            cursor = self._get_connection().cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS shared_cache (
                    cache_key TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    hit_count INTEGER DEFAULT 0,
                    last_accessed TEXT
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_shared_cache_expires_at
                ON shared_cache(expires_at)
            """)
        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to initialize database: {e}",
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

    # ---- synchronous implementations ---------------------------------

    def _get(self, key: str) -> Optional[Any]:
        now = self._clock().isoformat()
        try:
            cursor = self._get_connection().cursor()
            cursor.execute(
                "SELECT data FROM shared_cache WHERE cache_key = ? AND expires_at > ?",
                (key, now),
            )
            row = cursor.fetchone()
            if row is None:
                logger.debug(f"Shared cache miss: {key}")
                return None

            cursor.execute(
                "UPDATE shared_cache SET hit_count = hit_count + 1, last_accessed = ? WHERE cache_key = ?",
                (now, key),
            )
            return json.loads(row["data"])

        except (sqlite3.Error, json.JSONDecodeError) as e:
            raise CacheError(f"Failed to read from shared cache: {e}", operation="read", cache_key=key) from e

    def _set(self, key: str, value: Any, ttl: int) -> None:
        created_at = self._clock()
        expires_at = created_at + timedelta(seconds=ttl)
        try:
            data = json.dumps(value, ensure_ascii=False)
            self._get_connection().execute(
                """
                INSERT OR REPLACE INTO shared_cache (
                    cache_key, data, created_at, expires_at, hit_count, last_accessed
                ) VALUES (?, ?, ?, ?, 0, NULL)
                """,
                (key, data, created_at.isoformat(), expires_at.isoformat()),
            )
            logger.debug(f"Shared cache set: {key} (expires: {expires_at.isoformat()})")

        except (sqlite3.Error, TypeError, ValueError) as e:
            raise CacheError(f"Failed to write to shared cache: {e}", operation="write", cache_key=key) from e

    def _delete(self, key: str) -> bool:
        try:
            cursor = self._get_connection().execute(
                "DELETE FROM shared_cache WHERE cache_key = ?", (key,)
            )
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise CacheError(f"Failed to delete from shared cache: {e}", operation="delete", cache_key=key) from e

    def _delete_pattern(self, pattern: str) -> int:
        try:
            cursor = self._get_connection().execute(
                "DELETE FROM shared_cache WHERE cache_key GLOB ?", (pattern,)
            )
            if cursor.rowcount:
                logger.info(f"Deleted {cursor.rowcount} shared cache entries matching {pattern}")
            return cursor.rowcount
        except sqlite3.Error as e:
            raise CacheError(f"Failed to delete pattern: {e}", operation="delete_pattern", pattern=pattern) from e

    def _ttl(self, key: str) -> Optional[float]:
        try:
            row = self._get_connection().execute(
                "SELECT expires_at FROM shared_cache WHERE cache_key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise CacheError(f"Failed to read TTL: {e}", operation="ttl", cache_key=key) from e

        if row is None:
            return None
        remaining = (datetime.fromisoformat(row["expires_at"]) - self._clock()).total_seconds()
        return remaining if remaining > 0 else None

    def _clear_expired(self) -> int:
        try:
            cursor = self._get_connection().execute(
                "DELETE FROM shared_cache WHERE expires_at <= ?", (self._clock().isoformat(),)
            )
        except sqlite3.Error as e:
            raise CacheError(f"Failed to clear expired entries: {e}", operation="clear_expired") from e

        if cursor.rowcount > 0:
            logger.info(f"Cleared {cursor.rowcount} expired shared cache entries")
        return cursor.rowcount

    def _statistics(self) -> dict:
        now = self._clock().isoformat()
        try:
            cursor = self._get_connection().cursor()
            cursor.execute("SELECT COUNT(*) AS count, SUM(hit_count) AS hits FROM shared_cache")
            totals = cursor.fetchone()
            cursor.execute("SELECT COUNT(*) AS count FROM shared_cache WHERE expires_at <= ?", (now,))
            expired = cursor.fetchone()["count"]
        except sqlite3.Error as e:
            raise CacheError(f"Failed to get statistics: {e}", operation="statistics") from e

        size = self.db_path.stat().st_size if self.db_path.exists() else 0
        return {
            "total_entries": totals["count"],
            "expired_entries": expired,
            "valid_entries": totals["count"] - expired,
            "total_hits": totals["hits"] or 0,
            "cache_size_bytes": size,
            "default_ttl": self.default_ttl,
            "db_path": str(self.db_path),
        }

    # ---- public async API --------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        """
        Retrieve a live value.

        Raises:
            CacheError: If the read fails
        """
        return await self._run(self._get, key)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """
        Store a JSON-serializable value with a TTL in seconds.

        Raises:
            CacheError: If the value cannot be serialized or written
        """
        await self._run(self._set, key, value, ttl or self.default_ttl)

    async def exists(self, key: str) -> bool:
        return await self._run(self._ttl, key) is not None

    async def delete(self, key: str) -> bool:
        """Delete one key. Returns True if it existed."""
        return await self._run(self._delete, key)

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern.

        Example:
            >>> await cache.delete_pattern("jobs:*")
            12
        """
        return await self._run(self._delete_pattern, pattern)

    async def ttl(self, key: str) -> Optional[float]:
        """Seconds until ``key`` expires, or None if absent or expired."""
        return await self._run(self._ttl, key)

    async def clear_expired(self) -> int:
        """Remove all expired entries; returns the number removed."""
        return await self._run(self._clear_expired)

    async def get_statistics(self) -> dict:
        return await self._run(self._statistics)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
                logger.debug("Shared cache connection closed")

    def __repr__(self) -> str:
        return f"SqliteSharedCache(db_path={str(self.db_path)!r}, default_ttl={self.default_ttl})"
