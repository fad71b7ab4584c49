"""
Storage Module

Durable tiers of the acquisition waterfall.

Components:
    - shared_cache: Cross-process TTL cache (SQLite)
    - search_store: Three-week store of past searches (SQLite)
"""

from jobwaterfall.storage.search_store import SearchStore, StoredSearch
from jobwaterfall.storage.shared_cache import SqliteSharedCache

__all__ = [
    "SqliteSharedCache",
    "SearchStore",
    "StoredSearch",
]
