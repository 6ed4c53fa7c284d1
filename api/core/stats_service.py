"""
Admin dashboard statistics.

Counts are cheap but requested on every dashboard load, so each one is
cached in memory for CACHE_TTL_SECONDS.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from core.database import Database, get_database

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 60


@dataclass
class _CacheEntry:
    data: Any
    stored_at: float


class StatsService:
    """Cached statistics for the admin dashboard."""

    def __init__(self, db: Database | None = None, clock: Callable[[], float] = time.monotonic):
        self.db = db or get_database()
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}

    def _cached(self, name: str) -> Any | None:
        entry = self._cache.get(name)
        if entry is None or self._clock() - entry.stored_at >= CACHE_TTL_SECONDS:
            return None
        return entry.data

    async def get_user_stats(self) -> dict[str, Any]:
        """Return {"total_users", "computed_at"}, served from cache while fresh."""
        cached = self._cached("users")
        if cached is not None:
            return cached

        stats = {
            "total_users": await self.db.count("users"),
            "computed_at": datetime.utcnow(),
        }
        self._cache["users"] = _CacheEntry(data=stats, stored_at=self._clock())
        return stats

    def clear_stats_cache(self) -> None:
        """Drop all cached statistics."""
        self._cache.clear()
        logger.debug("Stats cache cleared")


# Singleton
_stats_service: StatsService | None = None


def get_stats_service() -> StatsService:
    """Get the global stats service instance."""
    global _stats_service
    if _stats_service is None:
        _stats_service = StatsService()
    return _stats_service
