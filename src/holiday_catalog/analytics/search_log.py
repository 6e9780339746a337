"""Search logging and the rolling-window reports built on top of it."""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from holiday_catalog.core.clock import Clock, utc_now
from holiday_catalog.storage.records import QueryCount
from holiday_catalog.storage.sqlite_store import SqliteStore

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_query(query: Optional[str]) -> str:
    """Trim, collapse internal whitespace and lower-case; ``None`` becomes ``""``."""
    if not query:
        return ""
    return _WHITESPACE_RE.sub(" ", query.strip()).lower()


@dataclass(frozen=True)
class SearchStatistics:
    total_searches: int
    unique_queries: int
    avg_results: float
    zero_result_rate: float

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class SearchAnalytics:
    def __init__(self, store: SqliteStore, *, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def record(
        self,
        query: Optional[str],
        results_count: int,
        actor_id: Optional[int] = None,
        filters: Optional[dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> int:
        if results_count < 0:
            raise ValueError("results_count must be non-negative")
        log_id = await self._store.record_search(
            query=query,
            normalized_query=normalize_query(query),
            results_count=results_count,
            filters=filters,
            user_id=actor_id,
            session_id=session_id,
            ip_address=ip_address,
        )
        logger.debug("Recorded search %s (query='%s', results=%s)", log_id, query or "", results_count)
        return log_id

    def _since(self, days: int) -> datetime:
        if days < 1:
            raise ValueError("days must be at least 1")
        return self._clock() - timedelta(days=days)

    async def popular_queries(self, limit: int = 10, days: int = 30) -> list[QueryCount]:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        return await self._store.query_counts(since=self._since(days), limit=limit)

    async def empty_searches(self, limit: int = 10, days: int = 30) -> list[QueryCount]:
        """Queries that returned nothing, most frequent first; candidates for new content."""
        if limit < 1:
            raise ValueError("limit must be at least 1")
        return await self._store.query_counts(since=self._since(days), limit=limit, zero_results_only=True)

    async def statistics(self, days: int = 30) -> SearchStatistics:
        summary = await self._store.search_log_summary(since=self._since(days))
        total = summary["total"]
        if not total:
            return SearchStatistics(total_searches=0, unique_queries=0, avg_results=0.0, zero_result_rate=0.0)
        return SearchStatistics(
            total_searches=total,
            unique_queries=summary["unique_queries"],
            avg_results=round(summary["avg_results"], 2),
            zero_result_rate=round(summary["zero_results"] / total * 100, 2),
        )
