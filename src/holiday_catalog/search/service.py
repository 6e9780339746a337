"""Request-level search operations: search, suggest and the search reports."""
from __future__ import annotations

import logging
from typing import Any, Optional

from holiday_catalog.analytics.search_log import SearchAnalytics

from .builder import PropertySearch
from .index import SearchIndex
from .request import ReportWindow, SearchRequest, SortOption, SuggestRequest

logger = logging.getLogger(__name__)

DEFAULT_FACETS = ("property_type", "sleeps", "bedrooms", "bathrooms")
DEFAULT_BASE_URL = "/api/search"


class SearchService:
    def __init__(
        self,
        index: SearchIndex,
        analytics: Optional[SearchAnalytics] = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
    ) -> None:
        self._index = index
        self._analytics = analytics
        self._base_url = base_url

    def build(self, request: SearchRequest) -> PropertySearch:
        search = PropertySearch(self._index).query(request.q)

        if request.locations:
            search = search.location(request.locations)
        if request.property_types:
            search = search.property_type(request.property_types)
        if request.sleeps is not None:
            search = search.sleeps(request.sleeps)
        if request.bedrooms is not None:
            search = search.bedrooms(request.bedrooms)
        if request.bathrooms is not None:
            search = search.bathrooms(request.bathrooms)
        if request.price_min is not None or request.price_max is not None:
            search = search.price_range(request.price_min, request.price_max)
        if request.featured:
            search = search.featured_only()
        if request.include_inactive:
            search = search.include_inactive()

        if request.sort == SortOption.PRICE_ASC:
            search = search.cheapest()
        elif request.sort == SortOption.PRICE_DESC:
            search = search.most_expensive()
        elif request.sort == SortOption.SLEEPS_DESC:
            search = search.largest_first()
        elif request.sort == SortOption.FEATURED:
            search = search.featured_first()

        search = search.paginate(request.per_page, request.page)
        if request.facets:
            search = search.with_facets(DEFAULT_FACETS)
        return search

    async def search(
        self,
        request: SearchRequest,
        *,
        user_id: Optional[int] = None,
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> dict[str, Any]:
        search = self.build(request)
        page = await search.execute()
        filters = request.filter_snapshot()

        if self._analytics is not None:
            try:
                await self._analytics.record(
                    request.q or "",
                    page.total,
                    actor_id=user_id,
                    filters=filters or None,
                    ip_address=ip_address,
                    session_id=session_id,
                )
            except Exception:
                logger.exception("Failed to record search analytics")

        logger.info(
            "Property search performed query='%s' total=%s user_id=%s ip=%s filters=%s",
            request.q or "",
            page.total,
            user_id,
            ip_address,
            search.compile().filters,
        )
        return page.to_response(self._base_url)

    async def suggest(self, q: str, limit: int = 10) -> dict[str, Any]:
        request = SuggestRequest(q=q, limit=limit)
        page = await PropertySearch(self._index).query(request.q).active_only().paginate(request.limit, 1).execute()
        return {
            "suggestions": [
                {
                    "id": hit.get("id"),
                    "name": hit.get("name"),
                    "slug": hit.get("slug"),
                    "location": hit.get("location_name"),
                }
                for hit in page.items
            ]
        }

    def _require_analytics(self) -> SearchAnalytics:
        if self._analytics is None:
            raise RuntimeError("Search analytics are not configured")
        return self._analytics

    async def popular(self, limit: int = 10, days: int = 30) -> dict[str, int]:
        window = ReportWindow(limit=limit, days=days)
        rows = await self._require_analytics().popular_queries(window.limit, window.days)
        return {row.query: row.count for row in rows}

    async def statistics(self, days: int = 30) -> dict[str, Any]:
        window = ReportWindow(days=days)
        analytics = self._require_analytics()
        stats = await analytics.statistics(window.days)
        popular = await analytics.popular_queries(10, window.days)
        empty = await analytics.empty_searches(10, window.days)
        return {
            "statistics": stats.as_dict(),
            "popular_queries": {row.query: row.count for row in popular},
            "zero_result_queries": {row.query: row.count for row in empty},
        }
