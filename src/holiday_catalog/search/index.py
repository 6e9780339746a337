"""Search index backends consumed by :class:`PropertySearch`."""
from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol

import httpx

from holiday_catalog.errors import SearchIndexError
from holiday_catalog.storage.sqlite_store import SEARCH_DOCUMENT_COLUMNS, SqliteStore

from .builder import FACETABLE_FIELDS, FILTERABLE_FIELDS, SORTABLE_FIELDS, CompiledQuery, Predicate
from .results import Facets, IndexResult

logger = logging.getLogger(__name__)

TEXT_COLUMNS = ("name", "description", "location_name", "postcode")
BOOLEAN_COLUMNS = frozenset({"is_active", "featured"})
LIKE_ESCAPE = "\\"


class SearchIndex(Protocol):
    async def search(self, query: CompiledQuery) -> IndexResult:
        ...

    async def reindex_all(self) -> int:
        ...

    async def clear_index(self) -> None:
        ...


def _like_pattern(term: str) -> str:
    escaped = term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2).replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _sql_value(value: Any) -> Any:
    if isinstance(value, bool):
        return 1 if value else 0
    return value


def _facet_key(field_name: str, value: Any) -> str:
    if field_name in BOOLEAN_COLUMNS:
        return "true" if value else "false"
    return str(value)


class SqliteSearchIndex:
    """Searches the ``search_documents`` table kept by :class:`SqliteStore`.

    Text matching is a case-insensitive ``LIKE`` per whitespace-separated term
    across name, description, location name and postcode. Without explicit
    sorts, rows whose name contains the whole query come first, then featured
    rows, then insertion order.
    """

    def __init__(self, store: SqliteStore) -> None:
        self._store = store

    @staticmethod
    def _predicate_sql(predicate: Predicate) -> tuple[str, list[Any]]:
        if predicate.field not in FILTERABLE_FIELDS:
            raise SearchIndexError(f"Unsupported filter field '{predicate.field}'")
        if predicate.is_membership:
            placeholders = ", ".join("?" for _ in predicate.value)
            return f"{predicate.field} IN ({placeholders})", [_sql_value(v) for v in predicate.value]
        return f"{predicate.field} {predicate.operator} ?", [_sql_value(predicate.value)]

    def _where(self, query: CompiledQuery) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for term in query.text.split():
            pattern = _like_pattern(term)
            clauses.append(
                "(" + " OR ".join(f"{column} LIKE ? ESCAPE '{LIKE_ESCAPE}'" for column in TEXT_COLUMNS) + ")"
            )
            params.extend([pattern] * len(TEXT_COLUMNS))
        for predicate in query.predicates:
            clause, values = self._predicate_sql(predicate)
            clauses.append(clause)
            params.extend(values)
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    @staticmethod
    def _order_by(query: CompiledQuery) -> tuple[str, list[Any]]:
        if query.sorts:
            parts: list[str] = []
            for sort in query.sorts:
                if sort.field not in SORTABLE_FIELDS:
                    raise SearchIndexError(f"Unsupported sort field '{sort.field}'")
                parts.append(f"{sort.field} IS NULL, {sort.field} {sort.direction.value.upper()}")
            parts.append("id ASC")
            return " ORDER BY " + ", ".join(parts), []
        if query.text:
            return (
                f" ORDER BY CASE WHEN name LIKE ? ESCAPE '{LIKE_ESCAPE}' THEN 0 ELSE 1 END, featured DESC, id ASC",
                [_like_pattern(query.text)],
            )
        return " ORDER BY featured DESC, id ASC", []

    @staticmethod
    def _hit(row: dict[str, Any]) -> dict[str, Any]:
        hit = {column: row.get(column) for column in SEARCH_DOCUMENT_COLUMNS}
        hit["is_active"] = bool(hit["is_active"])
        hit["featured"] = bool(hit["featured"])
        hit["amenities"] = json.loads(hit["amenities"]) if hit["amenities"] else []
        return hit

    async def search(self, query: CompiledQuery) -> IndexResult:
        where, params = self._where(query)
        order_by, order_params = self._order_by(query)
        columns = ", ".join(SEARCH_DOCUMENT_COLUMNS)

        count_rows = await self._store.fetch_all(f"SELECT COUNT(*) AS total FROM search_documents{where}", params)
        total = int(count_rows[0]["total"]) if count_rows else 0

        rows = await self._store.fetch_all(
            f"SELECT {columns} FROM search_documents{where}{order_by} LIMIT ? OFFSET ?",
            [*params, *order_params, query.per_page, query.offset],
        )

        facets: Optional[Facets] = None
        if query.facets:
            facets = {}
            for field_name in query.facets:
                if field_name not in FACETABLE_FIELDS:
                    raise SearchIndexError(f"Unsupported facet field '{field_name}'")
                facet_rows = await self._store.fetch_all(
                    f"SELECT {field_name} AS value, COUNT(*) AS hits FROM search_documents{where}"
                    f"{' AND' if where else ' WHERE'} {field_name} IS NOT NULL"
                    f" GROUP BY {field_name} ORDER BY {field_name}",
                    params,
                )
                facets[field_name] = {_facet_key(field_name, row["value"]): int(row["hits"]) for row in facet_rows}

        return IndexResult(hits=[self._hit(row) for row in rows], total=total, facets=facets)

    async def reindex_all(self) -> int:
        documents = await self._store.fetch_index_documents()
        indexed = await self._store.replace_search_documents(documents)
        logger.info("Indexed %s properties into search_documents", indexed)
        return indexed

    async def clear_index(self) -> None:
        await self._store.clear_search_documents()
        logger.info("Cleared search_documents")


class MeilisearchIndex:
    """Meilisearch backend speaking the REST API over httpx."""

    def __init__(
        self,
        store: SqliteStore,
        *,
        url: str,
        api_key: Optional[str] = None,
        index_uid: str = "properties",
        timeout: float = 5.0,
        batch_size: int = 1000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json", "User-Agent": "holiday-catalog/0.1.0"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._store = store
        self._index_uid = index_uid
        self._batch_size = max(1, batch_size)
        self._client = httpx.AsyncClient(
            base_url=url.rstrip("/"),
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "MeilisearchIndex":
        return self

    async def __aexit__(self, exc_type, exc, exc_tb) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SearchIndexError(f"Meilisearch {method} {path} failed: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise SearchIndexError(f"Meilisearch {method} {path} returned a non-JSON body") from exc

    async def search(self, query: CompiledQuery) -> IndexResult:
        body: dict[str, Any] = {
            "q": query.text,
            "page": query.page,
            "hitsPerPage": query.per_page,
        }
        if query.filters:
            body["filter"] = query.filters
        if query.sorts:
            body["sort"] = query.sort_expressions
        if query.facets:
            body["facets"] = list(query.facets)
        payload = await self._request("POST", f"/indexes/{self._index_uid}/search", json=body)
        total = payload.get("totalHits", payload.get("estimatedTotalHits", 0))
        facets = payload.get("facetDistribution") if query.facets else None
        return IndexResult(hits=list(payload.get("hits", [])), total=int(total or 0), facets=facets)

    async def reindex_all(self) -> int:
        await self._request(
            "PATCH",
            f"/indexes/{self._index_uid}/settings",
            json={
                "searchableAttributes": list(TEXT_COLUMNS),
                "filterableAttributes": sorted(FILTERABLE_FIELDS),
                "sortableAttributes": sorted(SORTABLE_FIELDS),
            },
        )
        documents = await self._store.fetch_index_documents()
        for start in range(0, len(documents), self._batch_size):
            batch = documents[start : start + self._batch_size]
            await self._request(
                "POST",
                f"/indexes/{self._index_uid}/documents",
                params={"primaryKey": "id"},
                json=batch,
            )
        logger.info("Queued %s properties for Meilisearch index '%s'", len(documents), self._index_uid)
        return len(documents)

    async def clear_index(self) -> None:
        await self._request("DELETE", f"/indexes/{self._index_uid}/documents")
        logger.info("Cleared Meilisearch index '%s'", self._index_uid)
