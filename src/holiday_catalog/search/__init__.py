"""Property search: query builder, index backends and the request-level service."""

from .builder import CompiledQuery, Predicate, PropertySearch, SortDirection, SortDirective
from .index import MeilisearchIndex, SearchIndex, SqliteSearchIndex
from .request import ReportWindow, SearchRequest, SortOption, SuggestRequest
from .results import IndexResult, SearchPage
from .service import SearchService

__all__ = [
    "CompiledQuery",
    "IndexResult",
    "MeilisearchIndex",
    "Predicate",
    "PropertySearch",
    "ReportWindow",
    "SearchIndex",
    "SearchPage",
    "SearchRequest",
    "SearchService",
    "SortDirection",
    "SortDirective",
    "SortOption",
    "SqliteSearchIndex",
    "SuggestRequest",
]
