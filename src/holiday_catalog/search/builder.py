"""Immutable, fluent property search builder.

Every fluent call returns a new :class:`PropertySearch`; nothing is mutated in
place, so a partially built search can be shared and extended safely::

    search = PropertySearch(index).query("sea view").sleeps(4).cheapest()
    page = await search.paginate(20, page=2).execute()

The builder compiles to a :class:`CompiledQuery` carrying a Meilisearch-style
filter expression (``sleeps >= 4 AND is_active = true``) and ``field:direction``
sort expressions; index backends consume the structured predicates.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

from holiday_catalog.errors import InvalidFilterError

from .results import SearchPage

if TYPE_CHECKING:
    from .index import SearchIndex

logger = logging.getLogger(__name__)

FILTERABLE_FIELDS = frozenset(
    {
        "location_id",
        "property_type",
        "sleeps",
        "bedrooms",
        "bathrooms",
        "price_from",
        "provider_id",
        "is_active",
        "featured",
    }
)
SORTABLE_FIELDS = frozenset({"price_from", "sleeps", "bedrooms", "bathrooms", "featured", "name"})
FACETABLE_FIELDS = frozenset(
    {"property_type", "sleeps", "bedrooms", "bathrooms", "location_id", "provider_id", "featured"}
)

COMPARISON_OPERATORS = frozenset({"=", "!=", ">", ">=", "<", "<="})
MEMBERSHIP_OPERATOR = "IN"

MIN_PER_PAGE = 1
MAX_PER_PAGE = 100
DEFAULT_PER_PAGE = 20

Scalar = Union[str, int, float, bool, Decimal]


def _render_value(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    return value


@dataclass(frozen=True)
class Predicate:
    field: str
    operator: str
    value: Any

    @property
    def is_membership(self) -> bool:
        return self.operator == MEMBERSHIP_OPERATOR

    def render(self) -> str:
        if self.is_membership:
            values = ", ".join(_render_value(item) for item in self.value)
            return f"{self.field} IN [{values}]"
        return f"{self.field} {self.operator} {_render_value(self.value)}"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class SortDirective:
    field: str
    direction: SortDirection = SortDirection.ASC

    def render(self) -> str:
        return f"{self.field}:{self.direction.value}"


@dataclass(frozen=True)
class CompiledQuery:
    text: str
    predicates: tuple[Predicate, ...]
    sorts: tuple[SortDirective, ...]
    page: int
    per_page: int
    facets: tuple[str, ...] = ()

    @property
    def filter(self) -> Optional[str]:
        if not self.predicates:
            return None
        return " AND ".join(predicate.render() for predicate in self.predicates)

    @property
    def filters(self) -> list[str]:
        return [predicate.render() for predicate in self.predicates]

    @property
    def sort_expressions(self) -> list[str]:
        return [sort.render() for sort in self.sorts]

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


def _as_tuple(values: Any) -> tuple[Any, ...]:
    if values is None:
        return ()
    if isinstance(values, (str, bytes, int, float, Decimal, Enum)):
        return (values,)
    return tuple(values)


@dataclass(frozen=True)
class PropertySearch:
    index: Optional["SearchIndex"] = field(default=None, compare=False, repr=False)
    text: str = ""
    predicates: tuple[Predicate, ...] = ()
    sorts: tuple[SortDirective, ...] = ()
    page: int = 1
    per_page: int = DEFAULT_PER_PAGE
    facets: tuple[str, ...] = ()
    inactive_included: bool = False

    # ------------------------------------------------------------------
    # text and filters

    def query(self, text: Optional[str]) -> "PropertySearch":
        return replace(self, text=(text or "").strip())

    def where(self, field_name: str, operator: str, value: Any) -> "PropertySearch":
        if field_name not in FILTERABLE_FIELDS:
            raise InvalidFilterError(f"Field '{field_name}' is not filterable")
        operator = operator.upper() if operator.upper() == MEMBERSHIP_OPERATOR else operator
        if operator == MEMBERSHIP_OPERATOR:
            values = tuple(_plain(item) for item in _as_tuple(value))
            if not values:
                return self
            return replace(self, predicates=self.predicates + (Predicate(field_name, operator, values),))
        if operator not in COMPARISON_OPERATORS:
            raise InvalidFilterError(f"Operator '{operator}' is not supported")
        if value is None:
            raise InvalidFilterError(f"Filter on '{field_name}' needs a value")
        return replace(self, predicates=self.predicates + (Predicate(field_name, operator, _plain(value)),))

    def where_in(self, field_name: str, values: Iterable[Any]) -> "PropertySearch":
        return self.where(field_name, MEMBERSHIP_OPERATOR, values)

    def location(self, location_ids: Union[int, Iterable[int]]) -> "PropertySearch":
        return self.where_in("location_id", _as_tuple(location_ids))

    def property_type(self, types: Union[str, Iterable[str]]) -> "PropertySearch":
        return self.where_in("property_type", _as_tuple(types))

    def _bounded(self, field_name: str, minimum: Optional[Scalar], maximum: Optional[Scalar]) -> "PropertySearch":
        search = self
        if minimum is not None:
            search = search.where(field_name, ">=", minimum)
        if maximum is not None:
            search = search.where(field_name, "<=", maximum)
        return search

    def sleeps(self, minimum: Optional[int], maximum: Optional[int] = None) -> "PropertySearch":
        return self._bounded("sleeps", minimum, maximum)

    def bedrooms(self, minimum: Optional[int], maximum: Optional[int] = None) -> "PropertySearch":
        return self._bounded("bedrooms", minimum, maximum)

    def bathrooms(self, minimum: Optional[int], maximum: Optional[int] = None) -> "PropertySearch":
        return self._bounded("bathrooms", minimum, maximum)

    def price_range(self, minimum: Optional[Scalar] = None, maximum: Optional[Scalar] = None) -> "PropertySearch":
        return self._bounded("price_from", minimum, maximum)

    def provider(self, provider_id: int) -> "PropertySearch":
        return self.where("provider_id", "=", provider_id)

    def featured_only(self) -> "PropertySearch":
        return self.where("featured", "=", True)

    def active_only(self) -> "PropertySearch":
        return replace(self, inactive_included=False)

    def include_inactive(self) -> "PropertySearch":
        return replace(self, inactive_included=True)

    # ------------------------------------------------------------------
    # ordering, paging, facets

    def sort_by(self, field_name: str, direction: Union[str, SortDirection] = SortDirection.ASC) -> "PropertySearch":
        if field_name not in SORTABLE_FIELDS:
            raise InvalidFilterError(f"Field '{field_name}' is not sortable")
        try:
            resolved = SortDirection(str(getattr(direction, "value", direction)).lower())
        except ValueError as exc:
            raise InvalidFilterError(f"Unknown sort direction '{direction}'") from exc
        return replace(self, sorts=self.sorts + (SortDirective(field_name, resolved),))

    def cheapest(self) -> "PropertySearch":
        return self.sort_by("price_from", SortDirection.ASC)

    def most_expensive(self) -> "PropertySearch":
        return self.sort_by("price_from", SortDirection.DESC)

    def largest_first(self) -> "PropertySearch":
        return self.sort_by("sleeps", SortDirection.DESC)

    def featured_first(self) -> "PropertySearch":
        return self.sort_by("featured", SortDirection.DESC)

    def paginate(self, per_page: int = DEFAULT_PER_PAGE, page: int = 1) -> "PropertySearch":
        per_page = min(max(int(per_page), MIN_PER_PAGE), MAX_PER_PAGE)
        return replace(self, per_page=per_page, page=max(int(page), 1))

    def with_facets(self, fields: Iterable[str]) -> "PropertySearch":
        requested = tuple(dict.fromkeys(fields))
        unknown = [name for name in requested if name not in FACETABLE_FIELDS]
        if unknown:
            raise InvalidFilterError(f"Fields {unknown} are not facetable")
        return replace(self, facets=requested)

    def using(self, index: "SearchIndex") -> "PropertySearch":
        return replace(self, index=index)

    # ------------------------------------------------------------------
    # execution

    def compile(self) -> CompiledQuery:
        predicates = self.predicates
        if not self.inactive_included:
            predicates = predicates + (Predicate("is_active", "=", True),)
        return CompiledQuery(
            text=self.text,
            predicates=predicates,
            sorts=self.sorts,
            page=self.page,
            per_page=self.per_page,
            facets=self.facets,
        )

    def _require_index(self) -> "SearchIndex":
        if self.index is None:
            raise InvalidFilterError("PropertySearch has no search index bound; call using(index) first")
        return self.index

    async def execute(self) -> SearchPage:
        index = self._require_index()
        compiled = self.compile()
        try:
            result = await index.search(compiled)
        except Exception:
            logger.exception("Search failed (query='%s', filter=%s)", compiled.text, compiled.filter)
            return SearchPage.empty(self.page, self.per_page, degraded=True)
        return SearchPage(
            items=result.hits,
            total=result.total,
            page=self.page,
            per_page=self.per_page,
            facets=result.facets if self.facets else None,
        )

    async def count(self) -> int:
        index = self._require_index()
        compiled = replace(self.compile(), page=1, per_page=1, facets=())
        try:
            result = await index.search(compiled)
        except Exception:
            logger.exception("Search count failed (query='%s', filter=%s)", compiled.text, compiled.filter)
            return 0
        return result.total
