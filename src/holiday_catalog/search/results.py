"""Result containers for search execution."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Optional

Facets = dict[str, dict[str, int]]


@dataclass(frozen=True)
class IndexResult:
    """Raw answer from a search index for one compiled query."""

    hits: list[dict[str, Any]]
    total: int
    facets: Optional[Facets] = None


@dataclass(frozen=True)
class SearchPage:
    """One page of hits plus the pagination numbers clients render."""

    items: list[dict[str, Any]]
    total: int
    page: int
    per_page: int
    facets: Optional[Facets] = None
    degraded: bool = field(default=False, compare=False)

    @classmethod
    def empty(cls, page: int, per_page: int, *, degraded: bool = False) -> "SearchPage":
        return cls(items=[], total=0, page=page, per_page=per_page, degraded=degraded)

    @property
    def last_page(self) -> int:
        return max(math.ceil(self.total / self.per_page), 1) if self.per_page else 1

    @property
    def first_item(self) -> Optional[int]:
        if not self.items:
            return None
        return (self.page - 1) * self.per_page + 1

    @property
    def last_item(self) -> Optional[int]:
        first = self.first_item
        if first is None:
            return None
        return first + len(self.items) - 1

    def meta(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "per_page": self.per_page,
            "current_page": self.page,
            "last_page": self.last_page,
            "from": self.first_item,
            "to": self.last_item,
        }

    def url(self, base_url: str, page: int) -> str:
        separator = "&" if "?" in base_url else "?"
        return f"{base_url}{separator}page={page}"

    def links(self, base_url: str) -> dict[str, Optional[str]]:
        return {
            "first": self.url(base_url, 1),
            "last": self.url(base_url, self.last_page),
            "prev": self.url(base_url, self.page - 1) if self.page > 1 else None,
            "next": self.url(base_url, self.page + 1) if self.page < self.last_page else None,
        }

    def to_response(self, base_url: str) -> dict[str, Any]:
        return {
            "data": list(self.items),
            "meta": self.meta(),
            "links": self.links(base_url),
            "facets": self.facets,
        }
