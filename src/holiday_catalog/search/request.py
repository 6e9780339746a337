"""Validated inputs for the search, suggest and report endpoints."""
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from holiday_catalog.feeds.models import PropertyType

LIST_PARAMS = ("location", "type")


class SortOption(str, Enum):
    RELEVANCE = "relevance"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    SLEEPS_DESC = "sleeps_desc"
    FEATURED = "featured"


class SearchRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    q: Optional[str] = Field(default=None, max_length=500)
    locations: list[int] = Field(default_factory=list, alias="location")
    property_types: list[PropertyType] = Field(default_factory=list, alias="type")
    sleeps: Optional[int] = Field(default=None, ge=1, le=50)
    bedrooms: Optional[int] = Field(default=None, ge=0, le=20)
    bathrooms: Optional[int] = Field(default=None, ge=0, le=10)
    price_min: Optional[Decimal] = Field(default=None, ge=0)
    price_max: Optional[Decimal] = Field(default=None, ge=0)
    sort: Optional[SortOption] = None
    per_page: int = Field(default=20, ge=1, le=100)
    page: int = Field(default=1, ge=1)
    facets: bool = False
    include_inactive: bool = False
    featured: bool = False

    @field_validator("q", "sort", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("locations", "property_types", mode="before")
    @classmethod
    def _listify(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, (str, int)):
            return [value]
        return value

    @model_validator(mode="after")
    def _check_price_bounds(self) -> "SearchRequest":
        if self.price_min is not None and self.price_max is not None and self.price_min > self.price_max:
            raise ValueError("price_min must not exceed price_max")
        return self

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "SearchRequest":
        """Build from query-string style params (``location[]=1&location[]=2``).

        Values may be scalars or lists (``urllib.parse.parse_qs`` output); blank
        scalars are treated as absent.
        """
        data: dict[str, Any] = {}
        for raw_key, raw_value in params.items():
            key = raw_key[:-2] if raw_key.endswith("[]") else raw_key
            values = list(raw_value) if isinstance(raw_value, (list, tuple)) else [raw_value]
            values = [value for value in values if not (isinstance(value, str) and not value.strip())]
            if not values:
                continue
            if key in LIST_PARAMS:
                data.setdefault(key, []).extend(values)
            else:
                data[key] = values[-1]
        return cls.model_validate(data)

    def filter_snapshot(self) -> dict[str, Any]:
        """Filters actually applied, in a JSON-friendly shape for the search log."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"q", "page", "per_page", "facets"},
            exclude_none=True,
            exclude_defaults=True,
        )


class SuggestRequest(BaseModel):
    q: str = Field(min_length=2, max_length=100)
    limit: int = Field(default=10, ge=1, le=20)

    @field_validator("q", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class ReportWindow(BaseModel):
    """Window for the popular/statistics reports; oversized values are capped."""

    limit: int = Field(default=10, ge=1)
    days: int = Field(default=30, ge=1)

    @field_validator("limit")
    @classmethod
    def _cap_limit(cls, value: int) -> int:
        return min(value, 50)

    @field_validator("days")
    @classmethod
    def _cap_days(cls, value: int) -> int:
        return min(value, 365)
