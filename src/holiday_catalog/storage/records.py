"""Lightweight views of rows returned by :class:`SqliteStore`."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class SyncStatus(str, Enum):
    STARTED = "started"
    SUCCESS = "success"
    FAILED = "failed"
    # Reserved for adapters that report a partially delivered feed; never set by the orchestrator.
    PARTIAL = "partial"


class LocationType(str, Enum):
    COUNTRY = "country"
    REGION = "region"
    DISTRICT = "district"
    POSTCODE = "postcode"

    @property
    def rank(self) -> int:
        return _LOCATION_RANKS[self]

    def is_broader_than(self, other: "LocationType") -> bool:
        return self.rank < other.rank


_LOCATION_RANKS: dict[LocationType, int] = {
    LocationType.COUNTRY: 0,
    LocationType.REGION: 1,
    LocationType.DISTRICT: 2,
    LocationType.POSTCODE: 3,
}


@dataclass(frozen=True)
class ProviderRecord:
    id: int
    slug: str
    name: str
    adapter: str
    config: dict[str, Any]
    sync_frequency: str
    is_active: bool
    last_sync_at: Optional[str]
    next_sync_at: Optional[str]


@dataclass(frozen=True)
class LocationRecord:
    id: int
    parent_id: Optional[int]
    type: LocationType
    name: str
    slug: str
    postcode: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    property_count: int = 0


@dataclass(slots=True)
class SyncCounters:
    """Running totals for one sync run; persisted even when the run fails."""

    fetched: int = 0
    created: int = 0
    updated: int = 0
    deactivated: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "properties_fetched": self.fetched,
            "properties_created": self.created,
            "properties_updated": self.updated,
            "properties_deactivated": self.deactivated,
            "properties_failed": self.failed,
        }


@dataclass(frozen=True)
class SyncLogRecord:
    id: int
    provider_id: int
    status: SyncStatus
    started_at: str
    completed_at: Optional[str]
    properties_fetched: int
    properties_created: int
    properties_updated: int
    properties_deactivated: int
    properties_failed: int
    error_message: Optional[str]
    error_trace: Optional[str]


@dataclass(frozen=True)
class CachedGeocode:
    postcode: str
    latitude: Optional[float]
    longitude: Optional[float]
    district: Optional[str]
    payload: dict[str, Any] = field(default_factory=dict)
    expires_at: Optional[str] = None


@dataclass(frozen=True)
class UpsertResult:
    property_id: int
    slug: str
    created: bool


@dataclass(frozen=True)
class QueryCount:
    query: str
    count: int
