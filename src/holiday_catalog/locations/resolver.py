"""Map postcodes onto the location hierarchy, creating nodes on first sight.

A postcode node hangs under its outward-code district, which hangs under the
configured root country. Coordinates come from the feed when present and from
the geocoding service otherwise; lookups are cached in the store for
``cache_ttl`` and a failed lookup simply leaves the coordinates empty.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from holiday_catalog.feeds.transformer import slugify
from holiday_catalog.services.geocoding_client import GeocodeResult, Geocoder
from holiday_catalog.storage.records import LocationRecord, LocationType
from holiday_catalog.storage.sqlite_store import SqliteStore

logger = logging.getLogger(__name__)

POSTCODE_RE = re.compile(r"^([A-Z]{1,2}\d{1,2}[A-Z]?)\s*(\d[A-Z]{2})$")
AREA_RE = re.compile(r"^[A-Z]{1,2}")
DISTRICT_RE = re.compile(r"^[A-Z]{1,2}\d{1,2}[A-Z]?")


@dataclass(frozen=True)
class DefaultLocation:
    name: str = "United Kingdom"
    slug: str = "united-kingdom"
    latitude: Optional[float] = 54.7023545
    longitude: Optional[float] = -3.2765753


def normalize_postcode(value: str) -> str:
    """Upper-case, trim and, for valid UK postcodes, insert the single inward-code space."""
    cleaned = re.sub(r"\s+", " ", value.strip().upper())
    match = POSTCODE_RE.match(cleaned)
    if match:
        return f"{match.group(1)} {match.group(2)}"
    return cleaned


def postcode_area(postcode: str) -> Optional[str]:
    match = AREA_RE.match(postcode)
    return match.group(0) if match else None


def postcode_district(postcode: str) -> Optional[str]:
    match = DISTRICT_RE.match(postcode)
    return match.group(0) if match else None


class LocationResolver:
    def __init__(
        self,
        store: SqliteStore,
        geocoder: Optional[Geocoder] = None,
        *,
        default_location: DefaultLocation = DefaultLocation(),
        cache_ttl: timedelta = timedelta(days=30),
    ) -> None:
        self._store = store
        self._geocoder = geocoder
        self._default = default_location
        self._cache_ttl = cache_ttl
        self._root: Optional[LocationRecord] = None

    async def default_root(self) -> LocationRecord:
        if self._root is None:
            self._root = await self._store.find_or_create_location(
                type=LocationType.COUNTRY,
                name=self._default.name,
                slug=self._default.slug,
                latitude=self._default.latitude,
                longitude=self._default.longitude,
            )
        return self._root

    async def resolve(
        self,
        postcode: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> LocationRecord:
        if not postcode or not postcode.strip():
            return await self.default_root()

        normalized = normalize_postcode(postcode)
        existing = await self._store.find_location_by_postcode(normalized)
        if existing is not None:
            return existing

        if latitude is None or longitude is None:
            result = await self.geocode(normalized)
            latitude = result.latitude if result else None
            longitude = result.longitude if result else None

        root = await self.default_root()
        parent = root
        district = postcode_district(normalized)
        if district:
            parent = await self._store.find_or_create_location(
                type=LocationType.DISTRICT,
                name=district,
                slug=slugify(district),
                parent=root,
            )
        location = await self._store.find_or_create_location(
            type=LocationType.POSTCODE,
            name=normalized,
            slug=slugify(normalized),
            parent=parent,
            postcode=normalized,
            latitude=latitude,
            longitude=longitude,
        )
        logger.debug("Resolved postcode %s to location %s", normalized, location.id)
        return location

    async def geocode(self, postcode: str) -> Optional[GeocodeResult]:
        """Cached geocode of a normalized postcode; ``None`` when unavailable."""
        cached = await self._store.get_cached_geocode(postcode)
        if cached is not None and cached.latitude is not None and cached.longitude is not None:
            return GeocodeResult(
                latitude=cached.latitude,
                longitude=cached.longitude,
                district=cached.district,
                county=cached.payload.get("admin_county"),
                region=cached.payload.get("region"),
            )
        if self._geocoder is None:
            return None
        try:
            result = await self._geocoder.geocode(postcode)
        except Exception:
            logger.exception("Geocoder raised for postcode %s", postcode)
            return None
        if result is None:
            return None
        await self._store.cache_geocode(
            postcode,
            latitude=result.latitude,
            longitude=result.longitude,
            district=result.district,
            payload=result.to_payload(),
            ttl=self._cache_ttl,
        )
        return result
