"""Client for postcodes.io postcode lookups."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

POSTCODES_IO_URL = "https://api.postcodes.io"


@dataclass(frozen=True)
class GeocodeResult:
    latitude: float
    longitude: float
    district: Optional[str] = None
    county: Optional[str] = None
    region: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "admin_district": self.district,
            "admin_county": self.county,
            "region": self.region,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> Optional["GeocodeResult"]:
        latitude = payload.get("latitude")
        longitude = payload.get("longitude")
        if latitude is None or longitude is None:
            return None
        return cls(
            latitude=float(latitude),
            longitude=float(longitude),
            district=payload.get("admin_district"),
            county=payload.get("admin_county"),
            region=payload.get("region"),
        )


class Geocoder(Protocol):
    async def geocode(self, postcode: str) -> Optional[GeocodeResult]:
        ...


class PostcodesIoClient:
    """Thin async wrapper around the postcodes.io lookup endpoint."""

    def __init__(
        self,
        *,
        base_url: str = POSTCODES_IO_URL,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        default_headers = {
            "Accept": "application/json",
            "User-Agent": "holiday-catalog/0.1.0",
        }
        if headers:
            default_headers.update(headers)
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=default_headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "PostcodesIoClient":
        return self

    async def __aexit__(self, exc_type, exc, exc_tb) -> None:
        await self.aclose()

    async def lookup(self, postcode: str) -> Dict[str, Any]:
        logger.debug("Postcode lookup postcode='%s'", postcode)
        response = await self._client.get(f"/postcodes/{quote(postcode)}")
        response.raise_for_status()
        return response.json()

    async def geocode(self, postcode: str) -> Optional[GeocodeResult]:
        try:
            payload = await self.lookup(postcode)
        except httpx.HTTPError:
            logger.exception("Geocoding failed for postcode '%s'", postcode)
            return None
        except ValueError:
            logger.warning("Geocoding returned a non-JSON body for postcode '%s'", postcode)
            return None
        if not isinstance(payload, dict) or payload.get("status", 200) != 200:
            logger.warning("Geocoding returned an error payload for postcode '%s'", postcode)
            return None
        result = payload.get("result")
        if not isinstance(result, dict):
            logger.warning("Geocoding returned no result for postcode '%s'", postcode)
            return None
        return GeocodeResult.from_payload(result)
