"""Clients for external HTTP services."""

from .geocoding_client import GeocodeResult, Geocoder, PostcodesIoClient

__all__ = [
    "GeocodeResult",
    "Geocoder",
    "PostcodesIoClient",
]
