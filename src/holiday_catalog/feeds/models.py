"""Dataclasses for canonical property records produced from affiliate feeds."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

FieldMap = Dict[str, str]


class PropertyType(str, Enum):
    COTTAGE = "cottage"
    HOTEL = "hotel"
    CARAVAN = "caravan"
    HOLIDAY_PARK = "holiday-park"
    YURT = "yurt"
    APARTMENT = "apartment"
    VILLA = "villa"
    LODGE = "lodge"


@dataclass(slots=True)
class ImageRecord:
    """A single gallery image in display order."""

    url: str
    display_order: int
    is_primary: bool = False
    thumbnail_url: Optional[str] = None
    alt_text: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "url": self.url,
            "thumbnail_url": self.thumbnail_url,
            "alt_text": self.alt_text,
            "display_order": self.display_order,
            "is_primary": self.is_primary,
        }


@dataclass(slots=True)
class PropertyRecord:
    """Provider-independent property listing ready for persistence."""

    external_id: str
    name: str
    slug: str
    property_type: PropertyType
    affiliate_url: str
    description: Optional[str] = None
    short_description: Optional[str] = None
    address_line_1: Optional[str] = None
    address_line_2: Optional[str] = None
    postcode: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    sleeps: int = 0
    bedrooms: int = 0
    bathrooms: int = 0
    price_from: Optional[Decimal] = None
    price_currency: str = "GBP"
    commission_rate: Optional[Decimal] = None
    is_active: bool = True
    featured: bool = False
    images: List[ImageRecord] = field(default_factory=list)
    amenities: List[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "external_id": self.external_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "short_description": self.short_description,
            "property_type": self.property_type.value,
            "address_line_1": self.address_line_1,
            "address_line_2": self.address_line_2,
            "postcode": self.postcode,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "sleeps": self.sleeps,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
            "price_from": str(self.price_from) if self.price_from is not None else None,
            "price_currency": self.price_currency,
            "affiliate_url": self.affiliate_url,
            "commission_rate": str(self.commission_rate) if self.commission_rate is not None else None,
            "is_active": self.is_active,
            "featured": self.featured,
            "images": [image.to_dict() for image in self.images],
            "amenities": list(self.amenities),
        }

    @property
    def primary_image(self) -> Optional[ImageRecord]:
        return next((image for image in self.images if image.is_primary), None)


@dataclass(slots=True)
class ValidationFailure:
    """Explicit rejection of a raw record, keyed by the offending fields."""

    external_id: Optional[str]
    errors: Dict[str, str]

    @property
    def fields(self) -> List[str]:
        return sorted(self.errors)

    def describe(self) -> str:
        parts = [f"{name}: {message}" for name, message in sorted(self.errors.items())]
        return "; ".join(parts)
