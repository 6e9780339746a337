"""Utilities to transform raw affiliate field maps into canonical property records."""
from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from .models import ImageRecord, PropertyRecord, PropertyType, ValidationFailure

logger = logging.getLogger(__name__)

SHORT_DESCRIPTION_LIMIT = 200
DEFAULT_PROPERTY_TYPE = PropertyType.COTTAGE

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "external_id": ("product_id", "pid", "id", "external_id"),
    "name": ("product_name", "name"),
    "description": ("description", "desc", "product_description"),
    "property_type": ("property_type", "merchant_category", "category", "type"),
    "postcode": ("postcode", "post_code", "postal_code"),
    "address_line_1": ("address", "address_line_1", "address1"),
    "address_line_2": ("address_line_2", "address2", "town"),
    "latitude": ("latitude", "lat"),
    "longitude": ("longitude", "lon", "lng"),
    "sleeps": ("sleeps", "max_guests", "capacity"),
    "bedrooms": ("bedrooms", "num_bedrooms"),
    "bathrooms": ("bathrooms", "num_bathrooms"),
    "price": ("price", "search_price", "price_from", "display_price"),
    "currency": ("currency", "price_currency"),
    "deep_link": ("deep_link", "aw_deep_link", "affiliate_url"),
    "image_url": ("image_url", "aw_image_url", "merchant_image_url"),
    "thumbnail_url": ("aw_thumb_url", "thumbnail_url", "thumb_url"),
    "images": ("images", "additional_images", "gallery"),
    "alternate_image": ("alternate_image",),
    "featured": ("featured", "is_featured"),
    "amenities": ("amenities", "facilities"),
}

PROPERTY_TYPE_MAP: dict[str, PropertyType] = {
    "cottage": PropertyType.COTTAGE,
    "cottages": PropertyType.COTTAGE,
    "house": PropertyType.COTTAGE,
    "apartment": PropertyType.APARTMENT,
    "flat": PropertyType.APARTMENT,
    "villa": PropertyType.VILLA,
    "lodge": PropertyType.LODGE,
    "cabin": PropertyType.LODGE,
    "log cabin": PropertyType.LODGE,
    "hotel": PropertyType.HOTEL,
    "inn": PropertyType.HOTEL,
    "b&b": PropertyType.HOTEL,
    "bed and breakfast": PropertyType.HOTEL,
    "guest house": PropertyType.HOTEL,
    "caravan": PropertyType.CARAVAN,
    "static caravan": PropertyType.CARAVAN,
    "mobile home": PropertyType.CARAVAN,
    "holiday park": PropertyType.HOLIDAY_PARK,
    "holiday-park": PropertyType.HOLIDAY_PARK,
    "holiday_park": PropertyType.HOLIDAY_PARK,
    "yurt": PropertyType.YURT,
}

AMENITY_FLAGS: dict[str, str] = {
    "wifi": "wifi",
    "parking": "parking",
    "pet_friendly": "pet-friendly",
    "pets_allowed": "pet-friendly",
    "hot_tub": "hot-tub",
    "pool": "pool",
    "swimming_pool": "pool",
    "garden": "garden",
    "enclosed_garden": "enclosed-garden",
    "sea_view": "sea-view",
    "log_burner": "log-burner",
    "ev_charging": "ev-charging",
    "wheelchair_accessible": "wheelchair-accessible",
    "games_room": "games-room",
    "bbq": "bbq",
    "dishwasher": "dishwasher",
    "washing_machine": "washing-machine",
}

_TRUE_VALUES = frozenset({"1", "true", "yes", "y", "t", "on"})
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_NUMERIC_NOISE_RE = re.compile(r"[£$€,\s]")


@dataclass(frozen=True)
class TransformOptions:
    """Provider-level settings that influence how a raw record is normalised."""

    provider_slug: str
    commission_rate: Optional[Decimal] = None
    default_currency: str = "GBP"
    property_type_overrides: Mapping[str, PropertyType] = field(default_factory=dict)
    affiliate_url_builder: Optional[Callable[[str], str]] = None
    description_limit: int = SHORT_DESCRIPTION_LIMIT


def slugify(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower())
    return slug.strip("-")


def generate_slug(name: str, external_id: str) -> str:
    parts = [part for part in (slugify(name), slugify(external_id)) if part]
    return "-".join(parts)


def truncate(text: Optional[str], limit: int = SHORT_DESCRIPTION_LIMIT, end: str = "...") -> Optional[str]:
    if text is None:
        return None
    if len(text) <= limit:
        return text
    return text[: max(limit - len(end), 0)].rstrip() + end


def pick(raw: Mapping[str, Any], canonical: str) -> Optional[str]:
    """Return the first non-blank value among the aliases for ``canonical``."""
    for key in FIELD_ALIASES.get(canonical, (canonical,)):
        value = raw.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _to_int(value: Optional[str]) -> int:
    if value is None:
        return 0
    cleaned = _NUMERIC_NOISE_RE.sub("", value)
    try:
        return int(Decimal(cleaned))
    except (InvalidOperation, ValueError, OverflowError):
        return 0


def _to_decimal(value: Optional[str]) -> Optional[Decimal]:
    if value is None:
        return None
    cleaned = _NUMERIC_NOISE_RE.sub("", value)
    try:
        number = Decimal(cleaned)
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number.quantize(Decimal("0.01"))


def _to_float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_VALUES


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    separator = "|" if "|" in value else ","
    return [part.strip() for part in value.split(separator) if part.strip()]


def map_property_type(
    value: Optional[str],
    overrides: Optional[Mapping[str, PropertyType]] = None,
) -> PropertyType:
    if not value:
        return DEFAULT_PROPERTY_TYPE
    key = re.sub(r"\s+", " ", value.strip().lower())
    if overrides and key in overrides:
        return overrides[key]
    mapped = PROPERTY_TYPE_MAP.get(key)
    if mapped is not None:
        return mapped
    try:
        return PropertyType(key)
    except ValueError:
        logger.debug("Unmapped property type '%s'; defaulting to %s", value, DEFAULT_PROPERTY_TYPE.value)
        return DEFAULT_PROPERTY_TYPE


def extract_images(raw: Mapping[str, Any]) -> List[ImageRecord]:
    urls: List[str] = []
    primary_url = pick(raw, "image_url")
    if primary_url:
        urls.append(primary_url)
    urls.extend(_split_list(pick(raw, "images")))
    alternate = pick(raw, "alternate_image")
    if alternate:
        urls.append(alternate)

    images: List[ImageRecord] = []
    seen: set[str] = set()
    for url in urls:
        if url in seen:
            continue
        seen.add(url)
        images.append(ImageRecord(url=url, display_order=len(images), is_primary=not images))
    if images:
        images[0].thumbnail_url = pick(raw, "thumbnail_url")
    return images


def extract_amenities(raw: Mapping[str, Any]) -> List[str]:
    amenities: List[str] = []
    for flag, slug in AMENITY_FLAGS.items():
        if _to_bool(raw.get(flag)) and slug not in amenities:
            amenities.append(slug)
    for entry in _split_list(pick(raw, "amenities")):
        slug = slugify(entry)
        if slug and slug not in amenities:
            amenities.append(slug)
    return amenities


def _validate(record: PropertyRecord, errors: Dict[str, str]) -> None:
    for name in ("sleeps", "bedrooms", "bathrooms"):
        if getattr(record, name) < 0:
            errors[name] = "must be non-negative"
    if record.price_from is not None and record.price_from < 0:
        errors["price_from"] = "must be non-negative"
    if record.latitude is not None and not -90.0 <= record.latitude <= 90.0:
        errors["latitude"] = "out of range"
    if record.longitude is not None and not -180.0 <= record.longitude <= 180.0:
        errors["longitude"] = "out of range"
    if not _CURRENCY_RE.match(record.price_currency):
        errors["price_currency"] = "must be a 3-letter currency code"
    if not record.affiliate_url:
        errors["affiliate_url"] = "required"


def transform_record(
    raw: Mapping[str, Any],
    options: TransformOptions,
) -> Union[PropertyRecord, ValidationFailure]:
    """Normalise one provider field map, or explain why it cannot be used."""
    errors: Dict[str, str] = {}
    external_id = pick(raw, "external_id")
    name = pick(raw, "name")
    if not external_id:
        errors["external_id"] = "required"
    if not name:
        errors["name"] = "required"
    if errors:
        return ValidationFailure(external_id=external_id, errors=errors)

    assert external_id is not None and name is not None
    description = pick(raw, "description")
    deep_link = pick(raw, "deep_link")
    if not deep_link and options.affiliate_url_builder is not None:
        deep_link = options.affiliate_url_builder(external_id)

    record = PropertyRecord(
        external_id=external_id,
        name=name,
        slug=generate_slug(name, external_id),
        property_type=map_property_type(pick(raw, "property_type"), options.property_type_overrides),
        affiliate_url=deep_link or "",
        description=description,
        short_description=truncate(description, options.description_limit),
        address_line_1=pick(raw, "address_line_1"),
        address_line_2=pick(raw, "address_line_2"),
        postcode=pick(raw, "postcode"),
        latitude=_to_float(pick(raw, "latitude")),
        longitude=_to_float(pick(raw, "longitude")),
        sleeps=_to_int(pick(raw, "sleeps")),
        bedrooms=_to_int(pick(raw, "bedrooms")),
        bathrooms=_to_int(pick(raw, "bathrooms")),
        price_from=_to_decimal(pick(raw, "price")),
        price_currency=(pick(raw, "currency") or options.default_currency).upper(),
        commission_rate=options.commission_rate,
        is_active=True,
        featured=_to_bool(pick(raw, "featured")),
        images=extract_images(raw),
        amenities=extract_amenities(raw),
    )
    _validate(record, errors)
    if errors:
        return ValidationFailure(external_id=external_id, errors=errors)
    return record


def transform_records(
    rows: Iterable[Mapping[str, Any]],
    options: TransformOptions,
) -> tuple[List[PropertyRecord], List[ValidationFailure]]:
    records: List[PropertyRecord] = []
    failures: List[ValidationFailure] = []
    for row in rows:
        result = transform_record(row, options)
        if isinstance(result, ValidationFailure):
            failures.append(result)
        else:
            records.append(result)
    return records, failures


__all__ = [
    "AMENITY_FLAGS",
    "FIELD_ALIASES",
    "PROPERTY_TYPE_MAP",
    "TransformOptions",
    "extract_amenities",
    "extract_images",
    "generate_slug",
    "map_property_type",
    "pick",
    "slugify",
    "transform_record",
    "transform_records",
    "truncate",
]
