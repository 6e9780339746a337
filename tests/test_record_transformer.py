from __future__ import annotations

from decimal import Decimal

from holiday_catalog.feeds.models import PropertyRecord, PropertyType, ValidationFailure
from holiday_catalog.feeds.transformer import (
    TransformOptions,
    generate_slug,
    map_property_type,
    transform_record,
    transform_records,
    truncate,
)


def _options(**overrides) -> TransformOptions:
    values = {
        "provider_slug": "sykes",
        "commission_rate": Decimal("5.0"),
        "affiliate_url_builder": lambda external_id: f"https://aff.example.com/property/{external_id}",
    }
    values.update(overrides)
    return TransformOptions(**values)


def test_transform_record_builds_canonical_property() -> None:
    raw = {
        "product_id": "SYK-1",
        "product_name": "Harbour Cottage",
        "description": "A" * 250,
        "merchant_category": "Log Cabin",
        "postcode": "tr19 7aa",
        "lat": "50.06",
        "lng": "-5.71",
        "sleeps": "6",
        "bedrooms": "3",
        "bathrooms": "two",
        "search_price": "£1,250.5",
        "aw_image_url": "https://cdn.example.com/1.jpg",
        "images": "https://cdn.example.com/2.jpg|https://cdn.example.com/1.jpg|https://cdn.example.com/3.jpg",
        "aw_thumb_url": "https://cdn.example.com/1-thumb.jpg",
        "wifi": "1",
        "pet_friendly": "Yes",
        "hot_tub": "0",
        "amenities": "Sea View, parking",
        "is_featured": "true",
    }

    record = transform_record(raw, _options())

    assert isinstance(record, PropertyRecord)
    assert record.external_id == "SYK-1"
    assert record.slug == "harbour-cottage-syk-1"
    assert record.property_type is PropertyType.LODGE
    assert record.latitude == 50.06
    assert record.longitude == -5.71
    assert (record.sleeps, record.bedrooms, record.bathrooms) == (6, 3, 0)
    assert record.price_from == Decimal("1250.50")
    assert record.price_currency == "GBP"
    assert record.commission_rate == Decimal("5.0")
    assert record.featured is True
    assert record.affiliate_url == "https://aff.example.com/property/SYK-1"
    assert len(record.short_description) == 200
    assert record.short_description.endswith("...")

    assert [image.url for image in record.images] == [
        "https://cdn.example.com/1.jpg",
        "https://cdn.example.com/2.jpg",
        "https://cdn.example.com/3.jpg",
    ]
    assert [image.display_order for image in record.images] == [0, 1, 2]
    assert [image.is_primary for image in record.images] == [True, False, False]
    assert record.images[0].thumbnail_url == "https://cdn.example.com/1-thumb.jpg"
    assert record.amenities == ["wifi", "pet-friendly", "sea-view", "parking"]


def test_deep_link_wins_over_builder() -> None:
    raw = {"product_id": "X1", "product_name": "Barn", "aw_deep_link": "https://awin.example.com/x1"}

    record = transform_record(raw, _options())

    assert isinstance(record, PropertyRecord)
    assert record.affiliate_url == "https://awin.example.com/x1"
    assert record.images == []
    assert record.price_from is None


def test_validation_failure_lists_offending_fields() -> None:
    raw = {
        "product_id": "BAD-1",
        "product_name": "Broken",
        "sleeps": "-2",
        "latitude": "91",
        "currency": "pounds",
        "price": "-10",
    }

    result = transform_record(raw, _options())

    assert isinstance(result, ValidationFailure)
    assert result.external_id == "BAD-1"
    assert result.fields == ["latitude", "price_currency", "price_from", "sleeps"]
    assert "sleeps: must be non-negative" in result.describe()


def test_missing_identity_is_rejected() -> None:
    result = transform_record({"product_name": "Nameless"}, _options())

    assert isinstance(result, ValidationFailure)
    assert result.external_id is None
    assert result.fields == ["external_id"]


def test_missing_affiliate_url_is_rejected_without_builder() -> None:
    result = transform_record({"id": "F1", "name": "Flat"}, _options(affiliate_url_builder=None))

    assert isinstance(result, ValidationFailure)
    assert result.fields == ["affiliate_url"]


def test_property_type_mapping_prefers_overrides_and_defaults_to_cottage() -> None:
    overrides = {"shepherds hut": PropertyType.YURT}

    assert map_property_type("Shepherds  Hut", overrides) is PropertyType.YURT
    assert map_property_type("Static Caravan") is PropertyType.CARAVAN
    assert map_property_type("holiday-park") is PropertyType.HOLIDAY_PARK
    assert map_property_type("Treehouse") is PropertyType.COTTAGE
    assert map_property_type(None) is PropertyType.COTTAGE


def test_slug_and_truncate_helpers() -> None:
    assert generate_slug("Ty Bach, Snowdonia!", "ABC 12") == "ty-bach-snowdonia-abc-12"
    assert truncate("short", 200) == "short"
    assert truncate("x" * 10, 8) == "xxxxx..."
    assert truncate(None) is None


def test_transform_records_partitions_results() -> None:
    rows = [
        {"id": "1", "name": "One"},
        {"id": "2", "name": "Two", "bedrooms": "-1"},
        {"id": "3", "name": "Three"},
    ]

    records, failures = transform_records(rows, _options())

    assert [record.external_id for record in records] == ["1", "3"]
    assert [failure.external_id for failure in failures] == ["2"]
