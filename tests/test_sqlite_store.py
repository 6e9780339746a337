from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from holiday_catalog.config.providers import ProviderDefinition
from holiday_catalog.core.clock import FrozenClock, to_iso
from holiday_catalog.errors import LocationHierarchyError, SyncInProgressError
from holiday_catalog.feeds.models import ImageRecord, PropertyRecord, PropertyType
from holiday_catalog.storage.records import LocationType, SyncCounters, SyncStatus
from holiday_catalog.storage.sqlite_store import SCHEMA_VERSION, SqliteStore


def _definition(slug: str = "sykes") -> ProviderDefinition:
    return ProviderDefinition.model_validate(
        {
            "slug": slug,
            "name": slug.title(),
            "adapter": "sykes",
            "config": {"affiliate_id": "AFF1", "feed_url": "https://feeds.example.com/sykes.csv"},
        }
    )


def _record(external_id: str = "SYK-1", name: str = "Harbour Cottage", **overrides) -> PropertyRecord:
    values = {
        "external_id": external_id,
        "name": name,
        "slug": f"harbour-cottage-{external_id.lower()}",
        "property_type": PropertyType.COTTAGE,
        "affiliate_url": f"https://aff.example.com/{external_id}",
        "sleeps": 4,
        "bedrooms": 2,
        "bathrooms": 1,
        "price_from": Decimal("450.00"),
        "images": [
            ImageRecord(url="https://cdn.example.com/a.jpg", display_order=0, is_primary=True),
            ImageRecord(url="https://cdn.example.com/b.jpg", display_order=1),
        ],
        "amenities": ["wifi", "hot-tub", "not-a-real-amenity"],
    }
    values.update(overrides)
    return PropertyRecord(**values)


@pytest.mark.asyncio
async def test_initialize_applies_migrations_and_pragmas(tmp_path) -> None:
    db_path = tmp_path / "catalog.sqlite"
    store = SqliteStore(db_path, journal_mode="wal", synchronous="full")
    await store.initialize()
    await store.close()

    reopened = SqliteStore(db_path)
    await reopened.initialize()
    await reopened.close()

    with sqlite3.connect(db_path) as conn:
        version = conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()[0]
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        amenity_count = conn.execute("SELECT COUNT(*) FROM amenities").fetchone()[0]
        journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]

    assert int(version) == SCHEMA_VERSION
    assert {"affiliate_providers", "locations", "properties", "search_logs", "search_documents"} <= tables
    assert amenity_count > 30
    assert journal_mode.lower() == "wal"


def test_store_rejects_unknown_pragmas(tmp_path) -> None:
    with pytest.raises(ValueError):
        SqliteStore(tmp_path / "x.sqlite", journal_mode="bogus")
    with pytest.raises(ValueError):
        SqliteStore(tmp_path / "x.sqlite", synchronous="sometimes")


@pytest.mark.asyncio
async def test_upsert_property_is_idempotent(tmp_path) -> None:
    store = SqliteStore(tmp_path / "catalog.sqlite")
    await store.initialize()
    provider = await store.upsert_provider(_definition())

    first = await store.upsert_property(provider_id=provider.id, provider_slug="sykes", record=_record(), location_id=None)
    before = await store.get_property(first.property_id)
    second = await store.upsert_property(provider_id=provider.id, provider_slug="sykes", record=_record(), location_id=None)
    after = await store.get_property(second.property_id)

    assert first.created is True
    assert second.created is False
    assert second.property_id == first.property_id
    assert await store.count_properties() == 1
    assert after["images"] == before["images"]
    assert [image["url"] for image in after["images"]] == ["https://cdn.example.com/a.jpg", "https://cdn.example.com/b.jpg"]
    assert after["amenities"] == ["hot-tub", "wifi"]
    assert after["price_from"] == "450.00"
    await store.close()


@pytest.mark.asyncio
async def test_slug_collisions_are_suffixed_with_provider_slug(tmp_path) -> None:
    store = SqliteStore(tmp_path / "catalog.sqlite")
    await store.initialize()
    sykes = await store.upsert_provider(_definition("sykes"))
    other = await store.upsert_provider(_definition("cottages-direct"))

    original = await store.upsert_property(provider_id=sykes.id, provider_slug="sykes", record=_record(), location_id=None)
    clash = await store.upsert_property(
        provider_id=other.id, provider_slug="cottages-direct", record=_record(), location_id=None
    )
    resynced = await store.upsert_property(
        provider_id=other.id, provider_slug="cottages-direct", record=_record(), location_id=None
    )

    assert original.slug == "harbour-cottage-syk-1"
    assert clash.slug == "harbour-cottage-syk-1-cottages-direct"
    assert resynced.slug == clash.slug
    await store.close()


@pytest.mark.asyncio
async def test_location_hierarchy_is_enforced(tmp_path) -> None:
    store = SqliteStore(tmp_path / "catalog.sqlite")
    await store.initialize()
    root = await store.find_or_create_location(type=LocationType.COUNTRY, name="United Kingdom", slug="united-kingdom")
    again = await store.find_or_create_location(type=LocationType.COUNTRY, name="United Kingdom", slug="united-kingdom")
    district = await store.find_or_create_location(type=LocationType.DISTRICT, name="TR19", slug="tr19", parent=root)

    assert again.id == root.id
    with pytest.raises(LocationHierarchyError):
        await store.find_or_create_location(type=LocationType.REGION, name="Cornwall", slug="cornwall", parent=district)
    await store.close()


@pytest.mark.asyncio
async def test_location_counts_include_descendants(tmp_path) -> None:
    store = SqliteStore(tmp_path / "catalog.sqlite")
    await store.initialize()
    provider = await store.upsert_provider(_definition())
    root = await store.find_or_create_location(type=LocationType.COUNTRY, name="United Kingdom", slug="united-kingdom")
    district = await store.find_or_create_location(type=LocationType.DISTRICT, name="TR19", slug="tr19", parent=root)
    postcode = await store.find_or_create_location(
        type=LocationType.POSTCODE, name="TR19 7AA", slug="tr19-7aa", parent=district, postcode="TR19 7AA"
    )
    await store.upsert_property(provider_id=provider.id, provider_slug="sykes", record=_record("A"), location_id=postcode.id)
    await store.upsert_property(provider_id=provider.id, provider_slug="sykes", record=_record("B"), location_id=district.id)
    await store.upsert_property(
        provider_id=provider.id, provider_slug="sykes", record=_record("C", is_active=False), location_id=postcode.id
    )

    await store.refresh_location_counts()

    assert (await store.get_location(postcode.id)).property_count == 1
    assert (await store.get_location(district.id)).property_count == 2
    assert (await store.get_location(root.id)).property_count == 2
    await store.close()


@pytest.mark.asyncio
async def test_begin_sync_guards_against_concurrent_runs(tmp_path) -> None:
    clock = FrozenClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))
    store = SqliteStore(tmp_path / "catalog.sqlite", clock=clock)
    await store.initialize()
    provider = await store.upsert_provider(_definition())

    log = await store.begin_sync(provider.id, stale_after=timedelta(hours=1))
    assert log.status is SyncStatus.STARTED
    assert log.started_at == to_iso(clock())

    with pytest.raises(SyncInProgressError):
        await store.begin_sync(provider.id, stale_after=timedelta(hours=1))

    clock.advance(hours=2)
    fresh = await store.begin_sync(provider.id, stale_after=timedelta(hours=1))
    logs = await store.recent_sync_logs(provider.id)

    assert fresh.id != log.id
    stale = next(entry for entry in logs if entry.id == log.id)
    assert stale.status is SyncStatus.FAILED
    assert stale.error_message

    finished = await store.finalize_sync(fresh.id, SyncCounters(fetched=3, created=2, updated=1))
    assert finished.status is SyncStatus.SUCCESS
    assert (finished.properties_fetched, finished.properties_created, finished.properties_updated) == (3, 2, 1)
    await store.close()


@pytest.mark.asyncio
async def test_deactivate_missing_only_touches_unseen_properties(tmp_path) -> None:
    clock = FrozenClock(datetime(2025, 3, 1, tzinfo=timezone.utc))
    store = SqliteStore(tmp_path / "catalog.sqlite", clock=clock)
    await store.initialize()
    provider = await store.upsert_provider(_definition())
    await store.upsert_property(provider_id=provider.id, provider_slug="sykes", record=_record("OLD"), location_id=None)

    clock.advance(days=1)
    seen_since = to_iso(clock())
    await store.upsert_property(provider_id=provider.id, provider_slug="sykes", record=_record("NEW"), location_id=None)

    deactivated = await store.deactivate_missing(provider.id, seen_since=seen_since)

    assert deactivated == 1
    assert await store.count_properties(active_only=True) == 1
    old_id = await store.find_property_id(provider.id, "OLD")
    assert (await store.get_property(old_id))["is_active"] == 0
    await store.close()
