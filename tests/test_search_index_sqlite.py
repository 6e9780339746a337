from __future__ import annotations

from decimal import Decimal

import pytest

from holiday_catalog.config.providers import ProviderDefinition
from holiday_catalog.feeds.models import ImageRecord, PropertyRecord, PropertyType
from holiday_catalog.search.builder import PropertySearch
from holiday_catalog.search.index import SqliteSearchIndex
from holiday_catalog.storage.records import LocationType
from holiday_catalog.storage.sqlite_store import SqliteStore

LISTINGS = [
    ("C1", "Harbour Cottage", PropertyType.COTTAGE, 4, 2, Decimal("450"), False, True, "Fishing village by the sea"),
    ("C2", "Sea View Villa", PropertyType.VILLA, 8, 4, Decimal("1200"), True, True, "Clifftop villa with pool"),
    ("C3", "Moorland Lodge", PropertyType.LODGE, 6, 3, Decimal("700"), False, True, "Remote lodge, sea of heather"),
    ("C4", "Town Apartment", PropertyType.APARTMENT, 2, 1, None, False, True, "Central 100% walkable flat"),
    ("C5", "Closed Barn", PropertyType.COTTAGE, 10, 5, Decimal("300"), False, False, "Seasonal barn"),
]


async def _seeded_index(tmp_path) -> tuple[SqliteStore, SqliteSearchIndex]:
    store = SqliteStore(tmp_path / "catalog.sqlite")
    await store.initialize()
    provider = await store.upsert_provider(
        ProviderDefinition.model_validate(
            {"slug": "sykes", "name": "Sykes", "adapter": "sykes", "config": {"affiliate_id": "A", "feed_url": "x"}}
        )
    )
    root = await store.find_or_create_location(type=LocationType.COUNTRY, name="United Kingdom", slug="united-kingdom")
    cornwall = await store.find_or_create_location(
        type=LocationType.DISTRICT, name="Cornwall", slug="cornwall", parent=root
    )
    for external_id, name, kind, sleeps, bedrooms, price, featured, active, description in LISTINGS:
        record = PropertyRecord(
            external_id=external_id,
            name=name,
            slug=f"{name.lower().replace(' ', '-')}-{external_id.lower()}",
            property_type=kind,
            affiliate_url=f"https://aff.example.com/{external_id}",
            description=description,
            sleeps=sleeps,
            bedrooms=bedrooms,
            price_from=price,
            featured=featured,
            is_active=active,
            images=[ImageRecord(url=f"https://cdn.example.com/{external_id}.jpg", display_order=0, is_primary=True)],
            amenities=["wifi"] if featured else [],
        )
        location_id = cornwall.id if external_id in ("C1", "C2") else root.id
        await store.upsert_property(provider_id=provider.id, provider_slug="sykes", record=record, location_id=location_id)
    index = SqliteSearchIndex(store)
    assert await index.reindex_all() == len(LISTINGS)
    return store, index


@pytest.mark.asyncio
async def test_text_query_matches_terms_and_ranks_name_matches_first(tmp_path) -> None:
    store, index = await _seeded_index(tmp_path)

    page = await PropertySearch(index).query("sea").execute()

    assert [hit["name"] for hit in page.items] == ["Sea View Villa", "Harbour Cottage", "Moorland Lodge"]
    assert page.total == 3
    await store.close()


@pytest.mark.asyncio
async def test_text_query_matches_location_name_and_escapes_wildcards(tmp_path) -> None:
    store, index = await _seeded_index(tmp_path)

    by_location = await PropertySearch(index).query("cornwall").execute()
    literal = await PropertySearch(index).query("100%").execute()
    underscore = await PropertySearch(index).query("_").execute()

    assert {hit["name"] for hit in by_location.items} == {"Harbour Cottage", "Sea View Villa"}
    assert [hit["name"] for hit in literal.items] == ["Town Apartment"]
    assert underscore.total == 0
    await store.close()


@pytest.mark.asyncio
async def test_filters_sorts_and_inactive_handling(tmp_path) -> None:
    store, index = await _seeded_index(tmp_path)

    cheapest = await PropertySearch(index).sleeps(4).cheapest().execute()
    everything = await PropertySearch(index).include_inactive().largest_first().execute()
    priced = await PropertySearch(index).most_expensive().execute()
    typed = await PropertySearch(index).property_type(["villa", "lodge"]).execute()

    assert [hit["name"] for hit in cheapest.items] == ["Harbour Cottage", "Moorland Lodge", "Sea View Villa"]
    assert everything.total == 5
    assert everything.items[0]["name"] == "Closed Barn"
    assert everything.items[0]["is_active"] is False
    assert priced.items[-1]["name"] == "Town Apartment"
    assert {hit["property_type"] for hit in typed.items} == {"villa", "lodge"}
    await store.close()


@pytest.mark.asyncio
async def test_hits_carry_denormalized_fields(tmp_path) -> None:
    store, index = await _seeded_index(tmp_path)

    page = await PropertySearch(index).featured_only().execute()

    assert page.total == 1
    hit = page.items[0]
    assert hit["name"] == "Sea View Villa"
    assert hit["featured"] is True
    assert hit["amenities"] == ["wifi"]
    assert hit["location_name"] == "Cornwall"
    assert hit["provider_slug"] == "sykes"
    assert hit["primary_image"] == "https://cdn.example.com/C2.jpg"
    assert hit["price_from"] == 1200.0
    await store.close()


@pytest.mark.asyncio
async def test_facet_counts_and_pagination(tmp_path) -> None:
    store, index = await _seeded_index(tmp_path)

    page = await (
        PropertySearch(index).with_facets(["property_type", "featured"]).featured_first().paginate(2, page=2).execute()
    )

    assert page.total == 4
    assert len(page.items) == 2
    assert page.meta()["from"] == 3 and page.meta()["to"] == 4
    assert page.facets == {
        "property_type": {"apartment": 1, "cottage": 1, "lodge": 1, "villa": 1},
        "featured": {"false": 3, "true": 1},
    }
    await store.close()


@pytest.mark.asyncio
async def test_clear_index_empties_documents(tmp_path) -> None:
    store, index = await _seeded_index(tmp_path)

    await index.clear_index()

    assert await PropertySearch(index).include_inactive().count() == 0
    await store.close()
