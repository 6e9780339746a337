from __future__ import annotations

import pytest

from holiday_catalog.config.settings import Settings
from holiday_catalog.runtime import build_runtime
from holiday_catalog.search.index import SqliteSearchIndex
from holiday_catalog.search.request import SearchRequest
from holiday_catalog.storage.records import SyncStatus
from holiday_catalog.sync.orchestrator import TriggerStatus

FEED = (
    "product_id,product_name,description,merchant_category,postcode,latitude,longitude,sleeps,price\n"
    "LF-1,Harbour Cottage,Cottage by the harbour,Cottages,TR19 7AA,50.06,-5.71,4,450\n"
    "LF-2,Moorland Lodge,Lodge on the moor,Log Cabin,,,,6,700\n"
)


def _settings(tmp_path) -> Settings:
    feed = tmp_path / "feeds" / "local.csv"
    feed.parent.mkdir()
    feed.write_text(FEED)
    providers = tmp_path / "providers.toml"
    providers.write_text(
        "\n".join(
            [
                "[[providers]]",
                'slug = "local-feed"',
                'name = "Local feed"',
                'adapter = "file_feed"',
                "[providers.config]",
                'path = "feeds/local.csv"',
                'affiliate_url_template = "https://partner.example.com/stay/{external_id}"',
            ]
        )
    )
    return Settings(
        _env_file=None,
        log_dir=tmp_path / "logs",
        sqlite_path=tmp_path / "db" / "catalog.sqlite3",
        providers_path=providers,
        search_backend="sqlite",
    )


@pytest.mark.asyncio
async def test_sync_then_search_end_to_end(tmp_path) -> None:
    async with build_runtime(_settings(tmp_path)) as runtime:
        assert isinstance(runtime.index, SqliteSearchIndex)

        outcome = await runtime.orchestrator.sync_provider("local-feed")
        response = await runtime.search.search(SearchRequest(q="harbour"))
        everything = await runtime.search.search(SearchRequest(sort="price_desc"))

        assert outcome.status is TriggerStatus.SUCCESS
        assert outcome.log.status is SyncStatus.SUCCESS
        assert outcome.log.properties_created == 2
        assert response["meta"]["total"] == 1
        hit = response["data"][0]
        assert hit["name"] == "Harbour Cottage"
        assert hit["location_name"] == "TR19 7AA"
        assert hit["affiliate_url"] == "https://partner.example.com/stay/LF-1"
        assert [item["name"] for item in everything["data"]] == ["Moorland Lodge", "Harbour Cottage"]
        assert everything["data"][0]["location_name"] == "United Kingdom"

        stats = await runtime.search.statistics()
        assert stats["statistics"]["total_searches"] == 2


@pytest.mark.asyncio
async def test_missing_providers_file_uses_stored_providers(tmp_path) -> None:
    settings = _settings(tmp_path)
    settings.providers_path = tmp_path / "absent.toml"

    async with build_runtime(settings) as runtime:
        outcome = await runtime.orchestrator.sync_provider("local-feed")

    assert outcome.status is TriggerStatus.NOT_FOUND
