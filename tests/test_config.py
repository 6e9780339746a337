from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from holiday_catalog.config.providers import (
    AdapterKind,
    FileFeedConfig,
    ProviderDefinition,
    ProvidersFile,
    SyncFrequency,
    SykesConfig,
)
from holiday_catalog.config.settings import Settings
from holiday_catalog.feeds.models import PropertyType
from holiday_catalog.feeds.parser import FeedFormat

REPO_ROOT = Path(__file__).resolve().parents[1]


def test_bundled_providers_file_loads() -> None:
    document = ProvidersFile.load(REPO_ROOT / "config" / "providers.toml")

    sykes = document.get("sykes")
    local = document.get("local-feed")

    assert sykes is not None and local is not None
    assert isinstance(sykes.config, SykesConfig)
    assert sykes.config.affiliate_id is None
    assert sykes.config.commission_rate == Decimal("5.0")
    assert sykes.config.property_type_map["log cabin"] is PropertyType.LODGE
    assert isinstance(local.config, FileFeedConfig)
    assert local.is_active is False
    assert local.sync_frequency is SyncFrequency.MANUAL
    assert local.config.path == (REPO_ROOT / "data" / "feeds" / "properties.csv").resolve()
    assert document.get("missing") is None


def test_relative_feed_paths_resolve_against_the_file(tmp_path) -> None:
    config_dir = tmp_path / "conf"
    config_dir.mkdir()
    providers_path = config_dir / "providers.toml"
    providers_path.write_text(
        "\n".join(
            [
                "[[providers]]",
                'slug = "partner-export"',
                'name = "Partner export"',
                'adapter = "file_feed"',
                "[providers.config]",
                'path = "feeds/partner.xml"',
                "[providers.config.property_type_map]",
                '"Static Caravan" = "caravan"',
            ]
        )
    )

    definition = ProvidersFile.load(providers_path).providers[0]

    assert definition.adapter is AdapterKind.FILE_FEED
    assert definition.config.path == (config_dir / "feeds" / "partner.xml").resolve()
    assert definition.config.resolved_format() is FeedFormat.XML
    assert definition.config.property_type_map == {"static caravan": PropertyType.CARAVAN}


def test_duplicate_slugs_are_rejected() -> None:
    entry = {"slug": "sykes", "name": "Sykes", "adapter": "sykes", "config": {}}

    with pytest.raises(ValidationError):
        ProvidersFile.model_validate({"providers": [entry, dict(entry)]})


def test_adapter_config_is_validated_on_load() -> None:
    with pytest.raises(ValidationError):
        ProviderDefinition.model_validate(
            {"slug": "sykes", "name": "Sykes", "adapter": "sykes", "config": {"default_currency": "pounds"}}
        )
    with pytest.raises(ValidationError):
        ProviderDefinition.model_validate({"slug": "x", "name": "X", "adapter": "carrier-pigeon", "config": {}})
    with pytest.raises(ValidationError):
        ProviderDefinition.model_validate({"slug": "Not A Slug", "name": "X", "adapter": "sykes", "config": {}})
    with pytest.raises(ValidationError):
        ProviderDefinition.model_validate({"slug": "feed", "name": "Feed", "adapter": "file_feed", "config": {}})


def test_config_json_is_serializable() -> None:
    definition = ProviderDefinition.model_validate(
        {"slug": "sykes", "name": "Sykes", "adapter": "sykes", "config": {"affiliate_id": "AFF1"}}
    )

    payload = definition.config_json()

    assert payload["affiliate_id"] == "AFF1"
    assert payload["feed_format"] == "csv"
    assert payload["commission_rate"] == "5.0"


def test_sync_frequency_intervals() -> None:
    assert SyncFrequency.HOURLY.interval().total_seconds() == 3600
    assert SyncFrequency.WEEKLY.interval().days == 7
    assert SyncFrequency.MANUAL.interval() is None


def test_settings_read_prefixed_environment(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("CATALOG_SEARCH_BACKEND", "meilisearch")
    monkeypatch.setenv("CATALOG_SQLITE_PATH", str(tmp_path / "db" / "catalog.sqlite3"))
    monkeypatch.setenv("CATALOG_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("CATALOG_MEILISEARCH_API_KEY", "   ")
    monkeypatch.setenv("CATALOG_SYNC_RECORD_CONCURRENCY", "4")

    settings = Settings(_env_file=None)

    assert settings.search_backend == "meilisearch"
    assert settings.meilisearch_api_key is None
    assert settings.sync_record_concurrency == 4
    settings.ensure_directories()
    assert (tmp_path / "db").is_dir()
    assert (tmp_path / "logs").is_dir()


def test_settings_reject_invalid_values(monkeypatch) -> None:
    monkeypatch.setenv("CATALOG_SYNC_TIMEOUT_S", "0")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)

    monkeypatch.delenv("CATALOG_SYNC_TIMEOUT_S")
    with pytest.raises(ValidationError):
        Settings(_env_file=None, search_backend="elastic")
