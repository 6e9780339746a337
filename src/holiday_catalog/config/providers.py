"""Affiliate provider definitions loaded from TOML.

Each ``[[providers]]`` entry names an adapter from the compiled-in registry and
carries a ``[providers.config]`` table that is validated against that adapter's
typed config model when the file is loaded, so a typo fails at startup rather
than halfway through a sync.
"""
from __future__ import annotations

import tomllib
from datetime import timedelta
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from holiday_catalog.feeds.models import PropertyType
from holiday_catalog.feeds.parser import FeedFormat

SYKES_BASE_URL = "https://www.sykescottages.co.uk"


class AdapterKind(str, Enum):
    SYKES = "sykes"
    FILE_FEED = "file_feed"


class SyncFrequency(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MANUAL = "manual"

    def interval(self) -> Optional[timedelta]:
        return _FREQUENCY_INTERVALS.get(self)


_FREQUENCY_INTERVALS: dict[SyncFrequency, timedelta] = {
    SyncFrequency.HOURLY: timedelta(hours=1),
    SyncFrequency.DAILY: timedelta(days=1),
    SyncFrequency.WEEKLY: timedelta(weeks=1),
}


class _FeedConfig(BaseModel):
    commission_rate: Optional[Decimal] = Field(default=None, ge=0)
    default_currency: str = Field(default="GBP", pattern=r"^[A-Z]{3}$")
    property_type_map: dict[str, PropertyType] = Field(
        default_factory=dict,
        description="Feed category text (lower-cased) mapped onto a canonical property type",
    )

    @field_validator("property_type_map", mode="before")
    @classmethod
    def _lower_keys(cls, value: object) -> object:
        if isinstance(value, dict):
            return {str(key).strip().lower(): item for key, item in value.items()}
        return value


class SykesConfig(_FeedConfig):
    """Sykes Cottages product feed served through an affiliate network."""

    affiliate_id: Optional[str] = None
    feed_url: Optional[str] = None
    feed_format: FeedFormat = FeedFormat.CSV
    affiliate_base_url: str = SYKES_BASE_URL
    commission_rate: Optional[Decimal] = Field(default=Decimal("5.0"), ge=0)
    timeout_s: float = Field(default=120.0, gt=0)
    extra_params: dict[str, str] = Field(default_factory=dict)

    @field_validator("affiliate_id", "feed_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class FileFeedConfig(_FeedConfig):
    """Feed dropped on local disk (manual exports, partner SFTP mirrors)."""

    path: Path
    feed_format: Optional[FeedFormat] = None
    affiliate_url_template: Optional[str] = Field(
        default=None,
        description="Format string with an {external_id} placeholder used when rows lack a deep link",
    )

    def resolved_format(self) -> FeedFormat:
        if self.feed_format is not None:
            return self.feed_format
        if self.path.suffix.lower() == ".xml":
            return FeedFormat.XML
        return FeedFormat.CSV


AdapterConfig = Union[SykesConfig, FileFeedConfig]

ADAPTER_CONFIG_MODELS: dict[AdapterKind, type[BaseModel]] = {
    AdapterKind.SYKES: SykesConfig,
    AdapterKind.FILE_FEED: FileFeedConfig,
}


class ProviderDefinition(BaseModel):
    """One affiliate provider as declared in the providers file."""

    slug: str = Field(pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    name: str
    adapter: AdapterKind
    is_active: bool = True
    sync_frequency: SyncFrequency = SyncFrequency.DAILY
    config: AdapterConfig

    @model_validator(mode="before")
    @classmethod
    def _validate_config(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        adapter = AdapterKind(data.get("adapter"))
        model = ADAPTER_CONFIG_MODELS[adapter]
        payload = dict(data)
        raw_config = payload.get("config") or {}
        payload["config"] = raw_config if isinstance(raw_config, model) else model.model_validate(raw_config)
        return payload

    def config_json(self) -> dict[str, Any]:
        return self.config.model_dump(mode="json")


class ProvidersFile(BaseModel):
    """Top-level providers document decoded from TOML."""

    providers: list[ProviderDefinition] = Field(default_factory=list)

    @field_validator("providers")
    @classmethod
    def _unique_slugs(cls, value: list[ProviderDefinition]) -> list[ProviderDefinition]:
        seen: set[str] = set()
        for definition in value:
            if definition.slug in seen:
                raise ValueError(f"Duplicate provider slug '{definition.slug}'")
            seen.add(definition.slug)
        return value

    @classmethod
    def load(cls, path: Path) -> "ProvidersFile":
        """Load provider definitions from a TOML file."""
        data = tomllib.loads(path.read_text())
        document = cls.model_validate(data)
        document._resolve_paths(path.parent)
        return document

    def get(self, slug: str) -> Optional[ProviderDefinition]:
        return next((definition for definition in self.providers if definition.slug == slug), None)

    def _resolve_paths(self, base_dir: Path) -> None:
        for definition in self.providers:
            config = definition.config
            if isinstance(config, FileFeedConfig):
                config.path = _resolve_path(config.path, base_dir)


def _resolve_path(raw: Path, base_dir: Optional[Path]) -> Path:
    path = raw.expanduser()
    if not path.is_absolute() and base_dir:
        return (base_dir / path).resolve()
    return path


__all__ = [
    "ADAPTER_CONFIG_MODELS",
    "AdapterConfig",
    "AdapterKind",
    "FileFeedConfig",
    "ProviderDefinition",
    "ProvidersFile",
    "SyncFrequency",
    "SykesConfig",
]
