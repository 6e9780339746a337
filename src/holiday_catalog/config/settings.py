"""Runtime configuration for the catalog.

Relies on pydantic-settings so that environment variables (prefixed with ``CATALOG_``)
can override defaults. See `.env.example` for common values.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Captures runtime configuration for ingestion and search."""

    log_level: str = Field(default="INFO")
    log_dir: Path = Field(default=Path("data/logs"), description="Directory for the rotating catalog log")

    sqlite_path: Path = Field(default=Path("data/catalog.sqlite3"), description="SQLite database file")
    sqlite_busy_timeout_ms: int = Field(default=2000, description="SQLite busy timeout (ms) for locks")
    sqlite_journal_mode: Optional[str] = Field(default="wal", description="SQLite journal_mode PRAGMA")
    sqlite_synchronous: Optional[str] = Field(default="normal", description="SQLite synchronous PRAGMA")

    providers_path: Path = Field(
        default=Path("config/providers.toml"), description="TOML file describing affiliate providers"
    )

    geocoding_base_url: str = Field(
        default="https://api.postcodes.io", description="Base URL of the postcode geocoding service"
    )
    geocoding_timeout_s: float = Field(default=10.0, description="Timeout for a single geocoding request")
    geocoding_cache_days: int = Field(default=30, description="Days a successful geocode stays cached")

    default_location_name: str = Field(default="United Kingdom")
    default_location_slug: str = Field(default="united-kingdom")
    default_location_latitude: Optional[float] = Field(default=54.7023545)
    default_location_longitude: Optional[float] = Field(default=-3.2765753)

    sync_timeout_s: float = Field(default=3600.0, description="Seconds before a sync run is treated as failed")
    sync_record_concurrency: int = Field(
        default=1, description="Raw records processed concurrently within one sync run"
    )
    sync_queue_workers: int = Field(default=2, description="Worker tasks draining the queued sync submitter")

    search_backend: Literal["sqlite", "meilisearch"] = Field(default="sqlite")
    meilisearch_url: str = Field(default="http://127.0.0.1:7700")
    meilisearch_api_key: Optional[str] = Field(default=None)
    meilisearch_index: str = Field(default="properties")
    meilisearch_timeout_s: float = Field(default=5.0)
    search_base_url: str = Field(
        default="/api/search", description="Base URL used when building pagination links"
    )

    model_config = SettingsConfigDict(
        env_prefix="CATALOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    @field_validator("log_dir", "sqlite_path", "providers_path", mode="before")
    def _expand_path(cls, value: str | Path) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        return Path(value).expanduser()

    @field_validator("sqlite_journal_mode", "sqlite_synchronous", "meilisearch_api_key", mode="before")
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("sync_timeout_s")
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("sync_timeout_s must be positive")
        return value

    @field_validator("sync_record_concurrency", "sync_queue_workers")
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("concurrency values must be at least 1")
        return value

    def ensure_directories(self) -> None:
        """Create directories that must exist at runtime."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)

    def default_location(self) -> dict[str, object]:
        return {
            "name": self.default_location_name,
            "slug": self.default_location_slug,
            "latitude": self.default_location_latitude,
            "longitude": self.default_location_longitude,
        }
