"""Exception hierarchy shared across the ingestion and search packages."""
from __future__ import annotations

from typing import Optional


class CatalogError(RuntimeError):
    """Base class for every error raised by holiday_catalog."""


class FeedParseError(CatalogError):
    """Raised when a feed document is structurally unreadable."""


class FeedFetchError(CatalogError):
    """Raised when a provider feed cannot be downloaded."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ProviderNotConfiguredError(CatalogError):
    """Raised when an adapter is missing the configuration it needs to sync."""


class UnknownAdapterError(CatalogError):
    """Raised when a provider references an adapter missing from the registry."""


class SyncInProgressError(CatalogError):
    """Raised when a second sync is attempted for a provider that is already syncing."""


class SyncTimeoutError(CatalogError):
    """Raised when a sync run exceeds its time budget."""


class LocationHierarchyError(CatalogError):
    """Raised when a location would be attached under a narrower or equal parent."""


class SearchIndexError(CatalogError):
    """Raised by search index backends when a query or maintenance call fails."""


class InvalidFilterError(CatalogError, ValueError):
    """Raised when a search predicate references an unknown field or operator."""
