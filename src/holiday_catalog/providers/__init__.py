"""Affiliate provider adapters."""

from .base import FeedProvider, ProviderAdapter
from .file_feed import FileFeedProvider
from .registry import ProviderRegistry
from .sykes import SykesProvider

__all__ = [
    "FeedProvider",
    "FileFeedProvider",
    "ProviderAdapter",
    "ProviderRegistry",
    "SykesProvider",
]
