"""Compile-time registry mapping adapter kinds onto provider classes."""
from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Mapping, Optional

from holiday_catalog.config.providers import AdapterKind, ProviderDefinition
from holiday_catalog.errors import UnknownAdapterError

from .base import ProviderAdapter
from .file_feed import FileFeedProvider
from .sykes import SykesProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ProviderDefinition], ProviderAdapter]

DEFAULT_FACTORIES: Mapping[AdapterKind, ProviderFactory] = {
    AdapterKind.SYKES: SykesProvider.from_definition,
    AdapterKind.FILE_FEED: FileFeedProvider.from_definition,
}


class ProviderRegistry:
    """Builds adapters for provider definitions."""

    def __init__(self, factories: Optional[Mapping[AdapterKind, ProviderFactory]] = None) -> None:
        self._factories: Dict[AdapterKind, ProviderFactory] = dict(
            DEFAULT_FACTORIES if factories is None else factories
        )

    def register(self, kind: AdapterKind, factory: ProviderFactory) -> None:
        self._factories[kind] = factory

    def kinds(self) -> Iterable[AdapterKind]:
        return tuple(self._factories)

    def create(self, definition: ProviderDefinition) -> ProviderAdapter:
        try:
            factory = self._factories[definition.adapter]
        except KeyError as exc:
            known = ", ".join(sorted(kind.value for kind in self._factories))
            raise UnknownAdapterError(
                f"No adapter registered for '{definition.adapter.value}' (provider '{definition.slug}'). Known: {known}"
            ) from exc
        adapter = factory(definition)
        logger.debug("Created %r for provider '%s'", adapter, definition.slug)
        return adapter
