"""Provider adapter contract shared by every affiliate feed."""
from __future__ import annotations

import abc
from typing import Callable, Iterable, Mapping, Optional, Protocol, Union, runtime_checkable

from holiday_catalog.config.providers import ProviderDefinition
from holiday_catalog.feeds.models import FieldMap, PropertyRecord, ValidationFailure
from holiday_catalog.feeds.transformer import TransformOptions, transform_record

TransformResult = Union[PropertyRecord, ValidationFailure]


@runtime_checkable
class ProviderAdapter(Protocol):
    """What the sync orchestrator needs from a provider."""

    slug: str

    @property
    def name(self) -> str:
        ...

    def is_configured(self) -> bool:
        ...

    async def fetch_raw(self) -> Iterable[FieldMap]:
        ...

    def transform(self, raw: Mapping[str, str]) -> TransformResult:
        ...

    def build_affiliate_url(self, external_id: str, extra_params: Optional[Mapping[str, str]] = None) -> str:
        ...


class FeedProvider(abc.ABC):
    """Base class for feed-backed adapters; subclasses supply fetching and URLs."""

    display_name: str = "Affiliate feed"

    def __init__(self, definition: ProviderDefinition) -> None:
        self.definition = definition
        self.slug = definition.slug

    @property
    def name(self) -> str:
        return self.definition.name or self.display_name

    @abc.abstractmethod
    def is_configured(self) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    async def fetch_raw(self) -> Iterable[FieldMap]:
        raise NotImplementedError

    @abc.abstractmethod
    def build_affiliate_url(self, external_id: str, extra_params: Optional[Mapping[str, str]] = None) -> str:
        raise NotImplementedError

    def transform_options(self) -> TransformOptions:
        config = self.definition.config
        return TransformOptions(
            provider_slug=self.slug,
            commission_rate=config.commission_rate,
            default_currency=config.default_currency,
            property_type_overrides=dict(config.property_type_map),
            affiliate_url_builder=self._affiliate_url_builder(),
        )

    def _affiliate_url_builder(self) -> Optional[Callable[[str], str]]:
        return self.build_affiliate_url

    def transform(self, raw: Mapping[str, str]) -> TransformResult:
        return transform_record(raw, self.transform_options())

    def __repr__(self) -> str:
        return f"{type(self).__name__}(slug={self.slug!r})"
