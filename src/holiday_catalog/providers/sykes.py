"""Sykes Cottages affiliate feed adapter."""
from __future__ import annotations

import logging
from typing import Iterator, Mapping, Optional
from urllib.parse import quote, urlencode

import httpx

from holiday_catalog.config.providers import ProviderDefinition, SykesConfig
from holiday_catalog.errors import FeedFetchError, ProviderNotConfiguredError
from holiday_catalog.feeds.models import FieldMap
from holiday_catalog.feeds.parser import parse

from .base import FeedProvider

logger = logging.getLogger(__name__)


class SykesProvider(FeedProvider):
    """Downloads the Sykes product feed (CSV or Awin XML) over HTTP."""

    display_name = "Sykes Cottages"

    def __init__(
        self,
        definition: ProviderDefinition,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not isinstance(definition.config, SykesConfig):
            raise TypeError("SykesProvider requires a SykesConfig")
        super().__init__(definition)
        self.config: SykesConfig = definition.config
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.config.affiliate_id and self.config.feed_url)

    async def fetch_raw(self) -> Iterator[FieldMap]:
        if not self.is_configured():
            raise ProviderNotConfiguredError(f"Provider '{self.slug}' is missing affiliate_id or feed_url")
        feed_url = str(self.config.feed_url)
        logger.info("Fetching %s feed from %s", self.name, feed_url)
        headers = {"User-Agent": "holiday-catalog/0.1.0"}
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_s,
                headers=headers,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(feed_url)
        except httpx.HTTPError as exc:
            raise FeedFetchError(f"Failed to fetch {self.name} feed: {exc}") from exc
        if not response.is_success:
            raise FeedFetchError(
                f"{self.name} feed returned HTTP {response.status_code}",
                status=response.status_code,
            )
        logger.debug("Fetched %s bytes from %s", len(response.content), feed_url)
        return parse(response.content, self.config.feed_format)

    def build_affiliate_url(self, external_id: str, extra_params: Optional[Mapping[str, str]] = None) -> str:
        params: dict[str, str] = {
            "propertyId": external_id,
            "affiliateId": self.config.affiliate_id or "",
        }
        params.update(self.config.extra_params)
        if extra_params:
            params.update(extra_params)
        base_url = self.config.affiliate_base_url.rstrip("/")
        return f"{base_url}/property/{quote(external_id, safe='')}?{urlencode(params)}"

    @classmethod
    def from_definition(cls, definition: ProviderDefinition) -> "SykesProvider":
        return cls(definition)
