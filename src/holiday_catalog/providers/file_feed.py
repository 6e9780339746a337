"""Adapter for feeds already sitting on local disk."""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterator, Mapping, Optional
from urllib.parse import quote, urlencode

from holiday_catalog.config.providers import FileFeedConfig, ProviderDefinition
from holiday_catalog.errors import FeedFetchError, ProviderNotConfiguredError
from holiday_catalog.feeds.models import FieldMap
from holiday_catalog.feeds.parser import parse

from .base import FeedProvider

logger = logging.getLogger(__name__)


class FileFeedProvider(FeedProvider):
    display_name = "File feed"

    def __init__(self, definition: ProviderDefinition) -> None:
        if not isinstance(definition.config, FileFeedConfig):
            raise TypeError("FileFeedProvider requires a FileFeedConfig")
        super().__init__(definition)
        self.config: FileFeedConfig = definition.config

    def is_configured(self) -> bool:
        return self.config.path.is_file()

    async def fetch_raw(self) -> Iterator[FieldMap]:
        path = self.config.path
        if not self.is_configured():
            raise ProviderNotConfiguredError(f"Feed file for provider '{self.slug}' not found at {path}")
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise FeedFetchError(f"Unable to read feed file {path}: {exc}") from exc
        logger.info("Loaded %s bytes for %s from %s", len(data), self.slug, path)
        return parse(data, self.config.resolved_format())

    def build_affiliate_url(self, external_id: str, extra_params: Optional[Mapping[str, str]] = None) -> str:
        template = self.config.affiliate_url_template
        if not template:
            return ""
        url = template.format(external_id=quote(external_id, safe=""))
        if extra_params:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}{urlencode(dict(extra_params))}"
        return url

    def _affiliate_url_builder(self) -> Optional[Callable[[str], str]]:
        if not self.config.affiliate_url_template:
            return None
        return self.build_affiliate_url

    @classmethod
    def from_definition(cls, definition: ProviderDefinition) -> "FileFeedProvider":
        return cls(definition)
