"""Wire settings into a ready-to-use set of collaborators for the CLIs."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import AsyncIterator, Optional, Union

from holiday_catalog.analytics.search_log import SearchAnalytics
from holiday_catalog.config.providers import ProvidersFile
from holiday_catalog.config.settings import Settings
from holiday_catalog.locations.resolver import DefaultLocation, LocationResolver
from holiday_catalog.providers.registry import ProviderRegistry
from holiday_catalog.search.index import MeilisearchIndex, SqliteSearchIndex
from holiday_catalog.search.service import SearchService
from holiday_catalog.services.geocoding_client import PostcodesIoClient
from holiday_catalog.storage.records import ProviderRecord
from holiday_catalog.storage.sqlite_store import SqliteStore
from holiday_catalog.sync.dispatch import InlineSubmitter, JobSubmitter, QueueSubmitter
from holiday_catalog.sync.events import SYNCED, EventBus, SyncEvent
from holiday_catalog.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    store: SqliteStore
    geocoder: PostcodesIoClient
    resolver: LocationResolver
    registry: ProviderRegistry
    events: EventBus
    submitter: JobSubmitter
    orchestrator: SyncOrchestrator
    index: Union[SqliteSearchIndex, MeilisearchIndex]
    analytics: SearchAnalytics
    search: SearchService


async def register_providers(store: SqliteStore, providers: ProvidersFile) -> list[ProviderRecord]:
    """Upsert every provider declared in the providers file into the store."""
    records = [await store.upsert_provider(definition) for definition in providers.providers]
    logger.info("Registered %s provider(s)", len(records))
    return records


def build_index(settings: Settings, store: SqliteStore) -> Union[SqliteSearchIndex, MeilisearchIndex]:
    if settings.search_backend == "meilisearch":
        return MeilisearchIndex(
            store,
            url=settings.meilisearch_url,
            api_key=settings.meilisearch_api_key,
            index_uid=settings.meilisearch_index,
            timeout=settings.meilisearch_timeout_s,
        )
    return SqliteSearchIndex(store)


@asynccontextmanager
async def build_runtime(
    settings: Optional[Settings] = None,
    *,
    queued: bool = False,
    load_providers: bool = True,
) -> AsyncIterator[Runtime]:
    settings = settings or Settings()
    settings.ensure_directories()

    store = SqliteStore(
        settings.sqlite_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        journal_mode=settings.sqlite_journal_mode,
        synchronous=settings.sqlite_synchronous,
    )
    await store.initialize()

    geocoder = PostcodesIoClient(base_url=settings.geocoding_base_url, timeout=settings.geocoding_timeout_s)
    resolver = LocationResolver(
        store,
        geocoder,
        default_location=DefaultLocation(**settings.default_location()),
        cache_ttl=timedelta(days=settings.geocoding_cache_days),
    )
    submitter: JobSubmitter = QueueSubmitter(workers=settings.sync_queue_workers) if queued else InlineSubmitter()
    events = EventBus()
    registry = ProviderRegistry()
    orchestrator = SyncOrchestrator(
        store,
        resolver,
        registry,
        events=events,
        submitter=submitter,
        timeout_s=settings.sync_timeout_s,
        record_concurrency=settings.sync_record_concurrency,
    )
    index = build_index(settings, store)

    async def _reindex_after_sync(event: SyncEvent) -> None:
        indexed = await index.reindex_all()
        logger.info("Reindexed %s properties after sync of %s", indexed, event.provider_slug)

    events.subscribe(SYNCED, _reindex_after_sync)
    analytics = SearchAnalytics(store)
    search = SearchService(index, analytics, base_url=settings.search_base_url)

    runtime = Runtime(
        settings=settings,
        store=store,
        geocoder=geocoder,
        resolver=resolver,
        registry=registry,
        events=events,
        submitter=submitter,
        orchestrator=orchestrator,
        index=index,
        analytics=analytics,
        search=search,
    )
    try:
        if load_providers and settings.providers_path.is_file():
            await register_providers(store, ProvidersFile.load(settings.providers_path))
        elif load_providers:
            logger.warning("Providers file %s not found; using providers already stored", settings.providers_path)
        yield runtime
    finally:
        if isinstance(submitter, QueueSubmitter):
            await submitter.stop()
        if isinstance(index, MeilisearchIndex):
            await index.aclose()
        await geocoder.aclose()
        await store.close()
