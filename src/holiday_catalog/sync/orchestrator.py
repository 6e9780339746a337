"""Drive one provider's fetch -> transform -> resolve -> upsert cycle.

A run moves ``started -> success`` or ``started -> failed``. Problems with a
single record are logged and counted in ``properties_failed`` without stopping
the run; anything that escapes record handling (misconfiguration, feed download
or parse errors, the run timeout) fails the run, keeps the counters gathered so
far, emits ``sync_failed`` and is re-raised to the caller.
"""
from __future__ import annotations

import asyncio
import logging
import traceback
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Iterable, Mapping, Optional

from holiday_catalog.config.providers import ProviderDefinition, SyncFrequency
from holiday_catalog.core.clock import Clock, utc_now
from holiday_catalog.errors import ProviderNotConfiguredError, SyncTimeoutError
from holiday_catalog.feeds.models import ValidationFailure
from holiday_catalog.feeds.transformer import pick
from holiday_catalog.locations.resolver import LocationResolver
from holiday_catalog.providers.base import ProviderAdapter
from holiday_catalog.providers.registry import ProviderRegistry
from holiday_catalog.storage.records import ProviderRecord, SyncCounters, SyncLogRecord
from holiday_catalog.storage.sqlite_store import SqliteStore

from .dispatch import InlineSubmitter, JobSubmitter
from .events import SYNC_FAILED, SYNCED, EventBus, SyncEvent

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 3600.0


class TriggerStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    QUEUED = "queued"
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class SyncOutcome:
    provider_slug: str
    status: TriggerStatus
    log: Optional[SyncLogRecord] = None
    error: Optional[str] = None


def provider_definition(provider: ProviderRecord) -> ProviderDefinition:
    """Rebuild the typed definition stored alongside a provider row."""
    return ProviderDefinition.model_validate(
        {
            "slug": provider.slug,
            "name": provider.name,
            "adapter": provider.adapter,
            "is_active": provider.is_active,
            "sync_frequency": provider.sync_frequency,
            "config": provider.config,
        }
    )


class SyncOrchestrator:
    def __init__(
        self,
        store: SqliteStore,
        resolver: LocationResolver,
        registry: ProviderRegistry,
        *,
        events: Optional[EventBus] = None,
        clock: Clock = utc_now,
        submitter: Optional[JobSubmitter] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        record_concurrency: int = 1,
    ) -> None:
        if timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        self._store = store
        self._resolver = resolver
        self._registry = registry
        self._events = events or EventBus()
        self._clock = clock
        self._submitter: JobSubmitter = submitter or InlineSubmitter()
        self._timeout_s = timeout_s
        self._record_concurrency = max(1, record_concurrency)
        self._inflight: dict[int, asyncio.Task[SyncLogRecord]] = {}

    @property
    def events(self) -> EventBus:
        return self._events

    # ------------------------------------------------------------------
    # trigger surface

    async def sync_provider(self, slug: str, *, queued: bool = False) -> SyncOutcome:
        provider = await self._store.get_provider(slug)
        if provider is None:
            logger.warning("Provider '%s' not found", slug)
            return SyncOutcome(slug, TriggerStatus.NOT_FOUND)
        if not provider.is_active:
            logger.warning("Provider '%s' is not active", slug)
            return SyncOutcome(slug, TriggerStatus.INACTIVE)
        return await self._dispatch(provider, queued=queued)

    async def sync_all_active(self, *, queued: bool = False) -> list[SyncOutcome]:
        providers = await self._store.list_providers(active_only=True)
        if not providers:
            logger.warning("No active affiliate providers found")
            return []
        logger.info("Syncing %s provider(s)", len(providers))
        return list(await asyncio.gather(*(self._dispatch(provider, queued=queued) for provider in providers)))

    async def _dispatch(self, provider: ProviderRecord, *, queued: bool) -> SyncOutcome:
        if queued:
            await self._submitter.submit(f"sync:{provider.slug}", lambda: self.sync(provider))
            logger.info("Sync queued for %s", provider.name)
            return SyncOutcome(provider.slug, TriggerStatus.QUEUED)
        try:
            log = await self.sync(provider)
        except Exception as exc:
            return SyncOutcome(provider.slug, TriggerStatus.FAILED, error=str(exc) or type(exc).__name__)
        return SyncOutcome(provider.slug, TriggerStatus.SUCCESS, log=log)

    # ------------------------------------------------------------------
    # runs

    async def sync(self, provider: ProviderRecord) -> SyncLogRecord:
        """Run (or join the already running) sync for ``provider``."""
        task = self._inflight.get(provider.id)
        if task is None:
            task = asyncio.create_task(self._run(provider), name=f"sync-{provider.slug}")
            self._inflight[provider.id] = task
            task.add_done_callback(lambda done, provider_id=provider.id: self._forget(provider_id, done))
        else:
            logger.info("Joining in-flight sync for %s", provider.slug)
        return await asyncio.shield(task)

    def _forget(self, provider_id: int, task: asyncio.Task[SyncLogRecord]) -> None:
        if self._inflight.get(provider_id) is task:
            del self._inflight[provider_id]

    async def _run(self, provider: ProviderRecord) -> SyncLogRecord:
        log = await self._store.begin_sync(provider.id, stale_after=timedelta(seconds=self._timeout_s))
        counters = SyncCounters()
        logger.info("Starting sync %s for %s", log.id, provider.slug)
        try:
            await asyncio.wait_for(self._process(provider, log, counters), timeout=self._timeout_s)
        except asyncio.TimeoutError as exc:
            error = SyncTimeoutError(f"Sync for '{provider.slug}' exceeded {self._timeout_s:g}s")
            error.__cause__ = exc
            await self._fail(provider, log, counters, error)
            raise error
        except asyncio.CancelledError as exc:
            await self._fail(provider, log, counters, exc)
            raise
        except Exception as exc:
            await self._fail(provider, log, counters, exc)
            raise

        finished = await self._store.finalize_sync(log.id, counters)
        frequency = SyncFrequency(provider.sync_frequency)
        await self._store.mark_provider_synced(provider.id, synced_at=self._clock(), interval=frequency.interval())
        logger.info(
            "Sync completed for %s (fetched=%s created=%s updated=%s deactivated=%s failed=%s)",
            provider.slug,
            counters.fetched,
            counters.created,
            counters.updated,
            counters.deactivated,
            counters.failed,
        )
        await self._events.publish(SyncEvent(SYNCED, provider.slug, finished))
        return finished

    async def _fail(
        self,
        provider: ProviderRecord,
        log: SyncLogRecord,
        counters: SyncCounters,
        error: BaseException,
    ) -> SyncLogRecord:
        trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        failed = await self._store.mark_sync_failed(
            log.id,
            counters,
            message=str(error) or type(error).__name__,
            trace=trace,
        )
        logger.error("Sync failed for %s: %s", provider.slug, error)
        await self._events.publish(SyncEvent(SYNC_FAILED, provider.slug, failed, error=error))
        return failed

    async def _process(self, provider: ProviderRecord, log: SyncLogRecord, counters: SyncCounters) -> None:
        adapter = self._registry.create(provider_definition(provider))
        if not adapter.is_configured():
            raise ProviderNotConfiguredError(f"Provider {adapter.name} is not properly configured")

        raw_records = await adapter.fetch_raw()
        await self._process_records(adapter, provider, raw_records, counters)

        if counters.created + counters.updated > 0:
            counters.deactivated = await self._store.deactivate_missing(provider.id, seen_since=log.started_at)
            if counters.deactivated:
                logger.info("Deactivated %s stale properties for %s", counters.deactivated, provider.slug)
        else:
            logger.warning("Nothing upserted for %s; skipping deactivation", provider.slug)
        await self._store.refresh_location_counts()

    async def _process_records(
        self,
        adapter: ProviderAdapter,
        provider: ProviderRecord,
        raw_records: Iterable[Mapping[str, str]],
        counters: SyncCounters,
    ) -> None:
        if self._record_concurrency == 1:
            for raw in raw_records:
                counters.fetched += 1
                await self._process_one(adapter, provider, raw, counters)
            return

        semaphore = asyncio.Semaphore(self._record_concurrency)
        pending: set[asyncio.Task[None]] = set()

        async def _bounded(raw: Mapping[str, str]) -> None:
            try:
                await self._process_one(adapter, provider, raw, counters)
            finally:
                semaphore.release()

        try:
            for raw in raw_records:
                counters.fetched += 1
                await semaphore.acquire()
                task = asyncio.create_task(_bounded(raw))
                pending.add(task)
                task.add_done_callback(pending.discard)
            if pending:
                await asyncio.gather(*pending)
        finally:
            for task in pending:
                task.cancel()

    async def _process_one(
        self,
        adapter: ProviderAdapter,
        provider: ProviderRecord,
        raw: Mapping[str, str],
        counters: SyncCounters,
    ) -> None:
        external_id = pick(raw, "external_id") or "unknown"
        try:
            result = adapter.transform(raw)
            if isinstance(result, ValidationFailure):
                counters.failed += 1
                logger.error("Rejected %s record %s: %s", provider.slug, external_id, result.describe())
                return
            location = await self._resolver.resolve(result.postcode, result.latitude, result.longitude)
            upsert = await self._store.upsert_property(
                provider_id=provider.id,
                provider_slug=provider.slug,
                record=result,
                location_id=location.id,
            )
        except Exception:
            counters.failed += 1
            logger.exception("Failed to sync %s record %s", provider.slug, external_id)
            return
        if upsert.created:
            counters.created += 1
        else:
            counters.updated += 1
