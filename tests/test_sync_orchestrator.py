from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Iterable, Iterator, Mapping, Optional

import pytest

from holiday_catalog.config.providers import AdapterKind, ProviderDefinition
from holiday_catalog.core.clock import FrozenClock
from holiday_catalog.errors import FeedFetchError, FeedParseError, ProviderNotConfiguredError, SyncTimeoutError
from holiday_catalog.locations.resolver import LocationResolver
from holiday_catalog.providers.base import FeedProvider
from holiday_catalog.providers.registry import ProviderRegistry
from holiday_catalog.storage.records import SyncStatus
from holiday_catalog.storage.sqlite_store import SqliteStore
from holiday_catalog.sync.dispatch import QueueSubmitter
from holiday_catalog.sync.events import SYNC_FAILED, SYNCED, SyncEvent
from holiday_catalog.sync.orchestrator import SyncOrchestrator, TriggerStatus


class _DummyAdapter(FeedProvider):
    def __init__(
        self,
        definition: ProviderDefinition,
        rows: Iterable[Mapping[str, str]] = (),
        *,
        configured: bool = True,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        super().__init__(definition)
        self.rows = list(rows)
        self.configured = configured
        self.error = error
        self.delay = delay
        self.gate = gate
        self.fetches = 0

    def is_configured(self) -> bool:
        return self.configured

    async def fetch_raw(self) -> Iterable[Mapping[str, str]]:
        self.fetches += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return iter(self.rows)

    def build_affiliate_url(self, external_id: str, extra_params: Optional[Mapping[str, str]] = None) -> str:
        return f"https://aff.example.com/{external_id}"


def _rows(count: int, prefix: str = "P") -> list[dict[str, str]]:
    return [{"product_id": f"{prefix}{index}", "product_name": f"Cottage {prefix}{index}"} for index in range(count)]


def _definition(slug: str = "sykes", *, is_active: bool = True) -> ProviderDefinition:
    return ProviderDefinition.model_validate(
        {
            "slug": slug,
            "name": "Sykes Cottages",
            "adapter": "sykes",
            "is_active": is_active,
            "config": {"affiliate_id": "AFF1", "feed_url": "https://feeds.example.com/sykes.csv"},
        }
    )


async def _setup(tmp_path, adapter_kwargs=None, *, clock=None, **orchestrator_kwargs):
    clock = clock or FrozenClock(datetime(2025, 5, 1, 8, 0, tzinfo=timezone.utc))
    store = SqliteStore(tmp_path / "catalog.sqlite", clock=clock)
    await store.initialize()
    provider = await store.upsert_provider(_definition())
    adapter = _DummyAdapter(_definition(), **(adapter_kwargs or {}))
    registry = ProviderRegistry({AdapterKind.SYKES: lambda definition: adapter})
    orchestrator = SyncOrchestrator(store, LocationResolver(store), registry, clock=clock, **orchestrator_kwargs)
    return store, provider, adapter, orchestrator


@pytest.mark.asyncio
async def test_record_failures_are_counted_without_failing_the_run(tmp_path) -> None:
    rows = _rows(9)
    rows.insert(4, {"product_id": "BAD", "product_name": "Negative", "bedrooms": "-1"})
    store, provider, _adapter, orchestrator = await _setup(tmp_path, {"rows": rows})
    synced: list[SyncEvent] = []

    async def _on_synced(event: SyncEvent) -> None:
        synced.append(event)

    orchestrator.events.subscribe(SYNCED, _on_synced)
    log = await orchestrator.sync(provider)

    assert log.status is SyncStatus.SUCCESS
    assert log.properties_fetched == 10
    assert log.properties_created + log.properties_updated == 9
    assert log.properties_failed == 1
    assert log.completed_at is not None
    assert await store.count_properties(provider_id=provider.id) == 9
    assert [event.log.id for event in synced] == [log.id]

    refreshed = await store.get_provider("sykes")
    assert refreshed.last_sync_at is not None
    assert refreshed.next_sync_at is not None and refreshed.next_sync_at > refreshed.last_sync_at
    await store.close()


@pytest.mark.asyncio
async def test_resync_updates_instead_of_creating(tmp_path) -> None:
    store, provider, _adapter, orchestrator = await _setup(tmp_path, {"rows": _rows(3)})

    first = await orchestrator.sync(provider)
    second = await orchestrator.sync(provider)

    assert (first.properties_created, first.properties_updated) == (3, 0)
    assert (second.properties_created, second.properties_updated) == (0, 3)
    assert await store.count_properties() == 3
    await store.close()


@pytest.mark.asyncio
async def test_fetch_failure_fails_run_and_emits_event(tmp_path) -> None:
    store, provider, _adapter, orchestrator = await _setup(
        tmp_path, {"error": FeedFetchError("feed returned HTTP 503", status=503)}
    )
    failures: list[SyncEvent] = []

    async def _on_failed(event: SyncEvent) -> None:
        failures.append(event)

    async def _broken_subscriber(event: SyncEvent) -> None:
        raise RuntimeError("subscriber bug")

    orchestrator.events.subscribe(SYNC_FAILED, _broken_subscriber)
    orchestrator.events.subscribe(SYNC_FAILED, _on_failed)

    with pytest.raises(FeedFetchError):
        await orchestrator.sync(provider)

    assert len(failures) == 1
    event = failures[0]
    assert isinstance(event.error, FeedFetchError)
    assert event.log.status is SyncStatus.FAILED
    assert event.log.error_message == "feed returned HTTP 503"
    assert "FeedFetchError" in event.log.error_trace
    assert event.log.properties_fetched == 0
    assert (await store.get_provider("sykes")).last_sync_at is None
    await store.close()


@pytest.mark.asyncio
async def test_unconfigured_adapter_fails_without_fetching(tmp_path) -> None:
    store, provider, adapter, orchestrator = await _setup(tmp_path, {"rows": _rows(2), "configured": False})

    with pytest.raises(ProviderNotConfiguredError):
        await orchestrator.sync(provider)

    assert adapter.fetches == 0
    logs = await store.recent_sync_logs(provider.id)
    assert logs[0].status is SyncStatus.FAILED
    assert "not properly configured" in logs[0].error_message
    await store.close()


@pytest.mark.asyncio
async def test_mid_stream_parse_error_keeps_partial_counters(tmp_path) -> None:
    def _broken_feed() -> Iterator[dict[str, str]]:
        yield from _rows(2)
        raise FeedParseError("Malformed XML feed: unclosed token")

    store, provider, adapter, orchestrator = await _setup(tmp_path)

    async def _fetch_raw() -> Iterator[dict[str, str]]:
        return _broken_feed()

    adapter.fetch_raw = _fetch_raw  # type: ignore[method-assign]

    with pytest.raises(FeedParseError):
        await orchestrator.sync(provider)

    log = (await store.recent_sync_logs(provider.id))[0]
    assert log.status is SyncStatus.FAILED
    assert (log.properties_fetched, log.properties_created) == (2, 2)
    await store.close()


@pytest.mark.asyncio
async def test_run_timeout_marks_log_failed(tmp_path) -> None:
    store, provider, _adapter, orchestrator = await _setup(tmp_path, {"rows": _rows(1), "delay": 1.0}, timeout_s=0.05)

    with pytest.raises(SyncTimeoutError):
        await orchestrator.sync(provider)

    log = (await store.recent_sync_logs(provider.id))[0]
    assert log.status is SyncStatus.FAILED
    assert "exceeded" in log.error_message
    await store.close()


@pytest.mark.asyncio
async def test_concurrent_syncs_share_one_run(tmp_path) -> None:
    gate = asyncio.Event()
    store, provider, adapter, orchestrator = await _setup(tmp_path, {"rows": _rows(2), "gate": gate})

    first = asyncio.create_task(orchestrator.sync(provider))
    second = asyncio.create_task(orchestrator.sync(provider))
    await asyncio.sleep(0.05)
    gate.set()
    logs = await asyncio.gather(first, second)

    assert logs[0].id == logs[1].id
    assert adapter.fetches == 1
    assert len(await store.recent_sync_logs(provider.id)) == 1
    await store.close()


@pytest.mark.asyncio
async def test_properties_missing_from_feed_are_deactivated(tmp_path) -> None:
    clock = FrozenClock(datetime(2025, 5, 1, 8, 0, tzinfo=timezone.utc))
    store, provider, adapter, orchestrator = await _setup(tmp_path, {"rows": _rows(3)}, clock=clock)
    await orchestrator.sync(provider)

    clock.advance(days=1)
    adapter.rows = _rows(2)
    log = await orchestrator.sync(provider)

    assert log.properties_deactivated == 1
    assert await store.count_properties(active_only=True) == 2

    clock.advance(days=1)
    adapter.rows = [{"product_id": "P0", "product_name": "Broken", "sleeps": "-4"}]
    log = await orchestrator.sync(provider)

    assert log.properties_failed == 1
    assert log.properties_deactivated == 0
    assert await store.count_properties(active_only=True) == 2
    await store.close()


@pytest.mark.asyncio
async def test_bounded_record_concurrency_processes_every_row(tmp_path) -> None:
    store, provider, _adapter, orchestrator = await _setup(tmp_path, {"rows": _rows(12)}, record_concurrency=4)

    log = await orchestrator.sync(provider)

    assert log.properties_fetched == 12
    assert log.properties_created == 12
    await store.close()


@pytest.mark.asyncio
async def test_trigger_statuses(tmp_path) -> None:
    store, _provider, _adapter, orchestrator = await _setup(
        tmp_path, {"rows": _rows(1), "error": FeedFetchError("offline")}
    )
    await store.upsert_provider(_definition("dormant", is_active=False))

    missing = await orchestrator.sync_provider("nope")
    dormant = await orchestrator.sync_provider("dormant")
    failed = await orchestrator.sync_provider("sykes")

    assert missing.status is TriggerStatus.NOT_FOUND
    assert dormant.status is TriggerStatus.INACTIVE
    assert failed.status is TriggerStatus.FAILED
    assert failed.error == "offline"
    await store.close()


@pytest.mark.asyncio
async def test_queued_dispatch_runs_through_the_submitter(tmp_path) -> None:
    submitter = QueueSubmitter(workers=1)
    store, provider, _adapter, orchestrator = await _setup(tmp_path, {"rows": _rows(2)}, submitter=submitter)

    outcomes = await orchestrator.sync_all_active(queued=True)
    await submitter.join()
    await submitter.stop()

    assert [outcome.status for outcome in outcomes] == [TriggerStatus.QUEUED]
    log = (await store.recent_sync_logs(provider.id))[0]
    assert log.status is SyncStatus.SUCCESS
    assert log.properties_created == 2
    await store.close()
