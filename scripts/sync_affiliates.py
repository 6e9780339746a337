"""Sync properties from affiliate providers."""
from __future__ import annotations

import argparse
import asyncio

from holiday_catalog.config.settings import Settings
from holiday_catalog.core.logging import configure_logging
from holiday_catalog.runtime import build_runtime
from holiday_catalog.sync.dispatch import QueueSubmitter
from holiday_catalog.sync.events import SYNC_FAILED, SYNCED, SyncEvent
from holiday_catalog.sync.orchestrator import SyncOutcome, TriggerStatus


def _print_outcome(outcome: SyncOutcome) -> None:
    if outcome.status is TriggerStatus.SUCCESS and outcome.log is not None:
        log = outcome.log
        print(
            f"{outcome.provider_slug}: success "
            f"(fetched={log.properties_fetched} created={log.properties_created} "
            f"updated={log.properties_updated} deactivated={log.properties_deactivated} "
            f"failed={log.properties_failed})"
        )
    elif outcome.status is TriggerStatus.FAILED:
        print(f"{outcome.provider_slug}: failed ({outcome.error})")
    else:
        print(f"{outcome.provider_slug}: {outcome.status.value}")


async def _report(event: SyncEvent) -> None:
    if event.event_type == SYNCED:
        print(f"{event.provider_slug}: sync {event.log.id} finished ({event.log.status.value})")
    else:
        print(f"{event.provider_slug}: sync {event.log.id} failed ({event.log.error_message})")


async def run(settings: Settings, slug: str | None, *, sync_all: bool, inline: bool) -> int:
    async with build_runtime(settings, queued=not inline) as runtime:
        orchestrator = runtime.orchestrator
        if not inline:
            orchestrator.events.subscribe(SYNCED, _report)
            orchestrator.events.subscribe(SYNC_FAILED, _report)

        if sync_all:
            outcomes = await orchestrator.sync_all_active(queued=not inline)
            if not outcomes:
                print("No active affiliate providers found.")
        else:
            assert slug is not None
            outcomes = [await orchestrator.sync_provider(slug, queued=not inline)]

        for outcome in outcomes:
            _print_outcome(outcome)

        if isinstance(runtime.submitter, QueueSubmitter):
            await runtime.submitter.join()

        if any(outcome.status in (TriggerStatus.FAILED, TriggerStatus.NOT_FOUND) for outcome in outcomes):
            return 1
        return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Sync properties from affiliate providers.")
    parser.add_argument("provider", nargs="?", help="Provider slug to sync (e.g. sykes).")
    parser.add_argument("--all", dest="sync_all", action="store_true", help="Sync every active provider.")
    parser.add_argument(
        "--sync",
        dest="inline",
        action="store_true",
        help="Run inline and report results instead of dispatching to background workers.",
    )
    args = parser.parse_args()

    if not args.provider and not args.sync_all:
        parser.error("Please specify a provider slug or use --all")

    settings = Settings()
    configure_logging(settings.log_level, settings.log_dir)
    settings.ensure_directories()

    raise SystemExit(asyncio.run(run(settings, args.provider, sync_all=args.sync_all, inline=args.inline)))


if __name__ == "__main__":
    main()
