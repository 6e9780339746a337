"""In-process notifications emitted when a sync run finishes."""
from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from holiday_catalog.storage.records import SyncLogRecord

logger = logging.getLogger(__name__)

SYNCED = "synced"
SYNC_FAILED = "sync_failed"


@dataclass(frozen=True)
class SyncEvent:
    event_type: str
    provider_slug: str
    log: SyncLogRecord
    error: Optional[BaseException] = None
    payload: dict[str, Any] = field(default_factory=dict)

    def matches(self, pattern: str) -> bool:
        return pattern == "*" or self.event_type == pattern


EventHandler = Callable[[SyncEvent], Awaitable[None]]


class EventBus:
    """Fan events out to async subscribers; a failing subscriber never affects the publisher."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, tuple[str, EventHandler]] = {}

    def subscribe(self, event_type: str, handler: EventHandler) -> str:
        subscription_id = str(uuid.uuid4())
        self._subscriptions[subscription_id] = (event_type, handler)
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)

    async def publish(self, event: SyncEvent) -> None:
        for pattern, handler in list(self._subscriptions.values()):
            if not event.matches(pattern):
                continue
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "Subscriber %r failed handling %s for %s", handler, event.event_type, event.provider_slug
                )
