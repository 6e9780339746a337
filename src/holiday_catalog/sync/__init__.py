"""Provider synchronisation: orchestration, dispatch and notifications."""

from .dispatch import InlineSubmitter, QueueSubmitter
from .events import SYNC_FAILED, SYNCED, EventBus, SyncEvent
from .orchestrator import SyncOrchestrator, SyncOutcome, TriggerStatus

__all__ = [
    "EventBus",
    "InlineSubmitter",
    "QueueSubmitter",
    "SYNCED",
    "SYNC_FAILED",
    "SyncEvent",
    "SyncOrchestrator",
    "SyncOutcome",
    "TriggerStatus",
]
