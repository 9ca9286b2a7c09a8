"""Synchronisation: status mapping, background poller and its events."""

from taskhub.sync.events import (
    AuthErrorEvent,
    SyncErrorEvent,
    SyncResultEvent,
    SyncState,
    SyncStatus,
)
from taskhub.sync.poller import Poller

__all__ = [
    "AuthErrorEvent", "SyncErrorEvent", "SyncResultEvent", "SyncState", "SyncStatus",
    "Poller",
]
