"""Synchronization engine: backfill, live subscription, self-healing."""

from driverledger.sync.synchronizer import (
    BackfillResult,
    EventSynchronizer,
    SyncStartupError,
    SyncState,
    SyncStatus,
)

__all__ = [
    "BackfillResult",
    "EventSynchronizer",
    "SyncStartupError",
    "SyncState",
    "SyncStatus",
]
