"""Data models for cal-memsync."""

from __future__ import annotations

from cal_memsync.models.memory import MemoryEntry, MemoryMetadata
from cal_memsync.models.sync import (
    CalendarConnection,
    ChangeRecord,
    ChangeType,
    ConnectionStatus,
    FullSyncResult,
    ProcessingKey,
    SyncRunResult,
    SyncState,
)
from cal_memsync.models.webhook import WebhookNotification

__all__ = [
    "CalendarConnection",
    "ChangeRecord",
    "ChangeType",
    "ConnectionStatus",
    "FullSyncResult",
    "MemoryEntry",
    "MemoryMetadata",
    "ProcessingKey",
    "SyncRunResult",
    "SyncState",
    "WebhookNotification",
]
