"""Incremental and full calendar-to-vault sync engine."""

from __future__ import annotations

from cal_memsync.sync.store import (
    ConnectionStore,
    JsonFileStateBackend,
    MemoryStateBackend,
    SyncTokenStore,
)
from cal_memsync.sync.classifier import classify_change
from cal_memsync.sync.dispatcher import DeduplicatingDispatcher
from cal_memsync.sync.fetcher import ChangeFetcher, calendar_id_from_resource_uri
from cal_memsync.sync.full_sync import FullSyncRunner
from cal_memsync.sync.orchestrator import SyncOrchestrator

__all__ = [
    "ChangeFetcher",
    "ConnectionStore",
    "DeduplicatingDispatcher",
    "FullSyncRunner",
    "JsonFileStateBackend",
    "MemoryStateBackend",
    "SyncOrchestrator",
    "SyncTokenStore",
    "calendar_id_from_resource_uri",
    "classify_change",
]
