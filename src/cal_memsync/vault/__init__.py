"""Memory vault sink for cal-memsync."""

from __future__ import annotations

from cal_memsync.vault.client import MemorySink, MemoryVaultClient
from cal_memsync.vault.mapper import map_to_memory_entry

__all__ = [
    "MemorySink",
    "MemoryVaultClient",
    "map_to_memory_entry",
]
