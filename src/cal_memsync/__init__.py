"""cal-memsync: Google Calendar to memory vault synchronization.

Turns Google Calendar push notifications into idempotent upserts and
deletes against a memory vault, using Google's sync-token change feed,
with a full reconciliation pass as the recovery path.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
