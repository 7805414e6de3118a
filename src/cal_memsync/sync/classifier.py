"""Classify fetched calendar events as created, updated or deleted."""

from __future__ import annotations

from typing import Any

from cal_memsync.models.sync import ChangeType


def classify_change(event: dict[str, Any]) -> ChangeType:
    """Label a Google Calendar event from its status and timestamps.

    - ``status == "cancelled"`` -> :attr:`ChangeType.DELETED`, whatever the
      timestamps say.
    - identical ``created`` and ``updated`` -> :attr:`ChangeType.CREATED`.
    - anything else -> :attr:`ChangeType.UPDATED`.

    This is a heuristic rather than a diff: an event edited within the same
    timestamp tick as its creation is reported as created.
    """
    if event.get("status") == "cancelled":
        return ChangeType.DELETED

    if event.get("created") == event.get("updated"):
        return ChangeType.CREATED

    return ChangeType.UPDATED
