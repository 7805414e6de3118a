"""Data models for the incremental sync engine.

- :class:`ChangeType` / :class:`ChangeRecord` -- a fetched event labelled
  as created, updated or deleted.
- :class:`ConnectionStatus` -- the status written back to a user's calendar
  connection after every completed attempt.
- :class:`ProcessingKey` -- the ``(user_id, channel_id)`` dedup unit.
- :class:`SyncRunResult` / :class:`FullSyncResult` -- outcomes returned to
  callers for observability.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ChangeType(str, Enum):
    """How a fetched event should be applied downstream."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class ConnectionStatus(str, Enum):
    """Sync status attached to a user's calendar connection."""

    ACTIVE = "active"
    PARTIAL_SYNC = "partial_sync"
    ERROR = "error"
    SCHEDULED_FULL_SYNC = "scheduled_full_sync"
    AUTH_ERROR = "auth_error"
    PERMISSION_ERROR = "permission_error"
    WEBHOOK_ERROR = "webhook_error"


class SyncState(str, Enum):
    """States of a single orchestration run."""

    FETCHING = "fetching"
    APPLYING = "applying"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ProcessingKey:
    """Identifies one webhook channel of one user.

    At most one sync run may be in flight per key.
    """

    user_id: str
    channel_id: str

    def __str__(self) -> str:
        return f"{self.user_id}_{self.channel_id}"


@dataclass
class ChangeRecord:
    """A single fetched event together with its classification.

    Attributes:
        event: The Google Calendar event resource dict.  Only ``id``,
            ``status``, ``created``, ``updated``, ``start`` and ``end`` are
            read by the engine; the rest is passed through to the sink.
        change_type: How the event is applied downstream.
    """

    event: dict[str, Any]
    change_type: ChangeType

    @property
    def event_id(self) -> str:
        return str(self.event.get("id", ""))


@dataclass
class CalendarConnection:
    """Persisted state of a user's calendar connection.

    Attributes:
        user_id: Owner of the connection.
        sync_status: Last terminal status written, or ``None`` if no
            attempt has completed yet.
        last_sync_at: Timestamp of the last completed attempt.
        channel_id: Id of the registered push channel, if any.
        resource_id: Google's opaque id of the watched resource.
        calendar_id: The calendar the channel watches.
        channel_expiration: When Google will stop delivering to the channel.
    """

    user_id: str
    sync_status: ConnectionStatus | None = None
    last_sync_at: datetime | None = None
    channel_id: str | None = None
    resource_id: str | None = None
    calendar_id: str | None = None
    channel_expiration: datetime | None = None

    @property
    def has_channel(self) -> bool:
        return bool(self.channel_id and self.resource_id)


@dataclass
class SyncRunResult:
    """Outcome of one incremental orchestration run.

    Attributes:
        user_id: The user whose calendar was synced.
        calendar_id: The calendar the trigger referred to.
        state: Terminal state (``DONE`` or ``FAILED``).
        total: Number of changes fetched.
        applied: Number of changes the sink accepted.
        status: Status written in FINALIZING/FAILED, or ``None`` when the
            run found nothing to apply.
        error: Message of the exception that failed the run, if any.
    """

    user_id: str
    calendar_id: str
    state: SyncState = SyncState.FETCHING
    total: int = 0
    applied: int = 0
    status: ConnectionStatus | None = None
    error: str | None = None

    @property
    def failed(self) -> int:
        """Number of changes the sink rejected."""
        return self.total - self.applied

    @property
    def succeeded(self) -> bool:
        """Whether the run reached ``DONE`` (partial application included)."""
        return self.state is SyncState.DONE


@dataclass
class FullSyncResult:
    """Outcome of a full reconciliation pass.

    Attributes:
        user_id: The user that was reconciled.
        success: ``False`` only when the user-level operation failed.
        applied: Events accepted by the sink across all calendars.
        calendars: Calendar ids that completed paging and re-anchoring.
        failed_calendars: Calendar ids that raised part way through.
    """

    user_id: str
    success: bool = False
    applied: int = 0
    calendars: list[str] = field(default_factory=list)
    failed_calendars: list[str] = field(default_factory=list)
