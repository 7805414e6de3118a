"""Persistence for sync cursors and calendar connection records.

Two layers:

- A :class:`StateBackend` does raw reads and writes.  Two are provided:
  :class:`MemoryStateBackend` (tests, single-run CLI use) and
  :class:`JsonFileStateBackend` (a JSON document rewritten atomically on
  every change).
- :class:`SyncTokenStore` and :class:`ConnectionStore` wrap a backend with
  the semantics the sync engine relies on: cursor upserts keyed by
  ``(user_id, calendar_id)``, read failures degrading to "no cursor", and
  status writes that log instead of raising.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from cal_memsync.exceptions import StoreError
from cal_memsync.models.sync import CalendarConnection, ConnectionStatus

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class StateBackend(Protocol):
    """Raw storage operations.  Implementations raise :class:`StoreError`."""

    async def get_sync_token(self, user_id: str, calendar_id: str) -> str | None: ...

    async def set_sync_token(self, user_id: str, calendar_id: str, token: str | None) -> None: ...

    async def get_connection(self, user_id: str) -> CalendarConnection | None: ...

    async def save_connection(self, connection: CalendarConnection) -> None: ...

    async def list_connections(self) -> list[CalendarConnection]: ...


class MemoryStateBackend:
    """In-process backend holding everything in dictionaries.

    Every change is staged on copies, handed to :meth:`_persist`, and only
    swapped in once that succeeds, so a failed durable write leaves the
    visible state untouched.  Connections are copied on the way in and out.
    """

    def __init__(self) -> None:
        self._tokens: dict[tuple[str, str], str] = {}
        self._connections: dict[str, CalendarConnection] = {}
        self._write_lock = asyncio.Lock()

    async def get_sync_token(self, user_id: str, calendar_id: str) -> str | None:
        return self._tokens.get((user_id, calendar_id))

    async def set_sync_token(self, user_id: str, calendar_id: str, token: str | None) -> None:
        async with self._write_lock:
            tokens = dict(self._tokens)
            if token is None:
                tokens.pop((user_id, calendar_id), None)
            else:
                tokens[(user_id, calendar_id)] = token
            await self._persist(tokens, self._connections)
            self._tokens = tokens

    async def get_connection(self, user_id: str) -> CalendarConnection | None:
        connection = self._connections.get(user_id)
        return replace(connection) if connection is not None else None

    async def save_connection(self, connection: CalendarConnection) -> None:
        async with self._write_lock:
            connections = dict(self._connections)
            connections[connection.user_id] = replace(connection)
            await self._persist(self._tokens, connections)
            self._connections = connections

    async def list_connections(self) -> list[CalendarConnection]:
        return [replace(c) for c in self._connections.values()]

    async def _persist(
        self,
        tokens: dict[tuple[str, str], str],
        connections: dict[str, CalendarConnection],
    ) -> None:
        """Hook for subclasses that write through to durable storage."""


class JsonFileStateBackend(MemoryStateBackend):
    """Backend persisted to a single JSON file.

    The file is loaded once at construction and rewritten after every
    change via a temporary file and :func:`os.replace`, so a crash never
    leaves a half-written document behind.  Writes run in a worker thread.

    Args:
        path: Location of the JSON document.  Parent directories are
            created on first write.

    Raises:
        StoreError: If an existing file cannot be parsed.
    """

    def __init__(self, path: Path | str) -> None:
        super().__init__()
        self._path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            logger.info("No state file at %s, starting empty", self._path)
            return
        try:
            data = json.loads(self._path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreError(f"Cannot read state file {self._path}: {exc}") from exc

        for item in data.get("sync_tokens", []):
            self._tokens[(item["user_id"], item["calendar_id"])] = item["sync_token"]
        for item in data.get("connections", []):
            connection = _connection_from_dict(item)
            self._connections[connection.user_id] = connection
        logger.info(
            "Loaded %d sync token(s) and %d connection(s) from %s",
            len(self._tokens),
            len(self._connections),
            self._path,
        )

    async def _persist(
        self,
        tokens: dict[tuple[str, str], str],
        connections: dict[str, CalendarConnection],
    ) -> None:
        data = {
            "sync_tokens": [
                {"user_id": user_id, "calendar_id": calendar_id, "sync_token": token}
                for (user_id, calendar_id), token in sorted(tokens.items())
            ],
            "connections": [_connection_to_dict(c) for c in connections.values()],
        }
        await asyncio.to_thread(self._write, data)

    def _write(self, data: dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        except OSError as exc:
            raise StoreError(f"Cannot write state file {self._path}: {exc}") from exc

        try:
            with os.fdopen(fd, "w") as handle:
                json.dump(data, handle, indent=2)
            os.replace(tmp_name, self._path)
        except OSError as exc:
            raise StoreError(f"Cannot write state file {self._path}: {exc}") from exc
        finally:
            Path(tmp_name).unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Engine-facing stores
# ---------------------------------------------------------------------------


class SyncTokenStore:
    """Per ``(user_id, calendar_id)`` cursor storage.

    Reads never raise: a backend failure is logged and reported as "no
    cursor", which degrades the next fetch to an initial-window sync.
    """

    def __init__(self, backend: StateBackend) -> None:
        self._backend = backend

    async def get(self, user_id: str, calendar_id: str) -> str | None:
        try:
            return await self._backend.get_sync_token(user_id, calendar_id)
        except Exception as exc:
            logger.error(
                "Error reading sync token for user %s, calendar %s: %s",
                user_id,
                calendar_id,
                exc,
            )
            return None

    async def set(self, user_id: str, calendar_id: str, cursor: str | None) -> bool:
        """Create, replace or (with ``None``) clear the cursor.

        Returns:
            ``True`` if the write reached the backend.
        """
        try:
            await self._backend.set_sync_token(user_id, calendar_id, cursor)
        except Exception as exc:
            logger.error(
                "Error updating sync token for user %s, calendar %s: %s",
                user_id,
                calendar_id,
                exc,
            )
            return False
        logger.debug(
            "Sync token %s for user %s, calendar %s",
            "cleared" if cursor is None else "stored",
            user_id,
            calendar_id,
        )
        return True


class ConnectionStore:
    """Connection status and push channel records, one per user."""

    def __init__(self, backend: StateBackend) -> None:
        self._backend = backend

    async def get(self, user_id: str) -> CalendarConnection | None:
        try:
            return await self._backend.get_connection(user_id)
        except Exception as exc:
            logger.error("Error reading calendar connection for user %s: %s", user_id, exc)
            return None

    async def update_status(
        self,
        user_id: str,
        status: ConnectionStatus,
        *,
        last_sync_at: datetime | None = None,
    ) -> bool:
        """Write *status* and the last-sync timestamp (default: now)."""
        try:
            connection = await self._backend.get_connection(user_id) or CalendarConnection(
                user_id=user_id
            )
            connection.sync_status = status
            connection.last_sync_at = last_sync_at or utcnow()
            await self._backend.save_connection(connection)
        except Exception as exc:
            logger.error(
                "Error updating calendar connection for user %s to %s: %s",
                user_id,
                status.value,
                exc,
            )
            return False
        logger.info("Connection status for user %s set to %s", user_id, status.value)
        return True

    async def register_channel(
        self,
        user_id: str,
        *,
        channel_id: str,
        resource_id: str,
        calendar_id: str,
        expiration: datetime,
    ) -> bool:
        try:
            connection = await self._backend.get_connection(user_id) or CalendarConnection(
                user_id=user_id
            )
            connection.channel_id = channel_id
            connection.resource_id = resource_id
            connection.calendar_id = calendar_id
            connection.channel_expiration = expiration
            await self._backend.save_connection(connection)
        except Exception as exc:
            logger.error("Error registering channel for user %s: %s", user_id, exc)
            return False
        return True

    async def clear_channel(self, user_id: str) -> bool:
        try:
            connection = await self._backend.get_connection(user_id)
            if connection is None:
                return False
            connection.channel_id = None
            connection.resource_id = None
            connection.channel_expiration = None
            await self._backend.save_connection(connection)
        except Exception as exc:
            logger.error("Error unregistering channel for user %s: %s", user_id, exc)
            return False
        return True

    async def expired_channels(self, now: datetime | None = None) -> list[CalendarConnection]:
        """Connections whose channel expiration lies before *now*."""
        now = now or utcnow()
        try:
            connections = await self._backend.list_connections()
        except Exception as exc:
            logger.error("Error listing expired channels: %s", exc)
            return []
        return [
            c
            for c in connections
            if c.channel_id is not None
            and c.channel_expiration is not None
            and c.channel_expiration < now
        ]


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _connection_to_dict(connection: CalendarConnection) -> dict[str, Any]:
    return {
        "user_id": connection.user_id,
        "sync_status": connection.sync_status.value if connection.sync_status else None,
        "last_sync_at": _dt_to_str(connection.last_sync_at),
        "channel_id": connection.channel_id,
        "resource_id": connection.resource_id,
        "calendar_id": connection.calendar_id,
        "channel_expiration": _dt_to_str(connection.channel_expiration),
    }


def _connection_from_dict(data: dict[str, Any]) -> CalendarConnection:
    status = data.get("sync_status")
    return CalendarConnection(
        user_id=data["user_id"],
        sync_status=ConnectionStatus(status) if status else None,
        last_sync_at=_str_to_dt(data.get("last_sync_at")),
        channel_id=data.get("channel_id"),
        resource_id=data.get("resource_id"),
        calendar_id=data.get("calendar_id"),
        channel_expiration=_str_to_dt(data.get("channel_expiration")),
    )


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _str_to_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
