"""Shared fixtures for cal-memsync tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock

import pytest

from cal_memsync.models.memory import MemoryEntry
from cal_memsync.sync.store import ConnectionStore, MemoryStateBackend, SyncTokenStore

_ENV_KEYS = (
    "MEMORY_VAULT_URL",
    "WEBHOOK_URL",
    "WEBHOOK_TOKEN",
    "TOKEN_DIR",
    "STATE_FILE",
    "GOOGLE_CLIENT_SECRETS",
    "LOG_LEVEL",
    "HOST",
    "PORT",
    "CHANNEL_REFRESH_ENABLED",
)


@pytest.fixture()
def monkeypatch_env(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set all required environment variables to valid defaults.

    Also patches ``load_dotenv`` so that a real ``.env`` file on disk does not
    override the test values.

    Returns the dict of variables so tests can inspect or override values.
    """
    monkeypatch.setattr("cal_memsync.config.load_dotenv", lambda *_a, **_kw: None)
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    env_vars = {
        "MEMORY_VAULT_URL": "http://vault.test",
        "WEBHOOK_URL": "https://hooks.example.com/webhook/calendar",
        "WEBHOOK_TOKEN": "test-webhook-token",
    }
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    return env_vars


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove all cal-memsync-related environment variables.

    Patches ``load_dotenv`` so a real ``.env`` file cannot re-inject values
    that the test explicitly removed.
    """
    monkeypatch.setattr("cal_memsync.config.load_dotenv", lambda *_a, **_kw: None)
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _reset_root_logger() -> Generator[None, None, None]:
    """Reset the root logger after each test to prevent handler leaks."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)


# ---------------------------------------------------------------------------
# Sync engine fakes
# ---------------------------------------------------------------------------


class RecordingSink:
    """In-memory sink that records every call.

    ``fail_ids`` lists event ids whose upsert/delete is refused.
    """

    def __init__(self, fail_ids: set[str] | None = None) -> None:
        self.fail_ids = fail_ids or set()
        self.upserts: list[tuple[str, MemoryEntry]] = []
        self.deletes: list[tuple[str, str]] = []

    async def upsert(self, user_id: str, entry: MemoryEntry) -> bool:
        self.upserts.append((user_id, entry))
        return entry.event_id not in self.fail_ids

    async def delete(self, user_id: str, event_id: str) -> bool:
        self.deletes.append((user_id, event_id))
        return event_id not in self.fail_ids


class StaticAuth:
    """Auth provider returning the same client (or ``None``) for every user."""

    def __init__(self, client: Any) -> None:
        self.client = client
        self.calls: list[str] = []

    async def get_authenticated_client(self, user_id: str) -> Any:
        self.calls.append(user_id)
        return self.client


def make_event(
    event_id: str = "evt-1",
    *,
    status: str = "confirmed",
    created: str = "2026-03-01T10:00:00.000Z",
    updated: str = "2026-03-01T10:00:00.000Z",
    summary: str = "Team Standup",
    **extra: Any,
) -> dict[str, Any]:
    """Build a Google Calendar event resource dict."""
    event: dict[str, Any] = {
        "id": event_id,
        "status": status,
        "created": created,
        "updated": updated,
        "summary": summary,
        "start": {"dateTime": "2026-03-10T09:00:00-08:00"},
        "end": {"dateTime": "2026-03-10T09:30:00-08:00"},
    }
    event.update(extra)
    return event


@pytest.fixture()
def backend() -> MemoryStateBackend:
    return MemoryStateBackend()


@pytest.fixture()
def tokens(backend: MemoryStateBackend) -> SyncTokenStore:
    return SyncTokenStore(backend)


@pytest.fixture()
def connections(backend: MemoryStateBackend) -> ConnectionStore:
    return ConnectionStore(backend)


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def calendar_client() -> MagicMock:
    """A mock :class:`GoogleCalendarClient` with empty default responses."""
    client = MagicMock()
    client.list_changes.return_value = {"items": []}
    client.list_events_page.return_value = {"items": []}
    client.list_calendars.return_value = [{"id": "primary"}]
    client.fetch_sync_token.return_value = "anchor-token"
    return client


@pytest.fixture()
def auth(calendar_client: MagicMock) -> StaticAuth:
    return StaticAuth(calendar_client)


@pytest.fixture()
def event_factory() -> Any:
    """Return :func:`make_event` so tests can build event dicts."""
    return make_event
