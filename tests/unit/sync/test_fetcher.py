"""Tests for :class:`ChangeFetcher`.

Test matrix:

| Test | Scenario | Expected |
|---|---|---|
| test_uses_stored_cursor | cursor present | syncToken request, new cursor stored |
| test_initial_window | no cursor | timeMin = now - 30 days |
| test_empty_page_still_advances | no items + nextSyncToken | cursor advanced, [] |
| test_classifies_items | mixed items | created/updated/deleted |
| test_two_failures_then_success | 500, 500, OK | sleeps [2, 4], cursor untouched until success |
| test_exhausted | 500 x3 | raises after 3 attempts |
| test_transport_error_retried | DNS failure x2, OK | sleeps [2, 4], then success |
| test_invalid_cursor_recovers | 410 then OK | cursor cleared, no sleep, windowed fetch |
| test_auth_error_not_retried | no client | CalendarAuthError, one attempt |
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest
from httplib2 import ServerNotFoundError

from cal_memsync.calendar.exceptions import (
    CalendarAPIError,
    CalendarAuthError,
    CalendarSyncTokenExpiredError,
)
from cal_memsync.models.sync import ChangeType
from cal_memsync.sync.fetcher import ChangeFetcher, calendar_id_from_resource_uri
from cal_memsync.sync.store import SyncTokenStore

_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def fetcher(auth: Any, tokens: SyncTokenStore, sleeps: list[float]) -> ChangeFetcher:
    async def _record_sleep(delay: float) -> None:
        sleeps.append(delay)

    return ChangeFetcher(auth, tokens, sleep=_record_sleep, clock=lambda: _NOW)


class TestCursorHandling:
    """Which request is made and what is stored."""

    async def test_uses_stored_cursor(
        self, fetcher: ChangeFetcher, tokens: SyncTokenStore, calendar_client: MagicMock
    ) -> None:
        await tokens.set("alice", "primary", "cursor-1")
        calendar_client.list_changes.return_value = {"items": [], "nextSyncToken": "cursor-2"}

        await fetcher.fetch_changes("alice", "primary")

        calendar_client.list_changes.assert_called_once_with(
            "primary", sync_token="cursor-1", max_results=250
        )
        assert await tokens.get("alice", "primary") == "cursor-2"

    async def test_initial_window(
        self, fetcher: ChangeFetcher, tokens: SyncTokenStore, calendar_client: MagicMock
    ) -> None:
        calendar_client.list_changes.return_value = {"items": [], "nextSyncToken": "seed"}

        await fetcher.fetch_changes("alice", "primary")

        calendar_client.list_changes.assert_called_once_with(
            "primary", time_min=_NOW - timedelta(days=30), max_results=250
        )
        assert await tokens.get("alice", "primary") == "seed"

    async def test_empty_page_still_advances(
        self, fetcher: ChangeFetcher, tokens: SyncTokenStore, calendar_client: MagicMock
    ) -> None:
        await tokens.set("alice", "primary", "cursor-1")
        calendar_client.list_changes.return_value = {"items": [], "nextSyncToken": "cursor-2"}

        changes = await fetcher.fetch_changes("alice", "primary")

        assert changes == []
        assert await tokens.get("alice", "primary") == "cursor-2"

    async def test_missing_next_token_keeps_cursor(
        self, fetcher: ChangeFetcher, tokens: SyncTokenStore, calendar_client: MagicMock
    ) -> None:
        await tokens.set("alice", "primary", "cursor-1")
        calendar_client.list_changes.return_value = {"items": [], "nextPageToken": "p2"}

        await fetcher.fetch_changes("alice", "primary")

        assert await tokens.get("alice", "primary") == "cursor-1"

    async def test_classifies_items(
        self, fetcher: ChangeFetcher, calendar_client: MagicMock, event_factory: Any
    ) -> None:
        calendar_client.list_changes.return_value = {
            "items": [
                event_factory("new"),
                event_factory("edited", updated="2026-03-05T00:00:00.000Z"),
                {"id": "gone", "status": "cancelled"},
            ]
        }

        changes = await fetcher.fetch_changes("alice", "primary")

        assert [(c.event_id, c.change_type) for c in changes] == [
            ("new", ChangeType.CREATED),
            ("edited", ChangeType.UPDATED),
            ("gone", ChangeType.DELETED),
        ]


class TestRetryPolicy:
    """Bounded retries with exponential backoff."""

    async def test_two_failures_then_success(
        self,
        fetcher: ChangeFetcher,
        tokens: SyncTokenStore,
        calendar_client: MagicMock,
        sleeps: list[float],
    ) -> None:
        await tokens.set("alice", "primary", "cursor-1")
        calendar_client.list_changes.side_effect = [
            CalendarAPIError("backend error", status_code=500),
            CalendarAPIError("backend error", status_code=503),
            {"items": [], "nextSyncToken": "cursor-2"},
        ]

        await fetcher.fetch_changes("alice", "primary")

        assert sleeps == [2, 4]
        assert calendar_client.list_changes.call_count == 3
        for call in calendar_client.list_changes.call_args_list:
            assert call.kwargs["sync_token"] == "cursor-1"
        assert await tokens.get("alice", "primary") == "cursor-2"

    async def test_exhausted(
        self,
        fetcher: ChangeFetcher,
        tokens: SyncTokenStore,
        calendar_client: MagicMock,
        sleeps: list[float],
    ) -> None:
        await tokens.set("alice", "primary", "cursor-1")
        calendar_client.list_changes.side_effect = CalendarAPIError("down", status_code=500)

        with pytest.raises(CalendarAPIError, match="down"):
            await fetcher.fetch_changes("alice", "primary")

        assert calendar_client.list_changes.call_count == 3
        assert sleeps == [2, 4]
        assert await tokens.get("alice", "primary") == "cursor-1"

    async def test_transport_error_retried(
        self,
        fetcher: ChangeFetcher,
        tokens: SyncTokenStore,
        calendar_client: MagicMock,
        sleeps: list[float],
    ) -> None:
        await tokens.set("alice", "primary", "cursor-1")
        calendar_client.list_changes.side_effect = [
            ServerNotFoundError("Unable to find the server at www.googleapis.com"),
            ServerNotFoundError("Unable to find the server at www.googleapis.com"),
            {"items": [], "nextSyncToken": "cursor-2"},
        ]

        changes = await fetcher.fetch_changes("alice", "primary")

        assert changes == []
        assert sleeps == [2, 4]
        assert calendar_client.list_changes.call_count == 3
        assert await tokens.get("alice", "primary") == "cursor-2"

    async def test_invalid_cursor_recovers(
        self,
        fetcher: ChangeFetcher,
        tokens: SyncTokenStore,
        calendar_client: MagicMock,
        sleeps: list[float],
    ) -> None:
        await tokens.set("alice", "primary", "stale")
        calendar_client.list_changes.side_effect = [
            CalendarSyncTokenExpiredError(),
            {"items": [], "nextSyncToken": "fresh"},
        ]

        await fetcher.fetch_changes("alice", "primary")

        assert sleeps == []
        second = calendar_client.list_changes.call_args_list[1]
        assert "sync_token" not in second.kwargs
        assert second.kwargs["time_min"] == _NOW - timedelta(days=30)
        assert await tokens.get("alice", "primary") == "fresh"

    async def test_invalid_cursor_on_last_attempt(
        self,
        fetcher: ChangeFetcher,
        tokens: SyncTokenStore,
        calendar_client: MagicMock,
    ) -> None:
        """Every attempt rejected: the cursor is gone and the error surfaces."""
        await tokens.set("alice", "primary", "stale")
        calendar_client.list_changes.side_effect = CalendarSyncTokenExpiredError()

        with pytest.raises(CalendarSyncTokenExpiredError):
            await fetcher.fetch_changes("alice", "primary")

        assert calendar_client.list_changes.call_count == 3
        assert await tokens.get("alice", "primary") is None

    async def test_auth_error_not_retried(
        self, fetcher: ChangeFetcher, auth: Any, sleeps: list[float]
    ) -> None:
        auth.client = None

        with pytest.raises(CalendarAuthError):
            await fetcher.fetch_changes("alice", "primary")

        assert auth.calls == ["alice"]
        assert sleeps == []

    async def test_api_auth_error_not_retried(
        self, fetcher: ChangeFetcher, calendar_client: MagicMock
    ) -> None:
        calendar_client.list_changes.side_effect = CalendarAuthError()

        with pytest.raises(CalendarAuthError):
            await fetcher.fetch_changes("alice", "primary")

        assert calendar_client.list_changes.call_count == 1


class TestCalendarIdFromResourceUri:
    """Calendar id extraction from the notification's resource URI."""

    @pytest.mark.parametrize(
        ("uri", "expected"),
        [
            ("https://www.googleapis.com/calendar/v3/calendars/primary/events?alt=json", "primary"),
            (
                "https://www.googleapis.com/calendar/v3/calendars/work%40example.com/events",
                "work@example.com",
            ),
            ("https://www.googleapis.com/calendar/v3/users/me/calendarList", "primary"),
            ("", "primary"),
            (None, "primary"),
        ],
    )
    def test_extraction(self, uri: str | None, expected: str) -> None:
        assert calendar_id_from_resource_uri(uri) == expected
