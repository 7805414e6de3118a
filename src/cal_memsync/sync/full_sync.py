"""Full reconciliation of a user's calendars into the memory vault.

Provides :class:`FullSyncRunner`, the recovery path used when incremental
sync fails or a cursor cannot be trusted:

1. Enumerate every calendar visible to the user.
2. For each calendar, page through all events in
   ``[now - 30 days, now + 365 days)`` ordered by start time and upsert
   every one of them as ``created``.
3. Re-anchor the calendar's sync token with one minimal list call.
4. Mark the connection ``active``.

A failure on one calendar is logged and the remaining calendars are still
processed.  Only a failure before any calendar could be enumerated (no
credentials, calendar list error) fails the run and marks the connection
``error``.

:meth:`FullSyncRunner.schedule_full_sync` only records that a full sync is
due; the pass itself is started out of band (HTTP endpoint or CLI).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from cal_memsync.calendar.client import PAGE_SIZE, GoogleCalendarClient
from cal_memsync.calendar.exceptions import CalendarAuthError
from cal_memsync.models.sync import ChangeRecord, ChangeType, ConnectionStatus, FullSyncResult
from cal_memsync.sync.apply import apply_change
from cal_memsync.sync.store import ConnectionStore, SyncTokenStore, utcnow
from cal_memsync.vault.client import MemorySink

if TYPE_CHECKING:
    from cal_memsync.calendar.auth import AuthProvider

logger = logging.getLogger(__name__)

PAST_WINDOW = timedelta(days=30)
FUTURE_WINDOW = timedelta(days=365)


class FullSyncRunner:
    """Bulk reconciliation over a bounded time window.

    Args:
        auth: Resolves a user id to a Calendar client.
        tokens: Cursor storage, re-anchored per calendar.
        connections: Connection status storage.
        sink: Downstream memory store.
        past_window: How far back the window reaches.
        future_window: How far ahead the window reaches.
        page_size: ``maxResults`` per page.
        clock: Returns the current time (timezone-aware).
    """

    def __init__(
        self,
        auth: AuthProvider,
        tokens: SyncTokenStore,
        connections: ConnectionStore,
        sink: MemorySink,
        *,
        past_window: timedelta = PAST_WINDOW,
        future_window: timedelta = FUTURE_WINDOW,
        page_size: int = PAGE_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._auth = auth
        self._tokens = tokens
        self._connections = connections
        self._sink = sink
        self._past_window = past_window
        self._future_window = future_window
        self._page_size = page_size
        self._clock = clock

    async def run_full_sync(self, user_id: str) -> FullSyncResult:
        """Reconcile every calendar of *user_id*.

        Returns:
            A :class:`FullSyncResult`; ``success`` is ``False`` only when
            the user-level operation failed.
        """
        result = FullSyncResult(user_id=user_id)
        logger.info("Starting full sync for user %s", user_id)

        try:
            client = await self._auth.get_authenticated_client(user_id)
            if client is None:
                raise CalendarAuthError(f"Failed to get authenticated client for user {user_id}")
            calendars = await asyncio.to_thread(client.list_calendars)
        except Exception as exc:
            logger.error("Full sync failed for user %s: %s", user_id, exc)
            await self._connections.update_status(user_id, ConnectionStatus.ERROR)
            return result

        if not calendars:
            logger.info("No calendars found for user %s", user_id)

        for calendar in calendars:
            calendar_id = calendar.get("id")
            if not calendar_id:
                continue
            logger.info("Syncing calendar %s for user %s", calendar_id, user_id)
            try:
                await self._sync_calendar(client, user_id, calendar_id, result)
            except Exception as exc:
                logger.error(
                    "Failed to sync calendar %s for user %s: %s", calendar_id, user_id, exc
                )
                result.failed_calendars.append(calendar_id)
            else:
                result.calendars.append(calendar_id)

        await self._connections.update_status(user_id, ConnectionStatus.ACTIVE)
        result.success = True
        logger.info(
            "Full sync completed for user %s, synced %d event(s) across %d calendar(s), "
            "%d calendar failure(s)",
            user_id,
            result.applied,
            len(result.calendars),
            len(result.failed_calendars),
        )
        return result

    async def schedule_full_sync(self, user_id: str) -> bool:
        """Mark *user_id*'s connection as due for a full sync."""
        logger.info("Scheduling full sync for user %s", user_id)
        scheduled = await self._connections.update_status(
            user_id, ConnectionStatus.SCHEDULED_FULL_SYNC
        )
        if not scheduled:
            logger.error("Failed to schedule full sync for user %s", user_id)
        return scheduled

    async def _sync_calendar(
        self,
        client: GoogleCalendarClient,
        user_id: str,
        calendar_id: str,
        result: FullSyncResult,
    ) -> None:
        now = self._clock()
        time_min = now - self._past_window
        time_max = now + self._future_window
        page_token: str | None = None

        while True:
            response = await asyncio.to_thread(
                client.list_events_page,
                calendar_id,
                time_min=time_min,
                time_max=time_max,
                page_token=page_token,
                max_results=self._page_size,
            )
            for event in response.get("items", []):
                record = ChangeRecord(event=event, change_type=ChangeType.CREATED)
                if await apply_change(record, user_id, self._sink, calendar_id):
                    result.applied += 1

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        sync_token = await asyncio.to_thread(client.fetch_sync_token, calendar_id)
        if sync_token:
            await self._tokens.set(user_id, calendar_id, sync_token)
        else:
            logger.warning("No sync token returned for calendar %s", calendar_id)
