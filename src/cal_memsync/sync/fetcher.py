"""Fetch the changes behind a webhook ping.

Provides :class:`ChangeFetcher`, which reads one page of Google's change
feed for a ``(user_id, calendar_id)`` pair and classifies every entry.

Cursor handling:

- With a stored sync token, only entries changed since that token are
  requested.
- Without one, events from the last 30 days onward are requested, which
  seeds history without an unbounded backfill.
- Any ``nextSyncToken`` in the response is stored, even when no entries
  came back.

Retry policy (3 attempts in total):

- **Invalid sync token** -- the stored token is cleared and the next
  attempt runs without it, immediately.
- **Auth failure** -- raised at once; retrying cannot help.
- **Anything else** (API errors, transport failures) -- exponential
  backoff of ``2 ** attempt`` seconds, then retry.

The last error is re-raised once the attempts are used up.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from urllib.parse import unquote

from cal_memsync.calendar.client import PAGE_SIZE, PRIMARY_CALENDAR
from cal_memsync.calendar.exceptions import CalendarAuthError, is_sync_token_error
from cal_memsync.models.sync import ChangeRecord
from cal_memsync.sync.classifier import classify_change
from cal_memsync.sync.store import SyncTokenStore, utcnow

if TYPE_CHECKING:
    from cal_memsync.calendar.auth import AuthProvider

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
INITIAL_WINDOW = timedelta(days=30)

_RESOURCE_URI_CALENDAR = re.compile(r"calendars/([^/]+)/events")


def calendar_id_from_resource_uri(resource_uri: str | None) -> str:
    """Extract the calendar id from a push notification resource URI.

    ``https://www.googleapis.com/calendar/v3/calendars/{id}/events?...``
    yields the URL-decoded ``{id}``; anything else yields ``"primary"``.
    """
    if not resource_uri:
        return PRIMARY_CALENDAR
    match = _RESOURCE_URI_CALENDAR.search(resource_uri)
    return unquote(match.group(1)) if match else PRIMARY_CALENDAR


class ChangeFetcher:
    """Retrieves and classifies changed events for one calendar.

    Args:
        auth: Resolves a user id to a Calendar client.
        tokens: Cursor storage, read at the start of every attempt.
        max_attempts: Total attempts, including the first.
        initial_window: How far back a cursor-less fetch reaches.
        page_size: ``maxResults`` for the single page consumed.
        sleep: Coroutine used for backoff.  Tests pass a recorder.
        clock: Returns the current time (timezone-aware).
    """

    def __init__(
        self,
        auth: AuthProvider,
        tokens: SyncTokenStore,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        initial_window: timedelta = INITIAL_WINDOW,
        page_size: int = PAGE_SIZE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._auth = auth
        self._tokens = tokens
        self._max_attempts = max_attempts
        self._initial_window = initial_window
        self._page_size = page_size
        self._sleep = sleep
        self._clock = clock

    async def fetch_changes(self, user_id: str, calendar_id: str) -> list[ChangeRecord]:
        """Return the classified changes since the stored cursor.

        Raises:
            CalendarAuthError: If no authenticated client is available or
                the API rejects the credentials.
            Exception: The last failure once all attempts are used.
        """
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._fetch_once(user_id, calendar_id)

            except CalendarAuthError:
                logger.error("Authentication failed for user %s, not retrying", user_id)
                raise

            except Exception as exc:
                if is_sync_token_error(exc):
                    logger.info(
                        "Sync token expired for user %s, calendar %s; retrying without it",
                        user_id,
                        calendar_id,
                    )
                    await self._tokens.set(user_id, calendar_id, None)
                    if attempt < self._max_attempts:
                        continue

                if attempt >= self._max_attempts:
                    logger.error(
                        "Fetching changes for user %s failed after %d attempts: %s",
                        user_id,
                        attempt,
                        exc,
                    )
                    raise

                delay = 2**attempt
                logger.warning(
                    "Retry %d/%d after %ds for user %s: %s",
                    attempt,
                    self._max_attempts,
                    delay,
                    user_id,
                    exc,
                )
                await self._sleep(delay)

        return []  # pragma: no cover

    async def _fetch_once(self, user_id: str, calendar_id: str) -> list[ChangeRecord]:
        client = await self._auth.get_authenticated_client(user_id)
        if client is None:
            raise CalendarAuthError(f"Failed to get authenticated client for user {user_id}")

        cursor = await self._tokens.get(user_id, calendar_id)
        logger.info(
            "Fetching changes for calendar %s, sync token: %s",
            calendar_id,
            "present" if cursor else "none",
        )

        if cursor:
            response = await asyncio.to_thread(
                client.list_changes,
                calendar_id,
                sync_token=cursor,
                max_results=self._page_size,
            )
        else:
            response = await asyncio.to_thread(
                client.list_changes,
                calendar_id,
                time_min=self._clock() - self._initial_window,
                max_results=self._page_size,
            )

        next_sync_token = response.get("nextSyncToken")
        if next_sync_token:
            await self._tokens.set(user_id, calendar_id, next_sync_token)

        return [
            ChangeRecord(event=item, change_type=classify_change(item))
            for item in response.get("items", [])
        ]
