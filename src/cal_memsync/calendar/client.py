"""Google Calendar read and channel client for the sync engine.

Provides :class:`GoogleCalendarClient`, a thin wrapper around the
``googleapiclient`` service resource exposing exactly the calls the sync
engine makes:

- **Change feed** -- one page of ``events.list`` driven either by a sync
  token or by a lower time bound.
- **Window paging** -- ``events.list`` pages over a bounded time window,
  ordered by start time (full sync).
- **Calendar enumeration** -- every entry of ``calendarList.list``.
- **Cursor refresh** -- a minimal ``events.list`` call whose only purpose
  is its ``nextSyncToken``.
- **Channels** -- ``events.watch`` and ``channels.stop``.

Every method is blocking; async callers run them through
:func:`asyncio.to_thread`.  All API calls are wrapped with
:func:`~cal_memsync.calendar.exceptions.translate_http_errors`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from cal_memsync.calendar.exceptions import translate_http_errors

logger = logging.getLogger(__name__)

# Google Calendar API calendar identifier for the primary calendar.
PRIMARY_CALENDAR = "primary"

# Largest page the engine asks for.
PAGE_SIZE = 250


class GoogleCalendarClient:
    """Calendar API client bound to one user's credentials.

    Args:
        credentials: Valid Google OAuth 2.0 credentials for the user.
        service: Optional pre-built ``googleapiclient`` service resource.
            If ``None``, one is built from *credentials*.  Pass a mock here
            in tests.
        on_refresh: Optional callback invoked with the credentials after a
            successful refresh so the caller can persist them.
    """

    def __init__(
        self,
        credentials: Credentials,
        service: Any | None = None,
        on_refresh: Any | None = None,
    ) -> None:
        self._credentials = credentials
        self._on_refresh = on_refresh
        self._service = service or build(
            "calendar", "v3", credentials=credentials, cache_discovery=False
        )

    # ------------------------------------------------------------------
    # Credential refresh hook (used by @translate_http_errors on 401)
    # ------------------------------------------------------------------

    def _refresh_credentials(self) -> None:
        """Refresh the OAuth 2.0 credentials and rebuild the service."""
        from google.auth.transport.requests import Request

        self._credentials.refresh(Request())
        self._service = build(
            "calendar", "v3", credentials=self._credentials, cache_discovery=False
        )
        if self._on_refresh is not None:
            self._on_refresh(self._credentials)
        logger.info("Credentials refreshed and service rebuilt")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @translate_http_errors
    def list_changes(
        self,
        calendar_id: str,
        *,
        sync_token: str | None = None,
        time_min: datetime | None = None,
        max_results: int = PAGE_SIZE,
    ) -> dict[str, Any]:
        """Fetch a single page of the change feed.

        With *sync_token* only entries changed since that token are
        returned; otherwise events starting after *time_min*.  Deleted
        entries are included and recurring events are expanded.

        Returns:
            The raw ``events.list`` response (``items`` plus
            ``nextSyncToken`` / ``nextPageToken`` when present).
        """
        params: dict[str, Any] = {
            "calendarId": calendar_id,
            "showDeleted": True,
            "singleEvents": True,
            "maxResults": max_results,
        }
        if sync_token is not None:
            params["syncToken"] = sync_token
        elif time_min is not None:
            params["timeMin"] = rfc3339(time_min)

        response = self._service.events().list(**params).execute()
        logger.debug(
            "Change feed for %s returned %d item(s)",
            calendar_id,
            len(response.get("items", [])),
        )
        return response

    @translate_http_errors
    def list_events_page(
        self,
        calendar_id: str,
        *,
        time_min: datetime,
        time_max: datetime,
        page_token: str | None = None,
        max_results: int = PAGE_SIZE,
    ) -> dict[str, Any]:
        """Fetch one page of events inside ``[time_min, time_max)``.

        Returns:
            The raw ``events.list`` response.  Continue with its
            ``nextPageToken`` until it is absent.
        """
        return (
            self._service.events()
            .list(
                calendarId=calendar_id,
                timeMin=rfc3339(time_min),
                timeMax=rfc3339(time_max),
                maxResults=max_results,
                singleEvents=True,
                orderBy="startTime",
                pageToken=page_token,
            )
            .execute()
        )

    @translate_http_errors
    def fetch_sync_token(self, calendar_id: str) -> str | None:
        """Issue a minimal list call and return its ``nextSyncToken``."""
        response = self._service.events().list(calendarId=calendar_id, maxResults=1).execute()
        return response.get("nextSyncToken")

    # ------------------------------------------------------------------
    # Calendars
    # ------------------------------------------------------------------

    @translate_http_errors
    def list_calendars(self) -> list[dict[str, Any]]:
        """Return every calendar visible to the user, across all pages."""
        calendars: list[dict[str, Any]] = []
        page_token: str | None = None

        while True:
            response = self._service.calendarList().list(pageToken=page_token).execute()
            calendars.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if page_token is None:
                break

        logger.info("Listed %d calendar(s)", len(calendars))
        return calendars

    # ------------------------------------------------------------------
    # Push channels
    # ------------------------------------------------------------------

    @translate_http_errors
    def watch_events(
        self,
        calendar_id: str,
        *,
        channel_id: str,
        address: str,
        token: str,
        expiration: datetime,
        ttl_seconds: int,
    ) -> dict[str, Any]:
        """Open a push channel on the events collection of *calendar_id*.

        Returns:
            The channel resource (``id``, ``resourceId``, ``expiration``).
        """
        body = {
            "id": channel_id,
            "type": "web_hook",
            "address": address,
            "token": token,
            "expiration": str(int(expiration.timestamp() * 1000)),
            "params": {"ttl": str(ttl_seconds)},
        }
        return self._service.events().watch(calendarId=calendar_id, body=body).execute()

    @translate_http_errors
    def stop_channel(self, channel_id: str, resource_id: str) -> None:
        """Stop delivery on a push channel."""
        self._service.channels().stop(body={"id": channel_id, "resourceId": resource_id}).execute()
        logger.info("Stopped channel %s", channel_id)


def rfc3339(value: datetime) -> str:
    """Format *value* as an RFC 3339 UTC timestamp (naive means UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
