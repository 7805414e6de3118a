"""Google Calendar integration for cal-memsync."""

from __future__ import annotations

from cal_memsync.calendar.auth import AuthProvider, TokenFileAuthProvider, authorize_user
from cal_memsync.calendar.client import PRIMARY_CALENDAR, GoogleCalendarClient

__all__ = [
    "PRIMARY_CALENDAR",
    "AuthProvider",
    "GoogleCalendarClient",
    "TokenFileAuthProvider",
    "authorize_user",
]
