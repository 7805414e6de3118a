"""Per-user OAuth 2.0 credentials for the Google Calendar API.

The sync engine acts on behalf of many users, each with their own cached
token file ``<token_dir>/<user_id>.json``.  :class:`TokenFileAuthProvider`
turns a user id into a ready :class:`GoogleCalendarClient`:

1. **Cached token** -- load the user's token file; return a client if the
   credentials are still valid.
2. **Refresh** -- if they are expired but carry a refresh token, refresh,
   save the updated token and return a client.
3. Otherwise return ``None`` -- the engine cannot act for this user.

Token files are seeded with :func:`authorize_user`, which runs the desktop
``InstalledAppFlow`` from ``google-auth-oauthlib`` (``python -m cal_memsync
authorize <user_id>``).
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Protocol

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from cal_memsync.calendar.client import GoogleCalendarClient
from cal_memsync.calendar.exceptions import CalendarAuthError
from cal_memsync.models.sync import ConnectionStatus
from cal_memsync.sync.store import ConnectionStore

logger = logging.getLogger(__name__)

SCOPES: list[str] = ["https://www.googleapis.com/auth/calendar"]
"""OAuth 2.0 scopes required for reading events and managing channels."""

_SAFE_USER_ID = re.compile(r"^[A-Za-z0-9._@+-]+$")


class AuthProvider(Protocol):
    """Resolves a user id to an authenticated Calendar client."""

    async def get_authenticated_client(self, user_id: str) -> GoogleCalendarClient | None: ...


class TokenFileAuthProvider:
    """Auth provider backed by one cached token file per user.

    Args:
        token_dir: Directory holding ``<user_id>.json`` token files.
        connections: Optional connection store; a failed refresh marks the
            user's connection ``error``.
    """

    def __init__(self, token_dir: Path | str, connections: ConnectionStore | None = None) -> None:
        self._token_dir = Path(token_dir)
        self._connections = connections

    def token_path(self, user_id: str) -> Path:
        """Location of *user_id*'s token file.

        Raises:
            CalendarAuthError: If *user_id* could escape the token directory.
        """
        if not _SAFE_USER_ID.match(user_id):
            raise CalendarAuthError(f"Invalid user id for token lookup: {user_id!r}")
        return self._token_dir / f"{user_id}.json"

    async def get_authenticated_client(self, user_id: str) -> GoogleCalendarClient | None:
        """Return a client for *user_id*, or ``None`` if no usable token exists."""
        try:
            token_path = self.token_path(user_id)
        except CalendarAuthError as exc:
            logger.error("%s", exc)
            return None

        creds = _load_cached_token(token_path)
        if creds is None:
            logger.error("No valid tokens found for user %s", user_id)
            return None

        if not creds.valid:
            if not (creds.expired and creds.refresh_token):
                logger.error("No refresh token available for user %s", user_id)
                return None

            logger.info("Token expired for user %s, attempting refresh", user_id)
            refreshed = await asyncio.to_thread(_refresh_token, creds)
            if refreshed is None:
                if self._connections is not None:
                    await self._connections.update_status(user_id, ConnectionStatus.ERROR)
                return None
            _save_token(refreshed, token_path)
            creds = refreshed

        def _persist(updated: Credentials) -> None:
            _save_token(updated, token_path)

        return await asyncio.to_thread(GoogleCalendarClient, creds, None, _persist)


def authorize_user(
    user_id: str,
    credentials_path: Path | str,
    token_dir: Path | str,
) -> Path:
    """Run the browser OAuth flow for *user_id* and save the token.

    Args:
        user_id: Id under which the token is stored.
        credentials_path: OAuth client secrets file from Google Cloud Console.
        token_dir: Directory to write ``<user_id>.json`` into.

    Returns:
        Path of the written token file.

    Raises:
        CalendarAuthError: If the client secrets file is missing or the
            user id is not safe as a file name.
    """
    credentials_path = Path(credentials_path)
    token_path = TokenFileAuthProvider(token_dir).token_path(user_id)

    if not credentials_path.exists():
        msg = f"OAuth client secrets file not found: {credentials_path}"
        logger.error(msg)
        raise CalendarAuthError(msg)

    logger.info("Starting browser-based OAuth flow for user %s", user_id)
    flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes=SCOPES)
    creds = flow.run_local_server(port=0)
    _save_token(creds, token_path)
    logger.info("New credentials for user %s saved to %s", user_id, token_path)
    return token_path


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _load_cached_token(token_path: Path) -> Credentials | None:
    """Load credentials from a cached token file, or ``None``."""
    if not token_path.exists():
        logger.info("No cached token found at %s", token_path)
        return None

    try:
        return Credentials.from_authorized_user_file(str(token_path), SCOPES)
    except (json.JSONDecodeError, ValueError, KeyError) as exc:
        logger.warning("Failed to parse cached token at %s: %s", token_path, exc)
        return None


def _refresh_token(creds: Credentials) -> Credentials | None:
    """Attempt to refresh expired credentials; ``None`` on failure."""
    try:
        creds.refresh(Request())
        logger.info("Token refresh succeeded")
        return creds
    except Exception as exc:
        logger.warning("Token refresh failed: %s", exc)
        return None


def _save_token(creds: Credentials, token_path: Path) -> None:
    """Persist credentials, creating parent directories as needed."""
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json())
    logger.debug("Token saved to %s", token_path)
