"""Custom exceptions and error translation for Google Calendar API operations.

Defines a hierarchy of calendar-specific exceptions and a
``@translate_http_errors`` decorator that maps ``HttpError`` and network
failures onto it, refreshing credentials once on HTTP 401.

Backoff is *not* applied here; the change fetcher owns the retry budget
for incremental syncs.

Exception hierarchy::

    CalendarAPIError                (base for all Calendar API errors)
    +-- CalendarAuthError           (401 / no usable credentials)
    +-- CalendarPermissionError     (403 insufficient permissions)
    +-- CalendarNotFoundError       (404)
    +-- CalendarSyncTokenExpiredError (410 Gone / invalid sync token)
    +-- CalendarRateLimitError      (429)
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from googleapiclient.errors import HttpError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------


class CalendarAPIError(Exception):
    """Base exception for Google Calendar API errors.

    Attributes:
        status_code: HTTP status code from the API, or ``None`` if the
            error did not originate from an HTTP response.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CalendarAuthError(CalendarAPIError):
    """Raised when the Calendar API cannot be called on a user's behalf.

    Covers HTTP 401 responses, token refresh failures, and a missing
    authenticated client.  Retrying does not help.
    """

    def __init__(self, message: str = "Calendar authentication failed") -> None:
        super().__init__(message, status_code=401)


class CalendarPermissionError(CalendarAPIError):
    """Raised on HTTP 403 (the granted scopes do not cover the request)."""

    def __init__(self, message: str = "Calendar permission denied") -> None:
        super().__init__(message, status_code=403)


class CalendarNotFoundError(CalendarAPIError):
    """Raised when a Calendar resource is not found (HTTP 404)."""

    def __init__(self, message: str = "Calendar resource not found") -> None:
        super().__init__(message, status_code=404)


class CalendarSyncTokenExpiredError(CalendarAPIError):
    """Raised when Google rejects a sync token as expired or malformed.

    Google answers 410 Gone for expired tokens; a malformed token comes
    back as a 400 whose message mentions the sync token.  The caller must
    drop the stored token and fall back to a windowed fetch.
    """

    def __init__(self, message: str = "Sync token is no longer valid") -> None:
        super().__init__(message, status_code=410)


class CalendarRateLimitError(CalendarAPIError):
    """Raised when the Calendar API returns HTTP 429 (rate limit exceeded)."""

    def __init__(self, message: str = "Calendar API rate limit exceeded") -> None:
        super().__init__(message, status_code=429)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

_AUTH_RETRY_LIMIT = 1  # 401 gets one retry after token refresh


def is_sync_token_error(error: BaseException) -> bool:
    """Return whether *error* means the stored sync token must be dropped."""
    if isinstance(error, CalendarSyncTokenExpiredError):
        return True
    if isinstance(error, CalendarAPIError) and error.status_code == 410:
        return True
    text = str(error).lower()
    return "sync token" in text and ("no longer valid" in text or "invalid" in text)


def classify_http_error(error: HttpError) -> CalendarAPIError:
    """Map an ``HttpError`` to the appropriate calendar exception.

    Args:
        error: The ``googleapiclient.errors.HttpError`` to classify.

    Returns:
        A :class:`CalendarAPIError` subclass matching the HTTP status code.
    """
    status = error.resp.status
    message = str(error)

    if status == 410:
        return CalendarSyncTokenExpiredError(message)
    if status == 400 and "sync token" in message.lower():
        return CalendarSyncTokenExpiredError(message)
    if status == 404:
        return CalendarNotFoundError(message)
    if status == 429:
        return CalendarRateLimitError(message)
    if status == 401:
        return CalendarAuthError(message)
    if status == 403:
        return CalendarPermissionError(message)
    return CalendarAPIError(message, status_code=status)


# ---------------------------------------------------------------------------
# Decorator
# ---------------------------------------------------------------------------


def translate_http_errors(func: F) -> F:
    """Decorator that converts Calendar API failures into the hierarchy.

    - **HTTP 401**: refresh credentials via ``self._refresh_credentials()``
      (if available) and call again once.  A second 401, or a failing
      refresh, raises :class:`CalendarAuthError`.
    - Any other ``HttpError``: raised as the classified subclass.
    - **Network errors** (``OSError``, ``TimeoutError``): raised as a
      plain :class:`CalendarAPIError` so callers can back off.

    The decorated function must be a method; ``args[0]`` is the instance.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        auth_retries = 0

        while True:
            try:
                return func(*args, **kwargs)

            except HttpError as exc:
                cal_error = classify_http_error(exc)

                if isinstance(cal_error, CalendarAuthError):
                    if auth_retries >= _AUTH_RETRY_LIMIT:
                        logger.error("Auth failed after token refresh: %s", exc)
                        raise cal_error from exc
                    auth_retries += 1
                    logger.warning("Auth expired (401), attempting token refresh")
                    instance = args[0] if args else None
                    refresh = getattr(instance, "_refresh_credentials", None)
                    if not callable(refresh):
                        logger.warning("No _refresh_credentials method available")
                        raise cal_error from exc
                    try:
                        refresh()
                    except Exception as refresh_exc:
                        logger.error("Token refresh failed: %s", refresh_exc)
                        raise CalendarAuthError(
                            f"Token refresh failed: {refresh_exc}"
                        ) from refresh_exc
                    continue

                logger.debug(
                    "Calendar API error (HTTP %s) in %s: %s",
                    cal_error.status_code,
                    func.__name__,
                    exc,
                )
                raise cal_error from exc

            except (OSError, TimeoutError) as exc:
                logger.debug("Network error in %s: %s", func.__name__, exc)
                raise CalendarAPIError(f"Network error: {exc}") from exc

    return wrapper  # type: ignore[return-value]
