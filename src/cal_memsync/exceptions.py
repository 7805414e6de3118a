"""Custom exceptions for cal-memsync outside the Calendar API layer.

Calendar API failures live in :mod:`cal_memsync.calendar.exceptions`.
"""

from __future__ import annotations


class StoreError(Exception):
    """Raised by a state backend when a read or write cannot be completed.

    :class:`~cal_memsync.sync.store.SyncTokenStore` catches this on reads
    and degrades to "no cursor"; connection status writes log it.
    """


class VaultError(Exception):
    """Raised when the memory vault answers with an unusable payload.

    Covers non-JSON or wrongly shaped search responses.  HTTP status
    failures are reported as ``False`` by the vault client instead.

    Attributes:
        status_code: HTTP status of the offending response, if any.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
