"""Pydantic models for inbound Google push notifications.

Google delivers change pings as bodyless ``POST`` requests; everything the
engine needs is carried in ``X-Goog-*`` headers.  :class:`WebhookNotification`
captures those headers together with the user id taken from the URL path.
"""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, Field, field_validator

_HEADER_MAP: dict[str, str] = {
    "x-goog-resource-id": "resource_id",
    "x-goog-resource-uri": "resource_uri",
    "x-goog-channel-id": "channel_id",
    "x-goog-channel-token": "channel_token",
    "x-goog-channel-expiration": "channel_expiration",
    "x-goog-resource-state": "resource_state",
    "x-goog-message-number": "message_number",
}


class WebhookNotification(BaseModel):
    """A single push notification for one user's channel.

    Attributes:
        user_id: Owner of the channel (taken from the endpoint path).
        resource_id: Google's opaque id of the watched resource.
        resource_uri: Locator of the watched collection, e.g.
            ``https://www.googleapis.com/calendar/v3/calendars/primary/events``.
        channel_id: Id chosen when the channel was registered.
        channel_token: Shared secret echoed back by Google, if one was set.
        channel_expiration: Channel expiry as sent by Google (RFC 1123).
        resource_state: ``"sync"`` for the registration handshake,
            ``"exists"`` for real changes.
        message_number: Monotonic per-channel message counter.
    """

    user_id: str = Field(min_length=1)
    resource_id: str = ""
    resource_uri: str = ""
    channel_id: str = ""
    channel_token: str | None = None
    channel_expiration: str | None = None
    resource_state: str | None = None
    message_number: int | None = None

    @field_validator("user_id")
    @classmethod
    def _strip_user_id(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("user_id must not be blank")
        return stripped

    @classmethod
    def from_headers(cls, user_id: str, headers: Mapping[str, str]) -> WebhookNotification:
        """Build a notification from request headers (case-insensitive)."""
        lowered = {key.lower(): value for key, value in headers.items()}
        values: dict[str, object] = {"user_id": user_id}
        for header, field_name in _HEADER_MAP.items():
            raw = lowered.get(header)
            if raw is None:
                continue
            if field_name == "message_number":
                try:
                    values[field_name] = int(raw)
                except ValueError:
                    continue
            else:
                values[field_name] = raw
        return cls(**values)

    @property
    def is_handshake(self) -> bool:
        """Whether this is the ``sync`` ping sent right after registration."""
        return self.resource_state == "sync"
