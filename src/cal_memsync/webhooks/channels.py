"""Push channel lifecycle: register, unregister and periodic renewal.

Google push channels on a calendar's events collection expire after at
most seven days.  :class:`ChannelManager` opens channels for six days and
re-registers expired ones every five days.

Each connection record stores the channel id, Google's resource id and the
owning user, so a channel is stopped upstream with the credentials of the
user that opened it.  When those credentials are gone the local record is
still cleared and the upstream channel is left to expire on its own; this
is logged as a possible leak.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from cal_memsync.calendar.client import PRIMARY_CALENDAR, GoogleCalendarClient
from cal_memsync.calendar.exceptions import (
    CalendarAPIError,
    CalendarAuthError,
    CalendarNotFoundError,
    CalendarPermissionError,
)
from cal_memsync.models.sync import ConnectionStatus
from cal_memsync.sync.store import ConnectionStore, utcnow

if TYPE_CHECKING:
    from cal_memsync.calendar.auth import AuthProvider

logger = logging.getLogger(__name__)

CHANNEL_LIFETIME = timedelta(days=6)
REFRESH_INTERVAL = timedelta(days=5)
STARTUP_DELAY = 5.0  # seconds
PAUSE_BETWEEN_USERS = 1.0  # seconds


class ChannelManager:
    """Registers and renews per-user push channels.

    Args:
        auth: Resolves a user id to a Calendar client.
        connections: Stores channel records and statuses.
        webhook_url: Public base URL; the user id is appended.
        webhook_token: Token Google echoes back on every ping.
        clock: Returns the current time (timezone-aware).
        sleep: Coroutine used for pauses and the schedule.
    """

    def __init__(
        self,
        auth: AuthProvider,
        connections: ConnectionStore,
        *,
        webhook_url: str,
        webhook_token: str,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._auth = auth
        self._connections = connections
        self._webhook_url = webhook_url.rstrip("/")
        self._webhook_token = webhook_token
        self._clock = clock
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Register / unregister
    # ------------------------------------------------------------------

    async def register(self, user_id: str, calendar_id: str = PRIMARY_CALENDAR) -> bool:
        """Open a push channel on *calendar_id* for *user_id*.

        Returns:
            ``True`` if the channel was opened and recorded.
        """
        logger.info("Registering webhook for user %s, calendar: %s", user_id, calendar_id)

        client = await self._auth.get_authenticated_client(user_id)
        if client is None:
            logger.error("No authenticated client for user %s", user_id)
            return False

        now = self._clock()
        channel_id = f"calendar_{user_id}_{int(now.timestamp() * 1000)}"
        expiration = now + CHANNEL_LIFETIME

        try:
            response = await asyncio.to_thread(
                client.watch_events,
                calendar_id,
                channel_id=channel_id,
                address=f"{self._webhook_url}/{user_id}",
                token=self._webhook_token,
                expiration=expiration,
                ttl_seconds=int(CHANNEL_LIFETIME.total_seconds()),
            )
        except CalendarAuthError as exc:
            logger.error(
                "Authentication failed for user %s, tokens may be expired: %s", user_id, exc
            )
            await self._connections.update_status(user_id, ConnectionStatus.AUTH_ERROR)
            return False
        except CalendarPermissionError as exc:
            logger.error("Insufficient permissions for user %s: %s", user_id, exc)
            await self._connections.update_status(user_id, ConnectionStatus.PERMISSION_ERROR)
            return False
        except CalendarAPIError as exc:
            logger.error("Failed to register webhook for user %s: %s", user_id, exc)
            return False

        opened_id = response.get("id")
        resource_id = response.get("resourceId")
        if not opened_id or not resource_id:
            logger.error("Invalid webhook response for user %s: %r", user_id, response)
            return False

        stored = await self._connections.register_channel(
            user_id,
            channel_id=opened_id,
            resource_id=resource_id,
            calendar_id=calendar_id,
            expiration=expiration,
        )
        if not stored:
            logger.error("Failed to store webhook info for user %s", user_id)
            await self._stop(client, opened_id, resource_id)
            return False

        logger.info("Webhook registered for user %s: %s", user_id, opened_id)
        return True

    async def unregister(self, user_id: str) -> bool:
        """Stop *user_id*'s channel and clear the local record.

        Returns:
            ``True`` unless the local record could not be cleared.  A
            failed upstream stop is logged, not reported.
        """
        logger.info("Unregistering webhook for user %s", user_id)

        connection = await self._connections.get(user_id)
        if connection is None or not connection.has_channel:
            logger.info("No webhook found for user %s", user_id)
            return True

        stopped = False
        client = await self._auth.get_authenticated_client(user_id)
        if client is None:
            logger.warning("No credentials for user %s to stop channel upstream", user_id)
        else:
            stopped = await self._stop(client, connection.channel_id, connection.resource_id)

        cleared = await self._connections.clear_channel(user_id)

        if stopped:
            logger.info("Webhook unregistered for user %s", user_id)
        else:
            logger.warning(
                "Channel %s for user %s may still be active upstream until it expires",
                connection.channel_id,
                user_id,
            )
        return cleared

    # ------------------------------------------------------------------
    # Renewal
    # ------------------------------------------------------------------

    async def refresh_expired(self) -> int:
        """Re-register every expired channel.

        Returns:
            The number of channels successfully renewed.
        """
        logger.info("Checking for expired webhooks")
        expired = await self._connections.expired_channels(self._clock())

        if not expired:
            logger.info("No expired webhooks found")
            return 0

        logger.info("Found %d expired webhook(s), refreshing", len(expired))
        renewed = 0

        for index, connection in enumerate(expired):
            user_id = connection.user_id
            await self.unregister(user_id)
            if await self.register(user_id, connection.calendar_id or PRIMARY_CALENDAR):
                renewed += 1
                logger.info("Refreshed webhook for user %s", user_id)
            else:
                logger.error("Failed to refresh webhook for user %s", user_id)
                await self._connections.update_status(user_id, ConnectionStatus.WEBHOOK_ERROR)

            if index < len(expired) - 1:
                await self._sleep(PAUSE_BETWEEN_USERS)

        return renewed

    async def run_refresh_schedule(
        self,
        interval: timedelta = REFRESH_INTERVAL,
        initial_delay: float = STARTUP_DELAY,
    ) -> None:
        """Renew expired channels shortly after start, then every *interval*.

        Runs until cancelled.
        """
        logger.info("Webhook refresh schedule every %s", interval)
        await self._sleep(initial_delay)
        while True:
            try:
                await self.refresh_expired()
            except Exception:
                logger.exception("Scheduled webhook refresh failed")
            await self._sleep(interval.total_seconds())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _stop(
        self,
        client: GoogleCalendarClient,
        channel_id: str | None,
        resource_id: str | None,
    ) -> bool:
        if not channel_id or not resource_id:
            return False
        logger.info("Stopping Google webhook channel: %s", channel_id)
        try:
            await asyncio.to_thread(client.stop_channel, channel_id, resource_id)
        except CalendarNotFoundError:
            logger.info("Channel %s already gone upstream", channel_id)
            return True
        except CalendarAPIError as exc:
            logger.error("Failed to stop Google webhook channel %s: %s", channel_id, exc)
            return False
        return True
