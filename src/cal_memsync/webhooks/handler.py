"""Accept push notifications and hand them to the sync engine.

:class:`WebhookProcessor` is what the HTTP layer calls for every inbound
ping.  It never blocks on the sync and never raises: the caller answers
Google with ``200 OK`` whatever happens here.

A ping is dropped (logged) when:

- it is the ``sync`` handshake Google sends right after registration;
- a webhook token is configured and the ping carries a different one;
- a run for the same ``(user_id, channel_id)`` is already in flight.

Otherwise a background task owned by the
:class:`~cal_memsync.sync.dispatcher.DeduplicatingDispatcher` runs the
:class:`~cal_memsync.sync.orchestrator.SyncOrchestrator`.
"""

from __future__ import annotations

import asyncio
import hmac
import logging

from cal_memsync.models.sync import ProcessingKey, SyncRunResult
from cal_memsync.models.webhook import WebhookNotification
from cal_memsync.sync.dispatcher import DeduplicatingDispatcher
from cal_memsync.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


class WebhookProcessor:
    """Filters pings and schedules one sync run per channel at a time.

    Args:
        orchestrator: Runs the incremental sync.
        dispatcher: Owns background tasks and the in-flight registry.
        expected_token: Channel token set at registration; ``None``
            disables the check.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        dispatcher: DeduplicatingDispatcher,
        expected_token: str | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._dispatcher = dispatcher
        self._expected_token = expected_token

    def accept(self, notification: WebhookNotification) -> asyncio.Task[bool] | None:
        """Schedule a sync for *notification* and return immediately.

        Returns:
            The background task, or ``None`` if the ping was dropped.
        """
        user_id = notification.user_id
        logger.info(
            "Calendar webhook received for user %s (channel %s, state %s)",
            user_id,
            notification.channel_id or "?",
            notification.resource_state or "?",
        )

        if notification.is_handshake:
            logger.info("Channel %s handshake acknowledged", notification.channel_id)
            return None

        if not self.token_matches(notification.channel_token):
            logger.warning("Dropping webhook for user %s: channel token mismatch", user_id)
            return None

        key = ProcessingKey(user_id=user_id, channel_id=notification.channel_id)

        async def _work() -> SyncRunResult:
            return await self._orchestrator.run(notification)

        return self._dispatcher.submit(key, _work)

    def token_matches(self, token: str | None) -> bool:
        """Whether *token* equals the configured channel token.

        Always ``True`` when no token is configured.
        """
        if self._expected_token is None:
            return True
        if token is None:
            return False
        return hmac.compare_digest(token.encode(), self._expected_token.encode())
