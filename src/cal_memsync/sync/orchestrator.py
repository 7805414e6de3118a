"""Incremental sync run for one webhook trigger.

Provides :class:`SyncOrchestrator`, which drives a run through
``FETCHING -> APPLYING -> FINALIZING -> DONE`` or, on any unrecovered
exception, to ``FAILED``:

- **FETCHING** -- :class:`~cal_memsync.sync.fetcher.ChangeFetcher`
  returns the classified changes.  No changes ends the run as a no-op
  success and writes nothing.
- **APPLYING** -- each change is applied to the sink in fetch order;
  failures are counted, not raised.
- **FINALIZING** -- the connection becomes ``active`` when every change
  was applied and ``partial_sync`` otherwise.
- **FAILED** -- the connection becomes ``error`` and a full sync is
  scheduled.  The exception is not re-raised.
"""

from __future__ import annotations

import logging

from cal_memsync.models.sync import ConnectionStatus, SyncRunResult, SyncState
from cal_memsync.models.webhook import WebhookNotification
from cal_memsync.sync.apply import apply_changes
from cal_memsync.sync.fetcher import ChangeFetcher, calendar_id_from_resource_uri
from cal_memsync.sync.full_sync import FullSyncRunner
from cal_memsync.sync.store import ConnectionStore
from cal_memsync.vault.client import MemorySink

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Turns a webhook trigger into sink operations and a status write.

    Args:
        fetcher: Retrieves classified changes.
        sink: Downstream memory store.
        connections: Connection status storage.
        full_sync: Provides the scheduled-full-sync fallback.
    """

    def __init__(
        self,
        fetcher: ChangeFetcher,
        sink: MemorySink,
        connections: ConnectionStore,
        full_sync: FullSyncRunner,
    ) -> None:
        self._fetcher = fetcher
        self._sink = sink
        self._connections = connections
        self._full_sync = full_sync

    async def run(self, trigger: WebhookNotification) -> SyncRunResult:
        """Process *trigger* end to end.  Never raises."""
        user_id = trigger.user_id
        calendar_id = calendar_id_from_resource_uri(trigger.resource_uri)
        result = SyncRunResult(user_id=user_id, calendar_id=calendar_id)

        logger.info(
            "Processing webhook for user %s, channel: %s, calendar: %s",
            user_id,
            trigger.channel_id,
            calendar_id,
        )

        try:
            changes = await self._fetcher.fetch_changes(user_id, calendar_id)
            result.total = len(changes)

            if changes:
                logger.info("Found %d calendar change(s) for user %s", len(changes), user_id)
                result.state = SyncState.APPLYING
                result.applied = await apply_changes(changes, user_id, self._sink, calendar_id)

        except Exception as exc:
            result.state = SyncState.FAILED
            result.error = str(exc)
            result.status = ConnectionStatus.ERROR
            logger.error("Webhook processing failed for user %s: %s", user_id, exc)
            await self._connections.update_status(user_id, ConnectionStatus.ERROR)
            await self._full_sync.schedule_full_sync(user_id)
            return result

        result.state = SyncState.FINALIZING
        if result.total == 0:
            logger.info("No changes found for user %s", user_id)
        else:
            status = (
                ConnectionStatus.ACTIVE
                if result.applied == result.total
                else ConnectionStatus.PARTIAL_SYNC
            )
            await self._connections.update_status(user_id, status)
            result.status = status
            logger.info(
                "Synced %d/%d calendar change(s) to memory vault for user %s",
                result.applied,
                result.total,
                user_id,
            )

        result.state = SyncState.DONE
        return result
