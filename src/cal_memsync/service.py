"""Wiring of the sync engine from :class:`~cal_memsync.config.Settings`.

:func:`build_service` assembles the stores, auth provider, vault client and
sync components into a :class:`SyncService`.  Both the HTTP app and the
CLI go through it, so they share one in-flight registry per process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cal_memsync.calendar.auth import AuthProvider, TokenFileAuthProvider
from cal_memsync.config import Settings
from cal_memsync.sync.dispatcher import DeduplicatingDispatcher
from cal_memsync.sync.fetcher import ChangeFetcher
from cal_memsync.sync.full_sync import FullSyncRunner
from cal_memsync.sync.orchestrator import SyncOrchestrator
from cal_memsync.sync.store import (
    ConnectionStore,
    JsonFileStateBackend,
    StateBackend,
    SyncTokenStore,
)
from cal_memsync.vault.client import MemorySink, MemoryVaultClient
from cal_memsync.webhooks.channels import ChannelManager
from cal_memsync.webhooks.handler import WebhookProcessor

logger = logging.getLogger(__name__)


@dataclass
class SyncService:
    """Every long-lived component of a running process."""

    tokens: SyncTokenStore
    connections: ConnectionStore
    sink: MemorySink
    dispatcher: DeduplicatingDispatcher
    orchestrator: SyncOrchestrator
    full_sync: FullSyncRunner
    channels: ChannelManager
    webhooks: WebhookProcessor

    async def aclose(self) -> None:
        """Wait for background syncs, then release the vault client."""
        await self.dispatcher.drain()
        aclose = getattr(self.sink, "aclose", None)
        if aclose is not None:
            await aclose()


def build_service(
    settings: Settings,
    *,
    backend: StateBackend | None = None,
    auth: AuthProvider | None = None,
    sink: MemorySink | None = None,
) -> SyncService:
    """Assemble a :class:`SyncService`.

    Args:
        settings: Loaded application settings.
        backend: State backend; defaults to the JSON file named by
            ``settings.state_file``.
        auth: Auth provider; defaults to token files in
            ``settings.token_dir``.
        sink: Memory sink; defaults to a vault client for
            ``settings.memory_vault_url``.
    """
    backend = backend or JsonFileStateBackend(settings.state_file)
    tokens = SyncTokenStore(backend)
    connections = ConnectionStore(backend)
    auth = auth or TokenFileAuthProvider(settings.token_dir, connections)
    sink = sink or MemoryVaultClient(settings.memory_vault_url)

    dispatcher = DeduplicatingDispatcher()
    fetcher = ChangeFetcher(auth, tokens)
    full_sync = FullSyncRunner(auth, tokens, connections, sink)
    orchestrator = SyncOrchestrator(fetcher, sink, connections, full_sync)
    channels = ChannelManager(
        auth,
        connections,
        webhook_url=settings.webhook_url,
        webhook_token=settings.webhook_token,
    )
    webhooks = WebhookProcessor(orchestrator, dispatcher, expected_token=settings.webhook_token)

    logger.debug("Sync service built: %r", settings)
    return SyncService(
        tokens=tokens,
        connections=connections,
        sink=sink,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        full_sync=full_sync,
        channels=channels,
        webhooks=webhooks,
    )
