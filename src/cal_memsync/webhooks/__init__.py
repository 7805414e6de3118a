"""Push notification intake and channel lifecycle."""

from __future__ import annotations

from cal_memsync.webhooks.channels import ChannelManager
from cal_memsync.webhooks.handler import WebhookProcessor

__all__ = [
    "ChannelManager",
    "WebhookProcessor",
]
