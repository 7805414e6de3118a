"""HTTP surface for cal-memsync."""

from __future__ import annotations

from cal_memsync.api.app import create_app

__all__ = ["create_app"]
