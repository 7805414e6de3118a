"""HTTP surface for cal-memsync (FastAPI).

Routes:

- ``GET /health`` -- liveness.
- ``POST /webhook/calendar/{user_id}`` -- Google push notifications.
  Answers ``200 OK`` immediately and syncs in the background.
- ``POST /webhook/register`` -- open a push channel for a user.
- ``POST /webhook/unregister`` -- stop a user's push channel.
- ``POST /webhook/full-sync/{user_id}`` -- run a full sync now.

The lifespan handler starts the channel refresh loop (when enabled) and,
on shutdown, cancels it and waits for in-flight syncs.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field, ValidationError

from cal_memsync import __version__
from cal_memsync.calendar.client import PRIMARY_CALENDAR
from cal_memsync.models.webhook import WebhookNotification
from cal_memsync.service import SyncService

logger = logging.getLogger(__name__)


class ChannelRequest(BaseModel):
    """Body of the register/unregister endpoints."""

    user_id: str = Field(min_length=1)
    calendar_id: str = PRIMARY_CALENDAR


def create_app(service: SyncService, *, refresh_channels: bool = True) -> FastAPI:
    """Build the FastAPI application around *service*.

    Args:
        service: The wired sync components.
        refresh_channels: Start the periodic channel renewal loop.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        refresh_task: asyncio.Task[None] | None = None
        if refresh_channels:
            refresh_task = asyncio.create_task(
                service.channels.run_refresh_schedule(), name="channel-refresh"
            )
        try:
            yield
        finally:
            if refresh_task is not None:
                refresh_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await refresh_task
            await service.aclose()

    app = FastAPI(title="cal-memsync", version=__version__, lifespan=lifespan)
    app.state.service = service

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {
            "status": "healthy",
            "server": "cal-memsync",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.post("/webhook/calendar/{user_id}")
    async def calendar_webhook(user_id: str, request: Request) -> PlainTextResponse:
        if not user_id.strip():
            logger.error("No userId provided in webhook")
            return PlainTextResponse("Bad Request: userId required", status_code=400)

        try:
            notification = WebhookNotification.from_headers(user_id, request.headers)
            service.webhooks.accept(notification)
        except ValidationError as exc:
            logger.error("Malformed webhook for user %s: %s", user_id, exc)
        except Exception:
            logger.exception("Webhook processing error for user %s", user_id)
        return PlainTextResponse("OK", status_code=200)

    @app.post("/webhook/register")
    async def register_channel(body: ChannelRequest) -> JSONResponse:
        if await service.channels.register(body.user_id, body.calendar_id):
            return JSONResponse(
                {
                    "status": "success",
                    "message": "Webhook registered successfully",
                    "user_id": body.user_id,
                }
            )
        return JSONResponse(
            {"error": "Failed to register webhook", "user_id": body.user_id},
            status_code=500,
        )

    @app.post("/webhook/unregister")
    async def unregister_channel(body: ChannelRequest) -> JSONResponse:
        if not await service.channels.unregister(body.user_id):
            raise HTTPException(status_code=500, detail="Failed to unregister webhook")
        return JSONResponse(
            {
                "status": "success",
                "message": "Webhook unregistered successfully",
                "user_id": body.user_id,
            }
        )

    @app.post("/webhook/full-sync/{user_id}")
    async def full_sync(user_id: str) -> JSONResponse:
        result = await service.full_sync.run_full_sync(user_id)
        if result.success:
            return JSONResponse(
                {
                    "status": "success",
                    "message": "Full sync completed successfully",
                    "user_id": user_id,
                    "applied": result.applied,
                    "failed_calendars": result.failed_calendars,
                }
            )
        return JSONResponse({"error": "Full sync failed", "user_id": user_id}, status_code=500)

    return app
