"""Entry point for ``python -m cal_memsync``.

Uses stdlib :mod:`argparse` for argument parsing.

Subcommands:
    serve             -- Run the webhook HTTP server (uvicorn).
    full-sync         -- Reconcile every calendar of one user now.
    refresh-channels  -- Re-register all expired push channels once.
    register          -- Open a push channel for one user.
    unregister        -- Stop one user's push channel.
    authorize         -- Run the browser OAuth flow and save a user's token.

Exit codes:
    0 -- Command completed successfully.
    1 -- An error occurred (config error, failed sync, failed auth).
    2 -- Argument parsing error (handled by argparse).
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Awaitable, Callable

from cal_memsync.calendar.auth import authorize_user
from cal_memsync.calendar.client import PRIMARY_CALENDAR
from cal_memsync.calendar.exceptions import CalendarAuthError
from cal_memsync.config import ConfigError, Settings, load_settings
from cal_memsync.exceptions import StoreError
from cal_memsync.log import setup_logging
from cal_memsync.service import SyncService, build_service


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="cal-memsync",
        description="Sync Google Calendar events into a memory vault.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def _add(name: str, help_text: str) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "-v",
            "--verbose",
            action="store_true",
            default=False,
            help="Enable debug-level logging.",
        )
        return sub

    serve = _add("serve", "Run the webhook HTTP server.")
    serve.add_argument("--host", default=None, help="Bind address (defaults to HOST).")
    serve.add_argument("--port", type=int, default=None, help="Bind port (defaults to PORT).")

    full_sync = _add("full-sync", "Reconcile every calendar of one user.")
    full_sync.add_argument("user_id", help="User to reconcile.")

    _add("refresh-channels", "Re-register all expired push channels once.")

    register = _add("register", "Open a push channel for one user.")
    register.add_argument("user_id", help="User to register.")
    register.add_argument(
        "--calendar",
        default=PRIMARY_CALENDAR,
        help="Calendar to watch (default: primary).",
    )

    unregister = _add("unregister", "Stop one user's push channel.")
    unregister.add_argument("user_id", help="User to unregister.")

    authorize = _add("authorize", "Run the browser OAuth flow for one user.")
    authorize.add_argument("user_id", help="User the token is stored under.")

    return parser


def _run_with_service(
    settings: Settings,
    action: Callable[[SyncService], Awaitable[bool]],
) -> int:
    """Build the service, run *action*, always close the service."""

    async def _main() -> bool:
        service = build_service(settings)
        try:
            return await action(service)
        finally:
            await service.aclose()

    try:
        ok = asyncio.run(_main())
    except StoreError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0 if ok else 1


def _handle_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    from cal_memsync.api.app import create_app

    try:
        service = build_service(settings)
    except StoreError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    app = create_app(service, refresh_channels=settings.channel_refresh_enabled)
    uvicorn.run(
        app,
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_config=None,
    )
    return 0


def _handle_full_sync(args: argparse.Namespace, settings: Settings) -> int:
    async def _action(service: SyncService) -> bool:
        result = await service.full_sync.run_full_sync(args.user_id)
        print(
            f"Full sync for {args.user_id}: "
            f"{'ok' if result.success else 'failed'}, "
            f"{result.applied} event(s) applied, "
            f"{len(result.failed_calendars)} calendar failure(s)"
        )
        return result.success

    return _run_with_service(settings, _action)


def _handle_refresh(args: argparse.Namespace, settings: Settings) -> int:  # noqa: ARG001
    async def _action(service: SyncService) -> bool:
        renewed = await service.channels.refresh_expired()
        print(f"Renewed {renewed} channel(s)")
        return True

    return _run_with_service(settings, _action)


def _handle_register(args: argparse.Namespace, settings: Settings) -> int:
    async def _action(service: SyncService) -> bool:
        return await service.channels.register(args.user_id, args.calendar)

    return _run_with_service(settings, _action)


def _handle_unregister(args: argparse.Namespace, settings: Settings) -> int:
    async def _action(service: SyncService) -> bool:
        return await service.channels.unregister(args.user_id)

    return _run_with_service(settings, _action)


def _handle_authorize(args: argparse.Namespace, settings: Settings) -> int:
    try:
        path = authorize_user(args.user_id, settings.client_secrets_path, settings.token_dir)
    except CalendarAuthError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"Token saved to {path}")
    return 0


_HANDLERS: dict[str, Callable[[argparse.Namespace, Settings], int]] = {
    "serve": _handle_serve,
    "full-sync": _handle_full_sync,
    "refresh-channels": _handle_refresh,
    "register": _handle_register,
    "unregister": _handle_unregister,
    "authorize": _handle_authorize,
}


def main(argv: list[str] | None = None) -> int:
    """Run the cal-memsync CLI.

    Args:
        argv: Command-line arguments.  Defaults to ``sys.argv[1:]``.

    Returns:
        Exit code: ``0`` on success, ``1`` on error.
    """
    parser = build_parser()
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    try:
        settings = load_settings()
    except ConfigError as exc:
        setup_logging("INFO")
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    setup_logging("DEBUG" if args.verbose else settings.log_level)

    return _HANDLERS[args.command](args, settings)


if __name__ == "__main__":
    raise SystemExit(main())
