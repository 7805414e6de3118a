"""Tests for per-user Google Calendar OAuth 2.0 credentials.

Covers :class:`TokenFileAuthProvider` (cached token, refresh, failures)
and :func:`authorize_user` (browser flow seeding a token file).

Test matrix:

| Test | Scenario | Expected |
|---|---|---|
| test_valid_cached_token | token file valid | client built, no refresh |
| test_expired_token_refreshed | expired + refresh token | refreshed, saved, client built |
| test_refresh_failure_marks_error | refresh raises | None, status error |
| test_no_token_file | file missing | None |
| test_no_refresh_token | expired, no refresh token | None |
| test_unsafe_user_id | path traversal | None |
| test_authorize_writes_token | browser flow | token file written |
| test_authorize_missing_secrets | no client secrets | CalendarAuthError |
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from cal_memsync.calendar.auth import SCOPES, TokenFileAuthProvider, authorize_user
from cal_memsync.calendar.exceptions import CalendarAuthError
from cal_memsync.models.sync import ConnectionStatus
from cal_memsync.sync.store import ConnectionStore


class TestTokenPath:
    """Token files live at ``<token_dir>/<user_id>.json``."""

    def test_token_path(self, tmp_path: Path) -> None:
        provider = TokenFileAuthProvider(tmp_path)

        assert provider.token_path("alice@example.com") == tmp_path / "alice@example.com.json"

    @pytest.mark.parametrize("user_id", ["../etc/passwd", "a/b", ""])
    def test_unsafe_user_id_rejected(self, tmp_path: Path, user_id: str) -> None:
        with pytest.raises(CalendarAuthError):
            TokenFileAuthProvider(tmp_path).token_path(user_id)


class TestGetAuthenticatedClient:
    """Resolving a user id to a Calendar client."""

    async def test_valid_cached_token(
        self, tmp_path: Path, mock_credentials: MagicMock
    ) -> None:
        provider = TokenFileAuthProvider(tmp_path)
        with (
            patch(
                "cal_memsync.calendar.auth._load_cached_token", return_value=mock_credentials
            ) as mock_load,
            patch("cal_memsync.calendar.auth.GoogleCalendarClient") as mock_client_cls,
        ):
            client = await provider.get_authenticated_client("alice")

        mock_load.assert_called_once_with(tmp_path / "alice.json")
        mock_credentials.refresh.assert_not_called()
        assert client is mock_client_cls.return_value
        assert mock_client_cls.call_args.args[0] is mock_credentials

    async def test_expired_token_refreshed(
        self, tmp_path: Path, mock_expired_credentials: MagicMock
    ) -> None:
        provider = TokenFileAuthProvider(tmp_path)
        with (
            patch(
                "cal_memsync.calendar.auth._load_cached_token",
                return_value=mock_expired_credentials,
            ),
            patch("cal_memsync.calendar.auth.GoogleCalendarClient") as mock_client_cls,
        ):
            client = await provider.get_authenticated_client("alice")

        mock_expired_credentials.refresh.assert_called_once()
        assert (tmp_path / "alice.json").read_text() == '{"token": "refreshed"}'
        assert client is mock_client_cls.return_value

    async def test_refresh_failure_marks_error(
        self,
        tmp_path: Path,
        mock_expired_credentials: MagicMock,
        connections: ConnectionStore,
    ) -> None:
        mock_expired_credentials.refresh.side_effect = RuntimeError("invalid_grant")
        provider = TokenFileAuthProvider(tmp_path, connections)
        with (
            patch(
                "cal_memsync.calendar.auth._load_cached_token",
                return_value=mock_expired_credentials,
            ),
            patch("cal_memsync.calendar.auth.GoogleCalendarClient") as mock_client_cls,
        ):
            client = await provider.get_authenticated_client("alice")

        assert client is None
        mock_client_cls.assert_not_called()
        connection = await connections.get("alice")
        assert connection is not None
        assert connection.sync_status is ConnectionStatus.ERROR

    async def test_no_token_file(self, tmp_path: Path) -> None:
        provider = TokenFileAuthProvider(tmp_path)

        assert await provider.get_authenticated_client("nobody") is None

    async def test_corrupt_token_file(self, tmp_path: Path) -> None:
        (tmp_path / "alice.json").write_text("not json")
        provider = TokenFileAuthProvider(tmp_path)

        assert await provider.get_authenticated_client("alice") is None

    async def test_no_refresh_token(
        self, tmp_path: Path, mock_expired_credentials: MagicMock
    ) -> None:
        mock_expired_credentials.refresh_token = None
        provider = TokenFileAuthProvider(tmp_path)
        with patch(
            "cal_memsync.calendar.auth._load_cached_token",
            return_value=mock_expired_credentials,
        ):
            assert await provider.get_authenticated_client("alice") is None

    async def test_unsafe_user_id(self, tmp_path: Path) -> None:
        provider = TokenFileAuthProvider(tmp_path)

        assert await provider.get_authenticated_client("../../root") is None


class TestAuthorizeUser:
    """Seeding a token file through the browser flow."""

    def test_authorize_writes_token(self, tmp_path: Path, mock_credentials: MagicMock) -> None:
        secrets = tmp_path / "credentials.json"
        secrets.write_text('{"installed": {"client_id": "fake", "client_secret": "fake"}}')
        token_dir = tmp_path / "tokens"

        with patch("cal_memsync.calendar.auth.InstalledAppFlow") as mock_flow_cls:
            mock_flow_cls.from_client_secrets_file.return_value.run_local_server.return_value = (
                mock_credentials
            )
            path = authorize_user("alice", secrets, token_dir)

        assert path == token_dir / "alice.json"
        assert path.read_text() == '{"token": "fake"}'
        mock_flow_cls.from_client_secrets_file.assert_called_once_with(str(secrets), scopes=SCOPES)

    def test_authorize_missing_secrets(self, tmp_path: Path) -> None:
        with pytest.raises(CalendarAuthError, match="not found"):
            authorize_user("alice", tmp_path / "missing.json", tmp_path)

    def test_calendar_scope(self) -> None:
        assert SCOPES == ["https://www.googleapis.com/auth/calendar"]
