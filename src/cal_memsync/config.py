"""Configuration loading for cal-memsync.

Reads settings from environment variables (with .env support via python-dotenv)
and validates that all required values are present.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        memory_vault_url: Base URL of the memory vault REST API.
        webhook_url: Public base URL Google delivers push notifications to.
            The user id is appended as the last path segment.
        webhook_token: Shared secret sent as the channel token.
        token_dir: Directory holding per-user OAuth token files.
        state_file: JSON file backing sync cursors and connection records.
        client_secrets_path: OAuth client secrets used by ``authorize``.
        log_level: Logging level (default ``"INFO"``).
        host: Bind address for the HTTP server.
        port: Bind port for the HTTP server.
        channel_refresh_enabled: Whether the server runs the periodic
            channel re-registration loop.
    """

    memory_vault_url: str
    webhook_url: str
    webhook_token: str
    token_dir: str = "tokens"
    state_file: str = "sync_state.json"
    client_secrets_path: str = "credentials.json"
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 3000
    channel_refresh_enabled: bool = True

    def __repr__(self) -> str:
        return (
            f"Settings(memory_vault_url={self.memory_vault_url!r}, "
            f"webhook_url={self.webhook_url!r}, "
            f"webhook_token='***', "
            f"token_dir={self.token_dir!r}, "
            f"state_file={self.state_file!r}, "
            f"log_level={self.log_level!r}, "
            f"host={self.host!r}, port={self.port!r})"
        )


def load_settings() -> Settings:
    """Load and validate settings from environment variables.

    Calls :func:`dotenv.load_dotenv` so a ``.env`` file in the working
    directory is picked up automatically.

    Returns:
        A validated :class:`Settings` instance.

    Raises:
        ConfigError: If any required environment variable is missing,
            empty, or whitespace-only (the message names **all** of them),
            or if an optional value cannot be parsed.
    """
    load_dotenv()

    required = {
        "MEMORY_VAULT_URL": "memory_vault_url",
        "WEBHOOK_URL": "webhook_url",
        "WEBHOOK_TOKEN": "webhook_token",
    }

    values: dict[str, object] = {}
    missing: list[str] = []

    for env_var, field_name in required.items():
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            missing.append(env_var)
        else:
            values[field_name] = raw.strip()

    if missing:
        names = ", ".join(missing)
        raise ConfigError(f"Missing required environment variables: {names}")

    optional = {
        "TOKEN_DIR": "token_dir",
        "STATE_FILE": "state_file",
        "GOOGLE_CLIENT_SECRETS": "client_secrets_path",
        "LOG_LEVEL": "log_level",
        "HOST": "host",
    }
    for env_var, field_name in optional.items():
        raw = os.environ.get(env_var, "").strip()
        if raw:
            values[field_name] = raw

    port = os.environ.get("PORT", "").strip()
    if port:
        try:
            values["port"] = int(port)
        except ValueError:
            raise ConfigError(f"PORT must be an integer, got {port!r}") from None

    refresh = os.environ.get("CHANNEL_REFRESH_ENABLED", "").strip().lower()
    if refresh:
        if refresh in _TRUE_VALUES:
            values["channel_refresh_enabled"] = True
        elif refresh in _FALSE_VALUES:
            values["channel_refresh_enabled"] = False
        else:
            raise ConfigError(
                f"CHANNEL_REFRESH_ENABLED must be a boolean, got {refresh!r}"
            )

    return Settings(**values)  # type: ignore[arg-type]
