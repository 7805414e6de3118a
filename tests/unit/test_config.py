"""Tests for cal-memsync configuration loading."""

from __future__ import annotations

import pytest

from cal_memsync.config import ConfigError, Settings, load_settings


class TestLoadSettingsHappyPath:
    """Tests for successful configuration loading."""

    def test_load_settings_with_required_vars_set(self, monkeypatch_env: dict[str, str]) -> None:
        """All required vars present returns correct Settings."""
        settings = load_settings()

        assert settings.memory_vault_url == "http://vault.test"
        assert settings.webhook_url == "https://hooks.example.com/webhook/calendar"
        assert settings.webhook_token == "test-webhook-token"

    def test_load_settings_defaults(self, monkeypatch_env: dict[str, str]) -> None:
        """Optional vars not set fall back to defaults."""
        settings = load_settings()

        assert settings.token_dir == "tokens"
        assert settings.state_file == "sync_state.json"
        assert settings.client_secrets_path == "credentials.json"
        assert settings.log_level == "INFO"
        assert settings.host == "127.0.0.1"
        assert settings.port == 3000
        assert settings.channel_refresh_enabled is True

    def test_load_settings_optional_overrides(
        self, monkeypatch_env: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Optional vars are honoured when set."""
        monkeypatch.setenv("TOKEN_DIR", "/var/lib/tokens")
        monkeypatch.setenv("STATE_FILE", "/var/lib/state.json")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("CHANNEL_REFRESH_ENABLED", "false")

        settings = load_settings()

        assert settings.token_dir == "/var/lib/tokens"
        assert settings.state_file == "/var/lib/state.json"
        assert settings.log_level == "DEBUG"
        assert settings.port == 8080
        assert settings.channel_refresh_enabled is False

    def test_values_are_stripped(
        self, monkeypatch_env: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Surrounding whitespace is removed from required values."""
        monkeypatch.setenv("MEMORY_VAULT_URL", "  http://vault.test  ")

        settings = load_settings()

        assert settings.memory_vault_url == "http://vault.test"


class TestLoadSettingsErrors:
    """Tests for missing or invalid configuration."""

    def test_missing_everything_names_all_vars(self, clean_env: None) -> None:
        """The error message lists every missing required variable."""
        with pytest.raises(ConfigError) as exc_info:
            load_settings()

        message = str(exc_info.value)
        assert "MEMORY_VAULT_URL" in message
        assert "WEBHOOK_URL" in message
        assert "WEBHOOK_TOKEN" in message

    def test_whitespace_only_counts_as_missing(
        self, monkeypatch_env: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A whitespace-only value is treated as missing."""
        monkeypatch.setenv("WEBHOOK_TOKEN", "   ")

        with pytest.raises(ConfigError, match="WEBHOOK_TOKEN"):
            load_settings()

    def test_non_integer_port(
        self, monkeypatch_env: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """PORT must parse as an integer."""
        monkeypatch.setenv("PORT", "eighty")

        with pytest.raises(ConfigError, match="PORT"):
            load_settings()

    def test_bad_boolean(
        self, monkeypatch_env: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """CHANNEL_REFRESH_ENABLED must be a recognisable boolean."""
        monkeypatch.setenv("CHANNEL_REFRESH_ENABLED", "sometimes")

        with pytest.raises(ConfigError, match="CHANNEL_REFRESH_ENABLED"):
            load_settings()


class TestSettingsRepr:
    """The webhook token must never show up in logs."""

    def test_repr_masks_token(self) -> None:
        settings = Settings(
            memory_vault_url="http://vault.test",
            webhook_url="https://hooks.example.com",
            webhook_token="super-secret",
        )

        assert "super-secret" not in repr(settings)
        assert "***" in repr(settings)

    def test_settings_are_frozen(self) -> None:
        settings = Settings(
            memory_vault_url="http://vault.test",
            webhook_url="https://hooks.example.com",
            webhook_token="t",
        )

        with pytest.raises(AttributeError):
            settings.port = 1  # type: ignore[misc]
