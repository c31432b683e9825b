"""Tests for environment settings and logging configuration."""

import logging

import pytest

from geofetch.fetch.config import RuntimeMode
from geofetch.observability.logging import parse_log_level
from geofetch.settings.app import GeofetchSettings, get_settings


class TestGeofetchSettings:
    """Tests for GEOFETCH_* environment settings."""

    def test_defaults_are_secure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that the defaults enforce production HTTPS."""
        monkeypatch.delenv("GEOFETCH_RUNTIME_MODE", raising=False)

        settings = GeofetchSettings(_env_file=None)

        assert settings.runtime_mode == RuntimeMode.PRODUCTION
        config = settings.security_config()
        assert config.strict_https_only is True
        assert config.allowed_protocols == ("https",)
        assert config.allow_http_localhost is False

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that GEOFETCH_ variables are applied."""
        monkeypatch.setenv("GEOFETCH_RUNTIME_MODE", "development")
        monkeypatch.setenv("GEOFETCH_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("GEOFETCH_CACHE_MAX_ENTRIES", "16")
        monkeypatch.setenv("GEOFETCH_STRICT_SRI", "true")

        settings = get_settings()

        assert settings.runtime_mode == RuntimeMode.DEVELOPMENT
        assert settings.timeout_seconds == 2.5
        assert settings.cache_max_entries == 16
        assert settings.strict_sri is True

    def test_http_localhost_config(self) -> None:
        """Test that relaxing HTTPS also allows the http protocol."""
        settings = GeofetchSettings(
            _env_file=None,
            strict_https_only=False,
            allow_http_localhost=True,
            user_agent="atlas/2.0",
        )

        config = settings.security_config()

        assert config.allowed_protocols == ("https", "http")
        assert config.allow_http_localhost is True
        assert config.user_agent == "atlas/2.0"

    def test_limits_carried_into_security_config(self) -> None:
        """Test that size and timeout settings reach the security config."""
        settings = GeofetchSettings(
            _env_file=None, timeout_seconds=4.0, max_response_size_bytes=2048
        )

        config = settings.security_config()

        assert config.timeout_seconds == 4.0
        assert config.max_response_size_bytes == 2048


class TestParseLogLevel:
    """Tests for log level names."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [("debug", logging.DEBUG), ("INFO", logging.INFO), (" Error ", logging.ERROR)],
    )
    def test_names(self, name: str, expected: int) -> None:
        """Test case-insensitive level names."""
        assert parse_log_level(name) == expected

    def test_numeric_passthrough(self) -> None:
        """Test that numeric levels are returned unchanged."""
        assert parse_log_level(15) == 15

    def test_unknown_level(self) -> None:
        """Test that an unknown name is rejected."""
        with pytest.raises(ValueError, match="Unknown log level"):
            parse_log_level("chatty")
