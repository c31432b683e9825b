"""Environment settings powered by Pydantic BaseSettings."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from geofetch.fetch.config import (
    DEFAULT_SECURITY_CONFIG,
    RuntimeMode,
    SecurityConfig,
    build_security_config,
)
from geofetch.fetch.constants import (
    DEFAULT_MAX_RESPONSE_SIZE_BYTES,
    DEFAULT_TIMEOUT_SECONDS,
)


class GeofetchSettings(BaseSettings):
    """Centralized environment configuration (``GEOFETCH_*`` variables)."""

    model_config = SettingsConfigDict(
        env_prefix="GEOFETCH_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    runtime_mode: RuntimeMode = RuntimeMode.PRODUCTION
    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0.0, le=300.0)
    max_response_size_bytes: int = Field(
        default=DEFAULT_MAX_RESPONSE_SIZE_BYTES, gt=0
    )
    strict_https_only: bool = True
    allow_http_localhost: bool = False
    user_agent: str | None = None
    cache_max_entries: int | None = Field(default=None, gt=0)
    cache_ttl_seconds: float | None = Field(default=None, gt=0.0)
    sri_registry_path: Path | None = None
    strict_sri: bool = False
    log_level: str = "INFO"
    json_logs: bool = True

    def security_config(self) -> SecurityConfig:
        """Build the starting security configuration from the environment."""
        overrides: dict[str, object] = {
            "timeout_seconds": self.timeout_seconds,
            "max_response_size_bytes": self.max_response_size_bytes,
            "strict_https_only": self.strict_https_only,
            "allow_http_localhost": self.allow_http_localhost,
        }
        if not self.strict_https_only:
            overrides["allowed_protocols"] = ("https", "http")
        if self.user_agent:
            overrides["user_agent"] = self.user_agent
        return build_security_config(DEFAULT_SECURITY_CONFIG, **overrides)


def get_settings() -> GeofetchSettings:
    """Get a settings instance."""
    return GeofetchSettings()
