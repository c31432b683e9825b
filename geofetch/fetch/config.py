"""Security configuration for the geography fetch pipeline."""

import threading
from enum import Enum
from typing import Annotated, Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from geofetch.fetch.constants import (
    COMPONENT_FETCH,
    DEFAULT_ALLOWED_CONTENT_TYPES,
    DEFAULT_MAX_RESPONSE_SIZE_BYTES,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
)
from geofetch.fetch.errors import ConfigurationError


logger = structlog.get_logger()


class RuntimeMode(str, Enum):
    """Runtime environment the pipeline was started in.

    Supplied explicitly at startup; production forbids localhost targets
    and refuses development mode.
    """

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"

    @property
    def is_production(self) -> bool:
        """Check if this is the production mode."""
        return self is RuntimeMode.PRODUCTION


class SecurityConfig(BaseModel):
    """Immutable security policy applied to a single fetch.

    When ``strict_https_only`` is set, ``allowed_protocols`` is ignored and
    only HTTPS passes.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    timeout_seconds: Annotated[float, Field(gt=0.0, le=300.0)] = (
        DEFAULT_TIMEOUT_SECONDS
    )
    max_response_size_bytes: Annotated[int, Field(gt=0)] = (
        DEFAULT_MAX_RESPONSE_SIZE_BYTES
    )
    allowed_content_types: tuple[str, ...] = DEFAULT_ALLOWED_CONTENT_TYPES
    allowed_protocols: tuple[str, ...] = ("https",)
    allow_http_localhost: bool = False
    strict_https_only: bool = True
    user_agent: Annotated[str, Field(min_length=1, max_length=500)] = (
        DEFAULT_USER_AGENT
    )

    @field_validator("allowed_content_types")
    @classmethod
    def normalize_content_types(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Lowercase content types and drop blanks and duplicates."""
        normalized = tuple(
            dict.fromkeys(item.strip().lower() for item in v if item.strip())
        )
        if not normalized:
            msg = "At least one allowed content type is required"
            raise ValueError(msg)
        return normalized

    @field_validator("allowed_protocols")
    @classmethod
    def normalize_protocols(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Accept both ``https`` and ``https:`` spellings."""
        normalized = tuple(
            dict.fromkeys(
                item.strip().lower().rstrip(":") for item in v if item.strip()
            )
        )
        unsupported = set(normalized) - {"http", "https"}
        if unsupported:
            msg = f"Unsupported protocols: {', '.join(sorted(unsupported))}"
            raise ValueError(msg)
        return normalized

    @property
    def accept_header(self) -> str:
        """Build the Accept header from the content-type allowlist."""
        return ", ".join(self.allowed_content_types)


DEFAULT_SECURITY_CONFIG = SecurityConfig()

DEVELOPMENT_SECURITY_CONFIG = DEFAULT_SECURITY_CONFIG.model_copy(
    update={
        "allowed_protocols": ("https", "http"),
        "allow_http_localhost": True,
        "strict_https_only": False,
    }
)


def build_security_config(
    base: SecurityConfig = DEFAULT_SECURITY_CONFIG, **overrides: Any
) -> SecurityConfig:
    """Apply a partial override on top of a base configuration.

    Args:
        base: Configuration supplying values for fields not overridden.
        **overrides: Field values to replace.

    Returns:
        Fully validated configuration.

    Raises:
        ConfigurationError: If an override is unknown or invalid.
    """
    try:
        return SecurityConfig.model_validate({**base.model_dump(), **overrides})
    except ValidationError as e:
        msg = f"Invalid security configuration: {e.error_count()} error(s)"
        raise ConfigurationError(
            msg,
            cause=e,
            details={"fields": ",".join(str(err["loc"][0]) for err in e.errors())},
        ) from e


class SecurityConfigStore:
    """Holds the active security configuration as a swappable snapshot.

    Readers take one snapshot per fetch; writers replace the snapshot under
    a lock, so no fetch ever observes a half-updated policy.
    """

    def __init__(self, initial: SecurityConfig | None = None) -> None:
        """Initialize the store.

        Args:
            initial: Starting configuration (defaults to the secure preset).
        """
        self._lock = threading.Lock()
        self._config = initial or DEFAULT_SECURITY_CONFIG
        self._version = 0
        self._log = logger.bind(component=COMPONENT_FETCH, subsystem="config")

    def snapshot(self) -> SecurityConfig:
        """Get the current configuration snapshot."""
        return self._config

    @property
    def version(self) -> int:
        """Number of times the configuration has been replaced."""
        return self._version

    def replace(self, config: SecurityConfig) -> SecurityConfig:
        """Swap in a new configuration snapshot.

        Args:
            config: Configuration to activate.

        Returns:
            The activated configuration.
        """
        with self._lock:
            self._config = config
            self._version += 1
        self._log.info(
            "security_config_replaced",
            version=self._version,
            strict_https_only=config.strict_https_only,
            allowed_protocols=list(config.allowed_protocols),
            allow_http_localhost=config.allow_http_localhost,
        )
        return config

    def configure(self, **overrides: Any) -> SecurityConfig:
        """Activate the defaults with a partial override applied.

        Args:
            **overrides: SecurityConfig field values.

        Returns:
            The activated configuration.

        Raises:
            ConfigurationError: If an override is unknown or invalid.
        """
        return self.replace(build_security_config(**overrides))

    def enable_development_mode(
        self,
        runtime_mode: RuntimeMode,
        allow_http_localhost: bool = True,
    ) -> SecurityConfig:
        """Relax HTTPS/localhost restrictions for local development.

        Args:
            runtime_mode: Runtime mode the process was started in.
            allow_http_localhost: Whether to allow HTTP for localhost.

        Returns:
            The activated configuration.

        Raises:
            ConfigurationError: If running in production.
        """
        if runtime_mode.is_production:
            self._log.warning(
                "development_mode_refused", runtime_mode=runtime_mode.value
            )
            msg = "Development mode cannot be enabled in production"
            raise ConfigurationError(
                msg, details={"runtime_mode": runtime_mode.value}
            )

        config = DEVELOPMENT_SECURITY_CONFIG.model_copy(
            update={"allow_http_localhost": allow_http_localhost}
        )
        self._log.warning(
            "development_mode_enabled",
            runtime_mode=runtime_mode.value,
            allow_http_localhost=allow_http_localhost,
        )
        return self.replace(config)

    def reset(self) -> SecurityConfig:
        """Restore the secure default configuration."""
        return self.replace(DEFAULT_SECURITY_CONFIG)
