"""Error taxonomy for the geography fetch pipeline.

Every failure in the pipeline surfaces as a ``GeographyFetchError`` subclass
carrying a closed ``GeographyErrorKind``. Errors are created at the point of
failure and propagated unchanged; transport exceptions are wrapped once at the
fetch boundary.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field


ErrorDetails = dict[str, str | int | bool | None]


class GeographyErrorKind(str, Enum):
    """Classification of geography fetch errors.

    - LOAD: Network failure, timeout, or non-2xx status
    - PARSE: Body is not syntactically valid JSON/UTF-8
    - VALIDATION: Malformed input, wrong content type, oversized body, wrong shape
    - SECURITY: Policy violation (protocol, address, redirect, integrity)
    - CONFIGURATION: Invalid or refused configuration change
    """

    LOAD = "GEOGRAPHY_LOAD_ERROR"
    PARSE = "GEOGRAPHY_PARSE_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    SECURITY = "SECURITY_ERROR"
    CONFIGURATION = "CONFIGURATION_ERROR"


class SecurityViolation(str, Enum):
    """Finer-grained reason attached to SECURITY errors."""

    PROTOCOL = "protocol"
    CREDENTIALS = "credentials"
    LOCALHOST = "localhost"
    PRIVATE_ADDRESS = "private_address"
    REDIRECT = "redirect"
    INTEGRITY_MISMATCH = "integrity_mismatch"
    INTEGRITY_UNAVAILABLE = "integrity_unavailable"


class GeographyFetchError(Exception):
    """Base exception for geography fetch errors.

    Provides structured error information for logging and for callers
    deciding on their own retry policy.
    """

    def __init__(
        self,
        error_kind: GeographyErrorKind,
        message: str,
        source_url: str | None = None,
        cause: BaseException | None = None,
        details: ErrorDetails | None = None,
    ) -> None:
        """Initialize the geography fetch error.

        Args:
            error_kind: Classification of the error.
            message: Human-readable error message.
            source_url: URL that was being validated or fetched.
            cause: Underlying exception, if any.
            details: Additional structured error details.
        """
        super().__init__(message)
        self.error_kind = error_kind
        self.message = message
        self.source_url = source_url
        self.cause = cause
        self.details = details or {}
        self.timestamp = datetime.now(UTC)
        if cause is not None:
            self.__cause__ = cause

    def to_dict(
        self,
    ) -> dict[str, str | None | ErrorDetails]:
        """Convert error to dictionary for logging/serialization.

        The cause is reported by type name only so that internal stack
        traces never reach the caller.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "error_kind": self.error_kind.value,
            "message": self.message,
            "source_url": self.source_url,
            "cause": type(self.cause).__name__ if self.cause else None,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }


class LoadError(GeographyFetchError):
    """Network failure, timeout, or non-success HTTP status."""

    def __init__(
        self,
        message: str,
        source_url: str | None = None,
        cause: BaseException | None = None,
        status_code: int | None = None,
    ) -> None:
        details: ErrorDetails = {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(
            error_kind=GeographyErrorKind.LOAD,
            message=message,
            source_url=source_url,
            cause=cause,
            details=details,
        )
        self.status_code = status_code


class ParseError(GeographyFetchError):
    """Response body could not be decoded or parsed as JSON."""

    def __init__(
        self,
        message: str,
        source_url: str | None = None,
        cause: BaseException | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        """Initialize the parse error.

        Args:
            message: Human-readable error message.
            source_url: URL of the document that failed to parse.
            cause: Original decoding or syntax error.
            line: Line number where parsing failed.
            column: Column number where parsing failed.
        """
        details: ErrorDetails = {}
        if line is not None:
            details["line"] = line
        if column is not None:
            details["column"] = column
        super().__init__(
            error_kind=GeographyErrorKind.PARSE,
            message=message,
            source_url=source_url,
            cause=cause,
            details=details,
        )
        self.line = line
        self.column = column


class GeographyValidationError(GeographyFetchError):
    """Input or response failed validation (format, type, size, shape)."""

    def __init__(
        self,
        message: str,
        source_url: str | None = None,
        cause: BaseException | None = None,
        details: ErrorDetails | None = None,
    ) -> None:
        super().__init__(
            error_kind=GeographyErrorKind.VALIDATION,
            message=message,
            source_url=source_url,
            cause=cause,
            details=details,
        )


class SecurityPolicyError(GeographyFetchError):
    """A URL, redirect, or payload violated the security policy."""

    def __init__(
        self,
        violation: SecurityViolation,
        message: str,
        source_url: str | None = None,
        cause: BaseException | None = None,
        details: ErrorDetails | None = None,
    ) -> None:
        """Initialize the security policy error.

        Args:
            violation: Which part of the policy was violated.
            message: Human-readable error message.
            source_url: URL that violated the policy.
            cause: Underlying exception, if any.
            details: Additional structured error details.
        """
        merged: ErrorDetails = {"violation": violation.value}
        if details:
            merged.update(details)
        super().__init__(
            error_kind=GeographyErrorKind.SECURITY,
            message=message,
            source_url=source_url,
            cause=cause,
            details=merged,
        )
        self.violation = violation


class IntegrityError(SecurityPolicyError):
    """Payload digest did not match the registered SRI digest."""

    def __init__(
        self,
        message: str,
        *,
        algorithm: str,
        expected_digest: str,
        computed_digest: str,
        source_url: str | None = None,
    ) -> None:
        """Initialize the integrity error.

        Args:
            message: Human-readable error message.
            algorithm: Digest algorithm used.
            expected_digest: Registered ``alg-digest`` integrity string.
            computed_digest: ``alg-digest`` computed over the received bytes.
            source_url: URL of the resource.
        """
        super().__init__(
            violation=SecurityViolation.INTEGRITY_MISMATCH,
            message=message,
            source_url=source_url,
            details={
                "algorithm": algorithm,
                "expected_digest": expected_digest,
                "computed_digest": computed_digest,
            },
        )
        self.algorithm = algorithm
        self.expected_digest = expected_digest
        self.computed_digest = computed_digest


class ConfigurationError(GeographyFetchError):
    """A configuration change was invalid or refused."""

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        details: ErrorDetails | None = None,
    ) -> None:
        super().__init__(
            error_kind=GeographyErrorKind.CONFIGURATION,
            message=message,
            cause=cause,
            details=details,
        )


class ErrorRecord(BaseModel):
    """Serializable error record for reporting.

    Used by the CLI and by prefetch reports; carries no stack trace.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    error_kind: GeographyErrorKind = Field(description="Error classification")
    message: Annotated[str, Field(min_length=1, description="Error message")]
    source_url: str | None = Field(default=None, description="Offending URL")
    timestamp: datetime = Field(description="When the error was raised")
    details: ErrorDetails = Field(
        default_factory=dict, description="Additional error details"
    )

    @classmethod
    def from_exception(cls, error: GeographyFetchError) -> "ErrorRecord":
        """Create an ErrorRecord from a GeographyFetchError exception.

        Args:
            error: The exception to convert.

        Returns:
            ErrorRecord instance.
        """
        return cls(
            error_kind=error.error_kind,
            message=error.message,
            source_url=error.source_url,
            timestamp=error.timestamp,
            details=error.details,
        )
