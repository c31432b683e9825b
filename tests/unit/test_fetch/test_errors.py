"""Unit tests for the geography error taxonomy."""

import httpx

from geofetch.fetch.errors import (
    ConfigurationError,
    ErrorRecord,
    GeographyErrorKind,
    GeographyFetchError,
    GeographyValidationError,
    IntegrityError,
    LoadError,
    ParseError,
    SecurityPolicyError,
    SecurityViolation,
)


class TestErrorKinds:
    """Tests for error kind values."""

    def test_kind_values(self) -> None:
        """Test the closed set of kind strings."""
        assert {kind.value for kind in GeographyErrorKind} == {
            "GEOGRAPHY_LOAD_ERROR",
            "GEOGRAPHY_PARSE_ERROR",
            "VALIDATION_ERROR",
            "SECURITY_ERROR",
            "CONFIGURATION_ERROR",
        }

    def test_subclasses_carry_their_kind(self) -> None:
        """Test that each subclass maps to one kind."""
        assert LoadError("x").error_kind == GeographyErrorKind.LOAD
        assert ParseError("x").error_kind == GeographyErrorKind.PARSE
        assert (
            GeographyValidationError("x").error_kind == GeographyErrorKind.VALIDATION
        )
        assert (
            SecurityPolicyError(SecurityViolation.REDIRECT, "x").error_kind
            == GeographyErrorKind.SECURITY
        )
        assert ConfigurationError("x").error_kind == GeographyErrorKind.CONFIGURATION


class TestGeographyFetchError:
    """Tests for the base error."""

    def test_cause_is_chained(self) -> None:
        """Test that the cause becomes __cause__."""
        cause = httpx.ConnectError("refused")

        error = LoadError("Network error", source_url="https://a.test/", cause=cause)

        assert error.cause is cause
        assert error.__cause__ is cause
        assert isinstance(error, GeographyFetchError)

    def test_to_dict_reports_cause_type_only(self) -> None:
        """Test that serialization never includes the cause's message."""
        error = LoadError(
            "Network error",
            source_url="https://a.test/",
            cause=RuntimeError("internal detail"),
            status_code=502,
        )

        data = error.to_dict()

        assert data["error_kind"] == "GEOGRAPHY_LOAD_ERROR"
        assert data["cause"] == "RuntimeError"
        assert data["details"] == {"status_code": 502}
        assert "internal detail" not in str(data)

    def test_parse_error_position(self) -> None:
        """Test that parse errors record line and column."""
        error = ParseError("bad json", line=3, column=7)

        assert error.details == {"line": 3, "column": 7}

    def test_security_error_records_violation(self) -> None:
        """Test that the violation lands in details."""
        error = SecurityPolicyError(
            SecurityViolation.PRIVATE_ADDRESS,
            "blocked",
            details={"range": "loopback"},
        )

        assert error.details == {"violation": "private_address", "range": "loopback"}

    def test_integrity_error_is_security_error(self) -> None:
        """Test that integrity mismatches are SECURITY errors with both digests."""
        error = IntegrityError(
            "mismatch",
            algorithm="sha384",
            expected_digest="sha384-aaa",
            computed_digest="sha384-bbb",
        )

        assert isinstance(error, SecurityPolicyError)
        assert error.error_kind == GeographyErrorKind.SECURITY
        assert error.violation == SecurityViolation.INTEGRITY_MISMATCH
        assert error.details["expected_digest"] == "sha384-aaa"
        assert error.details["computed_digest"] == "sha384-bbb"


class TestErrorRecord:
    """Tests for ErrorRecord model."""

    def test_from_exception(self) -> None:
        """Test creating ErrorRecord from an exception."""
        error = GeographyValidationError(
            "Invalid content type: text/html",
            source_url="https://a.test/world.json",
            details={"content_type": "text/html"},
        )

        record = ErrorRecord.from_exception(error)

        assert record.error_kind == GeographyErrorKind.VALIDATION
        assert record.message == "Invalid content type: text/html"
        assert record.source_url == "https://a.test/world.json"
        assert record.timestamp == error.timestamp
        assert record.details == {"content_type": "text/html"}

    def test_serializes_to_json(self) -> None:
        """Test JSON serialization of the record."""
        record = ErrorRecord.from_exception(LoadError("HTTP 404: Not Found"))

        data = record.model_dump(mode="json")

        assert data["error_kind"] == "GEOGRAPHY_LOAD_ERROR"
        assert isinstance(data["timestamp"], str)
