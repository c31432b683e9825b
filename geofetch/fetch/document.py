"""Geography document models and the parse boundary.

A payload is decoded and shape-checked exactly once here; everything past
this point works with a typed ``GeographyDocument``.
"""

import json
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from geofetch.fetch.errors import GeographyValidationError, ParseError


GEOGRAPHY_TYPES = ("Topology", "FeatureCollection")


class Topology(BaseModel):
    """TopoJSON topology. Members beyond the required ones are preserved."""

    model_config = ConfigDict(frozen=True, extra="allow")

    type: Literal["Topology"]
    objects: dict[str, Any]
    arcs: list[Any]
    bbox: list[float] | None = None
    transform: dict[str, Any] | None = None


class FeatureCollection(BaseModel):
    """GeoJSON feature collection. Members beyond the required ones are preserved."""

    model_config = ConfigDict(frozen=True, extra="allow")

    type: Literal["FeatureCollection"]
    features: list[dict[str, Any]]
    bbox: list[float] | None = None


GeographyDocument = Annotated[
    Topology | FeatureCollection, Field(discriminator="type")
]

_DOCUMENT_ADAPTER: TypeAdapter[Topology | FeatureCollection] = TypeAdapter(
    GeographyDocument
)


class _NonFiniteConstantError(ValueError):
    pass


def _reject_constant(name: str) -> Any:
    raise _NonFiniteConstantError(name)


def _decode_json(body: bytes | str, source_url: str | None) -> Any:
    try:
        text = body.decode("utf-8") if isinstance(body, bytes) else body
    except UnicodeDecodeError as e:
        msg = "Geography data is not valid UTF-8"
        raise ParseError(msg, source_url=source_url, cause=e) from e

    try:
        return json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        msg = "Invalid JSON format in geography data"
        raise ParseError(
            msg, source_url=source_url, cause=e, line=e.lineno, column=e.colno
        ) from e
    except _NonFiniteConstantError as e:
        msg = f"Invalid JSON format in geography data: {e} is not a JSON number"
        raise ParseError(msg, source_url=source_url, cause=e) from e
    except (ValueError, RecursionError) as e:
        # Oversized integer literals and pathological nesting
        msg = f"Invalid JSON format in geography data: {type(e).__name__}"
        raise ParseError(msg, source_url=source_url, cause=e) from e


def parse_geography(
    body: bytes | str, source_url: str | None = None
) -> Topology | FeatureCollection:
    """Parse and validate a geography payload.

    Args:
        body: Raw payload (UTF-8 bytes or already-decoded text).
        source_url: URL the payload came from, for error reporting.

    Returns:
        Topology or FeatureCollection document.

    Raises:
        ParseError: If the payload is not UTF-8 or not syntactically JSON.
        GeographyValidationError: If the JSON is not a Topology or
            FeatureCollection with its required members.
    """
    data = _decode_json(body, source_url)

    if not isinstance(data, dict):
        msg = "Invalid geography data: not a valid object"
        raise GeographyValidationError(msg, source_url=source_url)

    kind = data.get("type")
    if kind not in GEOGRAPHY_TYPES:
        msg = (
            "Invalid geography data: expected Topology or FeatureCollection, "
            f"got {kind}"
        )
        raise GeographyValidationError(
            msg, source_url=source_url, details={"type": str(kind)}
        )

    try:
        return _DOCUMENT_ADAPTER.validate_python(data)
    except ValidationError as e:
        fields = ",".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        msg = f"Invalid {kind}: {e.error_count()} error(s) in {fields}"
        raise GeographyValidationError(
            msg, source_url=source_url, cause=e, details={"type": kind}
        ) from e
