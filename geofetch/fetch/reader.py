"""Response gates: status, content type, and size-bounded body reads."""

from collections.abc import Iterable
from io import BytesIO

import httpx
import structlog

from geofetch.fetch.constants import (
    COMPONENT_FETCH,
    DEFAULT_CHUNK_SIZE,
    HTTP_STATUS_OK_MAX,
    HTTP_STATUS_OK_MIN,
)
from geofetch.fetch.errors import GeographyValidationError, LoadError


logger = structlog.get_logger()

IDENTITY_ENCODINGS = frozenset({"", "identity"})


def ensure_success_status(response: httpx.Response, url: str) -> None:
    """Reject any final status outside the 2xx range.

    Args:
        response: Final (non-redirect) response.
        url: URL being fetched.

    Raises:
        LoadError: If the status is not 2xx.
    """
    status_code = response.status_code
    if HTTP_STATUS_OK_MIN <= status_code < HTTP_STATUS_OK_MAX:
        return
    msg = f"HTTP {status_code}: {response.reason_phrase}"
    raise LoadError(msg, source_url=url, status_code=status_code)


def check_content_type(
    response: httpx.Response, allowed: Iterable[str], url: str
) -> str:
    """Gate the response on its declared Content-Type.

    The lowercased header must contain one of the allowed types, so
    parameters such as ``; charset=utf-8`` are accepted.

    Args:
        response: Final response.
        allowed: Allowed media types (lowercase).
        url: URL being fetched.

    Returns:
        The Content-Type header value.

    Raises:
        GeographyValidationError: If the header is missing or not allowed.
    """
    content_type = response.headers.get("content-type")
    if not content_type:
        msg = "Missing Content-Type header"
        raise GeographyValidationError(msg, source_url=url)

    lowered = content_type.lower()
    if not any(media_type in lowered for media_type in allowed):
        msg = f"Invalid content type: {content_type}"
        raise GeographyValidationError(
            msg, source_url=url, details={"content_type": content_type}
        )
    return content_type


def check_content_encoding(response: httpx.Response, url: str) -> None:
    """Accept only identity-encoded bodies.

    Requests ask for ``Accept-Encoding: identity`` and the size limit counts
    wire bytes, so a compressed body is refused before any of it is read.

    Raises:
        GeographyValidationError: If the body carries a content coding.
    """
    encoding = response.headers.get("content-encoding", "").strip().lower()
    if encoding in IDENTITY_ENCODINGS:
        return
    msg = f"Unsupported Content-Encoding: {encoding}"
    raise GeographyValidationError(
        msg, source_url=url, details={"content_encoding": encoding}
    )


def check_declared_length(response: httpx.Response, max_bytes: int, url: str) -> None:
    """Reject a response whose declared Content-Length exceeds the limit.

    This is only a fast path; absent or malformed headers are ignored and
    the streaming read enforces the limit regardless.

    Raises:
        GeographyValidationError: If the declared size exceeds the limit.
    """
    content_length = response.headers.get("content-length")
    if not content_length:
        return
    try:
        declared = int(content_length)
    except ValueError:
        return
    if declared > max_bytes:
        msg = f"Response too large: {declared} bytes exceeds limit of {max_bytes}"
        raise GeographyValidationError(
            msg,
            source_url=url,
            details={"declared_bytes": declared, "max_bytes": max_bytes},
        )


def _size_exceeded(url: str, max_bytes: int, received: int) -> GeographyValidationError:
    msg = (
        f"Response too large: exceeded limit of {max_bytes} bytes "
        f"(received {received} bytes)"
    )
    return GeographyValidationError(
        msg,
        source_url=url,
        details={"received_bytes": received, "max_bytes": max_bytes},
    )


async def read_bounded(
    response: httpx.Response,
    max_bytes: int,
    url: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> bytes:
    """Read a streamed body, aborting as soon as it would exceed the limit.

    The limit counts wire bytes and does not trust Content-Length; callers
    run ``check_content_encoding`` first so wire bytes are body bytes. The
    chunk that crosses the limit is never buffered, and the stream is
    closed before the error is raised.

    If the body was already read into memory (a non-streamed response),
    only the buffered length can be checked; the memory bound is lost in
    that case.

    Args:
        response: Response with an unread streamed body.
        max_bytes: Maximum accepted body size.
        url: URL being fetched.
        chunk_size: Read granularity.

    Returns:
        Body bytes.

    Raises:
        GeographyValidationError: If the body exceeds the limit.
    """
    if response.is_stream_consumed:
        body = response.content
        if len(body) > max_bytes:
            raise _size_exceeded(url, max_bytes, len(body))
        return body

    buffer = BytesIO()
    total_read = 0
    async for chunk in response.aiter_raw(chunk_size=chunk_size):
        if total_read + len(chunk) > max_bytes:
            await response.aclose()
            logger.warning(
                "response_size_exceeded",
                component=COMPONENT_FETCH,
                max_bytes=max_bytes,
                received_bytes=total_read + len(chunk),
            )
            raise _size_exceeded(url, max_bytes, total_read + len(chunk))
        total_read += len(chunk)
        buffer.write(chunk)

    return buffer.getvalue()
