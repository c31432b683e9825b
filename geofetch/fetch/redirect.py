"""Manual redirect handling with per-hop security validation.

Automatic redirects are never enabled on the client. Every ``Location``
target is resolved against the current URL and sent back through the URL
validator before it is requested, so a public URL cannot bounce the
pipeline onto a private address.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
import structlog
from pydantic import BaseModel, ConfigDict

from geofetch.fetch.config import RuntimeMode, SecurityConfig
from geofetch.fetch.constants import (
    COMPONENT_FETCH,
    HTTP_STATUS_NOT_MODIFIED,
    HTTP_STATUS_REDIRECT_MAX,
    HTTP_STATUS_REDIRECT_MIN,
    MAX_REDIRECTS,
    REDIRECT_DRAIN_LIMIT_BYTES,
)
from geofetch.fetch.errors import SecurityPolicyError, SecurityViolation
from geofetch.fetch.metrics import GeographyFetchMetrics
from geofetch.fetch.redact import (
    redact_headers,
    redact_url_credentials,
    strip_credential_headers,
)
from geofetch.fetch.validator import validate_url


logger = structlog.get_logger()


class RedirectHop(BaseModel):
    """One redirect response that was validated and followed."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str
    status_code: int
    location: str


@dataclass(frozen=True)
class ValidatedResponse:
    """Final non-redirect response of a fetch.

    The response body is still unread; the owning context manager closes it.
    """

    response: httpx.Response
    final_url: str
    hops: tuple[RedirectHop, ...]


def is_redirect_status(status_code: int) -> bool:
    """Check if a status code asks the client to follow ``Location``."""
    return (
        HTTP_STATUS_REDIRECT_MIN <= status_code < HTTP_STATUS_REDIRECT_MAX
        and status_code != HTTP_STATUS_NOT_MODIFIED
    )


def build_request_headers(config: SecurityConfig) -> dict[str, str]:
    """Build the fixed request headers for a geography fetch.

    Args:
        config: Security configuration snapshot.

    Returns:
        Headers dictionary. Never carries credentials.
    """
    return {
        "Accept": config.accept_header,
        "Accept-Encoding": "identity",
        "User-Agent": config.user_agent,
    }


async def _send(
    client: httpx.AsyncClient, url: str, headers: dict[str, str]
) -> httpx.Response:
    request = client.build_request("GET", url, headers=headers)
    # Cookies set by an earlier hop must not ride along to the next one
    removed = strip_credential_headers(request.headers)
    if removed:
        logger.debug(
            "credential_headers_stripped",
            component=COMPONENT_FETCH,
            url=redact_url_credentials(url),
            headers=removed,
        )
    return await client.send(request, stream=True, follow_redirects=False)


async def _discard_body(response: httpx.Response) -> None:
    drained = 0
    try:
        if response.is_stream_consumed:
            return
        async for chunk in response.aiter_raw():
            drained += len(chunk)
            if drained >= REDIRECT_DRAIN_LIMIT_BYTES:
                break
    except (httpx.HTTPError, httpx.StreamError) as e:
        logger.debug(
            "redirect_body_discard_failed",
            component=COMPONENT_FETCH,
            error=str(e),
        )
    finally:
        await response.aclose()


def _resolve_location(current_url: str, location: str) -> str:
    try:
        return str(httpx.URL(current_url).join(location))
    except (httpx.InvalidURL, ValueError, UnicodeError) as e:
        msg = f"Redirect to invalid location: {redact_url_credentials(location)}"
        raise SecurityPolicyError(
            SecurityViolation.REDIRECT, msg, source_url=current_url, cause=e
        ) from e


@asynccontextmanager
async def open_validated_response(
    client: httpx.AsyncClient,
    url: str,
    *,
    config: SecurityConfig,
    runtime_mode: RuntimeMode,
    max_redirects: int = MAX_REDIRECTS,
) -> AsyncIterator[ValidatedResponse]:
    """Request a URL, following only redirects that pass validation.

    Args:
        client: Client with automatic redirects disabled.
        url: Starting URL.
        config: Security configuration snapshot, used for every hop.
        runtime_mode: Runtime mode the process was started in.
        max_redirects: Number of redirects that may be followed.

    Yields:
        The final response with its unread body and the followed hops.

    Raises:
        GeographyValidationError: If a URL is malformed.
        SecurityPolicyError: If a hop violates the policy, a redirect has no
            ``Location``, or the redirect limit is exceeded.
    """
    metrics = GeographyFetchMetrics.get_instance()
    log = logger.bind(component=COMPONENT_FETCH, subsystem="redirect")
    headers = build_request_headers(config)
    current = validate_url(url, config, runtime_mode).url
    hops: list[RedirectHop] = []

    while True:
        response = await _send(client, current, headers)
        if not is_redirect_status(response.status_code):
            break

        status_code = response.status_code
        location = response.headers.get("location")
        response_headers = redact_headers(response.headers)
        await _discard_body(response)

        if not location:
            msg = f"Redirect response {status_code} without Location header"
            raise SecurityPolicyError(
                SecurityViolation.REDIRECT, msg, source_url=current
            )

        if len(hops) >= max_redirects:
            msg = f"Too many redirects (exceeded {max_redirects} hops)"
            raise SecurityPolicyError(
                SecurityViolation.REDIRECT,
                msg,
                source_url=url,
                details={"max_redirects": max_redirects},
            )

        target = validate_url(
            _resolve_location(current, location), config, runtime_mode
        ).url
        hops.append(RedirectHop(url=current, status_code=status_code, location=target))
        metrics.record_redirect()
        log.info(
            "redirect_followed",
            hop=len(hops),
            status_code=status_code,
            from_url=redact_url_credentials(current),
            to_url=redact_url_credentials(target),
            response_headers=response_headers,
        )
        current = target

    try:
        yield ValidatedResponse(response=response, final_url=current, hops=tuple(hops))
    finally:
        await response.aclose()
