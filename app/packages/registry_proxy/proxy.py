"""Header filtering and response streaming for the registry relay.

This module provides pure utility functions shared by the relay and the
token passthrough. No dependencies on app.* modules to maintain independence
and reusability.
"""

from typing import Iterable, Optional

import structlog
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from .upstream import UpstreamResponse

logger = structlog.stdlib.get_logger(__name__)

USER_AGENT = "registry-auth-relay"

# Connection-scoped headers that are never forwarded by a proxy
HOP_BY_HOP_HEADERS = frozenset(
    [
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    ]
)

# Dropped from inbound requests in addition to hop-by-hop headers
REQUEST_EXCLUDED_HEADERS = HOP_BY_HOP_HEADERS | {"host", "content-length"}

EXPOSED_HEADERS = (
    "Docker-Content-Digest",
    "WWW-Authenticate",
    "Link",
    "Content-Length",
    "Content-Range",
)


def filter_request_headers(
    headers: Iterable[tuple[str, str]],
) -> list[tuple[str, str]]:
    """Select inbound headers that may be sent to a different origin.

    Multi-valued headers are kept as separate entries.

    Args:
        headers: Inbound header items

    Returns:
        Header items without Host, Content-Length and hop-by-hop headers
    """
    forwarded = [
        (name, value)
        for name, value in headers
        if name.lower() not in REQUEST_EXCLUDED_HEADERS
    ]
    if not any(name.lower() == "user-agent" for name, _ in forwarded):
        forwarded.append(("User-Agent", USER_AGENT))
    return forwarded


def with_authorization(
    headers: list[tuple[str, str]], authorization: str
) -> list[tuple[str, str]]:
    """Replace any Authorization header with the given value."""
    return [
        (name, value) for name, value in headers if name.lower() != "authorization"
    ] + [("Authorization", authorization)]


def filter_response_headers(
    headers: Iterable[tuple[str, str]],
) -> list[tuple[str, str]]:
    """Select upstream response headers to send back to the client."""
    return [
        (name, value)
        for name, value in headers
        if name.lower() not in HOP_BY_HOP_HEADERS
    ]


def rewrite_realm(value: str, auth_url: str, proxy_url: str) -> str:
    """Point a WWW-Authenticate challenge at this proxy instead of the auth host.

    Example:
        Bearer realm="https://auth.docker.io/token",service="registry.docker.io"
        becomes
        Bearer realm="https://proxy.example/token",service="registry.docker.io"
    """
    if not auth_url or not proxy_url:
        return value
    return value.replace(auth_url, proxy_url)


def stream_response(
    upstream: UpstreamResponse,
    extra_headers: Optional[dict[str, str]] = None,
    auth_url: Optional[str] = None,
    proxy_url: Optional[str] = None,
) -> StreamingResponse:
    """Build a client response that streams the upstream body unchanged.

    The upstream response (and the client that owns it) is closed once the
    body has been sent or the client went away.

    Args:
        upstream: Open upstream response
        extra_headers: Headers set on top of the upstream ones
        auth_url: Upstream auth origin to replace in WWW-Authenticate
        proxy_url: Origin that replaces ``auth_url``

    Returns:
        StreamingResponse forwarding status, headers and raw body bytes
    """
    response_headers = filter_response_headers(upstream.headers.multi_items())

    if auth_url and proxy_url:
        rewritten_headers = []
        for name, value in response_headers:
            if name.lower() == "www-authenticate":
                rewritten = rewrite_realm(value, auth_url, proxy_url)
                if rewritten != value:
                    logger.debug(
                        "Rewrote WWW-Authenticate realm",
                        original=value,
                        rewritten=rewritten,
                    )
                value = rewritten
            rewritten_headers.append((name, value))
        response_headers = rewritten_headers

    async def generate():
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        finally:
            await upstream.aclose()

    response = StreamingResponse(
        content=generate(),
        status_code=upstream.status_code,
        background=BackgroundTask(upstream.aclose),
    )
    # Raw list keeps repeated upstream headers such as Link
    raw_headers = [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in response_headers
    ]
    response.raw_headers = raw_headers
    for name, value in (extra_headers or {}).items():
        response.headers[name] = value
    return response
