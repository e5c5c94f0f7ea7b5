"""Bearer-token challenge relay for Docker Registry v2 requests.

A registry request is first sent upstream as the client sent it. When the
registry answers with a bearer challenge, the relay obtains a pull token for
the repository named in the path and repeats the request with it:

    RECEIVED -> FORWARDED -> (UNAUTHENTICATED -> TOKEN_REQUESTED -> RETRIED)
                             | DIRECT -> RESPONDED

Tokens are used for exactly one retry and never cached.
"""

import structlog
from fastapi.responses import StreamingResponse

from .errors import (
    AuthenticationRequestFailed,
    TokenIssuanceFailed,
    UpstreamUnreachable,
)
from .proxy import (
    EXPOSED_HEADERS,
    USER_AGENT,
    filter_request_headers,
    stream_response,
    with_authorization,
)
from .types import ProxyRequest, RelayConfig
from .upstream import UpstreamClient, UpstreamResponse

logger = structlog.stdlib.get_logger(__name__)

REGISTRY_PREFIX = "/v2"

RELAY_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Expose-Headers": ", ".join(EXPOSED_HEADERS),
    "Cache-Control": "no-store",
}


def is_registry_path(path: str) -> bool:
    return path == REGISTRY_PREFIX or path.startswith(f"{REGISTRY_PREFIX}/")


def derive_scope(path: str, default_namespace: str, default_repository: str) -> str:
    """Build the pull scope for a registry path.

    The first two segments after ``/v2/`` are taken as namespace and
    repository. Paths with fewer segments fall back to the defaults.

    Example:
        /v2/library/ubuntu/manifests/latest -> repository:library/ubuntu:pull
    """
    # "/v2/ns/repo/..." splits into ["", "v2", "ns", "repo", ...]
    segments = path.split("/")[2:]

    if len(segments) >= 2 and segments[0] and segments[1]:
        namespace, repository = segments[0], segments[1]
    else:
        logger.debug("No repository in path, using default scope", path=path)
        namespace, repository = default_namespace, default_repository

    return f"repository:{namespace}/{repository}:pull"


class RegistryRelay:
    """Relays registry and token requests to a single upstream registry."""

    def __init__(self, config: RelayConfig, upstream: UpstreamClient):
        self.config = config
        self.upstream = upstream

    def _proxy_url(self, request: ProxyRequest) -> str:
        return (self.config.public_url or request.origin).rstrip("/")

    async def fetch_token(self, scope: str) -> str:
        """Request a pull token for ``scope`` from the upstream token service.

        Raises:
            TokenIssuanceFailed: On a non-2xx status or a body without a token
            UpstreamUnreachable: If the token service could not be reached
        """
        logger.info("Requesting registry token", scope=scope)

        response = await self.upstream.send(
            "GET",
            self.config.token_url,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            params={"service": self.config.service, "scope": scope},
        )
        try:
            if not 200 <= response.status_code < 300:
                logger.error(
                    "Token service returned an error",
                    scope=scope,
                    status_code=response.status_code,
                )
                raise TokenIssuanceFailed()

            await response.aread()
            try:
                data = response.json()
            except ValueError as e:
                logger.error("Token service returned invalid JSON", error=str(e))
                raise TokenIssuanceFailed() from e

            token = data.get("token") if isinstance(data, dict) else None
            if not token or not isinstance(token, str):
                logger.error(
                    "Token missing from token service response", scope=scope
                )
                raise TokenIssuanceFailed()

            return token
        finally:
            await response.aclose()

    async def relay(self, request: ProxyRequest) -> StreamingResponse:
        """Send a registry request upstream, answering a bearer challenge once.

        Args:
            request: Inbound request with a ``/v2`` path

        Returns:
            StreamingResponse with the final upstream response

        Raises:
            UpstreamUnreachable: If the registry or token service is unreachable
            TokenIssuanceFailed: If the token service did not issue a token
        """
        target_url = f"{self.config.registry_url}{request.path_with_query}"
        headers = filter_request_headers(request.headers.items())

        logger.info(
            "Proxying registry request",
            method=request.method,
            target_url=target_url,
        )

        response = await self.upstream.send(
            request.method, target_url, headers=headers, content=request.body
        )

        if response.status_code == 401 and "www-authenticate" in response.headers:
            await response.aclose()

            scope = derive_scope(
                request.path,
                self.config.default_namespace,
                self.config.default_repository,
            )
            logger.info("Registry requested authentication", scope=scope)

            token = await self.fetch_token(scope)
            response = await self.upstream.send(
                request.method,
                target_url,
                headers=with_authorization(headers, f"Bearer {token}"),
                content=request.body,
            )
            logger.info(
                "Authenticated retry completed",
                status_code=response.status_code,
                scope=scope,
            )
        else:
            logger.info(
                "Registry responded directly", status_code=response.status_code
            )

        return self._client_response(request, response)

    async def forward_token_request(self, request: ProxyRequest) -> StreamingResponse:
        """Pass a token request through to the upstream auth host unchanged.

        Raises:
            AuthenticationRequestFailed: If the auth host could not be reached
        """
        target_url = f"{self.config.auth_url}{request.path_with_query}"
        logger.info(
            "Forwarding token request",
            method=request.method,
            target_url=target_url,
        )

        try:
            response = await self.upstream.send(
                request.method,
                target_url,
                headers=filter_request_headers(request.headers.items()),
                content=request.body,
            )
        except UpstreamUnreachable as e:
            raise AuthenticationRequestFailed() from e

        return stream_response(response)

    def _client_response(
        self, request: ProxyRequest, response: UpstreamResponse
    ) -> StreamingResponse:
        if self.config.rewrite_realm:
            return stream_response(
                response,
                extra_headers=RELAY_HEADERS,
                auth_url=self.config.auth_url,
                proxy_url=self._proxy_url(request),
            )
        return stream_response(response, extra_headers=RELAY_HEADERS)
