"""Docker Registry v2 API Proxy.

This module exposes the Docker Registry HTTP API V2 surface and the token
endpoint of the upstream auth service, relaying both to the configured
upstream registry.

See: https://docs.docker.com/registry/spec/api/
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from app.deps.registry import RelayDep
from app.packages.registry_proxy import ProxyRequest
from app.settings import settings
from app.utils.routing import AnyMethodRoute

logger = structlog.stdlib.get_logger(__name__)

router = APIRouter(tags=["Docker Proxy"], route_class=AnyMethodRoute)

READ_METHODS = ["GET", "HEAD"]
WRITE_METHODS = ["POST", "PUT", "PATCH", "DELETE"]


def docker_error_response(
    status_code: int,
    error_code: str,
    message: str,
    detail: Optional[str] = None,
) -> JSONResponse:
    """Create a Docker Registry v2 API compliant error response.

    See: https://docs.docker.com/registry/spec/api/#errors
    """
    error_obj = {
        "code": error_code,
        "message": message,
    }
    if detail:
        error_obj["detail"] = detail

    return JSONResponse(
        status_code=status_code,
        content={"errors": [error_obj]},
        headers={
            "Docker-Distribution-API-Version": "registry/2.0",
            "Access-Control-Allow-Origin": "*",
            "Cache-Control": "no-store",
        },
    )


async def build_proxy_request(request: Request) -> ProxyRequest:
    """Capture the parts of the inbound request the relay forwards.

    The undecoded path is used when the server provides it so that
    percent-encoding reaches the upstream unchanged.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.url.path

    body = None
    if request.method not in READ_METHODS:
        # Read once so the authenticated retry can replay it
        body = await request.body()

    return ProxyRequest(
        method=request.method,
        path=path,
        query=request.url.query,
        headers=request.headers,
        body=body,
        origin=str(request.base_url).rstrip("/"),
    )


async def _relay_registry_request(request: Request, relay: RelayDep) -> Response:
    if request.method in WRITE_METHODS and not relay.config.allow_write_methods:
        logger.info("Rejected write request", method=request.method)
        return docker_error_response(
            status_code=405,
            error_code="UNSUPPORTED",
            message="The operation is unsupported.",
            detail=f"{request.method} requests are not relayed by this proxy",
        )

    return await relay.relay(await build_proxy_request(request))


@router.api_route("/v2")
async def registry_root(request: Request, relay: RelayDep):
    """Docker Registry API version check without the trailing slash."""
    return await _relay_registry_request(request, relay)


@router.api_route("/v2/{path:path}")
async def registry_request(request: Request, path: str, relay: RelayDep):
    """Relay any registry API call (manifests, blobs, tags, catalog).

    Anonymous requests that the registry challenges are retried once with a
    pull token for the repository named in the path.
    """
    logger.debug("Docker registry request", method=request.method, path=path)
    return await _relay_registry_request(request, relay)


@router.api_route(settings.TOKEN_PATH_PREFIX + "{suffix:path}")
async def token_request(request: Request, suffix: str, relay: RelayDep):
    """Pass token requests through to the upstream auth service.

    Clients reach this endpoint by following the rewritten realm of a
    WWW-Authenticate challenge.
    """
    return await relay.forward_token_request(await build_proxy_request(request))
