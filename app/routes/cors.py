from fastapi import APIRouter, Response

from app.deps.registry import RelayDep
from app.packages.registry_proxy.proxy import EXPOSED_HEADERS

router = APIRouter(tags=["CORS"])

PREFLIGHT_MAX_AGE = 86400  # 24 hours


@router.options("/{path:path}", status_code=204)
async def preflight(path: str, relay: RelayDep):
    """Answer CORS preflight requests for every path."""
    methods = ["GET", "HEAD", "OPTIONS"]
    if relay.config.allow_write_methods:
        methods += ["POST", "PUT", "DELETE"]

    return Response(
        status_code=204,
        headers={
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": ", ".join(methods),
            "Access-Control-Allow-Headers": "Authorization, Range",
            "Access-Control-Expose-Headers": ", ".join(EXPOSED_HEADERS),
            "Access-Control-Max-Age": str(PREFLIGHT_MAX_AGE),
        },
    )
