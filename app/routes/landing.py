from fastapi import APIRouter
from fastapi.responses import HTMLResponse, PlainTextResponse

from app.settings import settings
from app.utils.routing import AnyMethodRoute

router = APIRouter(tags=["Landing"])

LANDING_PAGE = """<!DOCTYPE html>
<html>
<head>
  <title>Docker Registry Proxy</title>
</head>
<body>
  <h1>Docker Registry Proxy</h1>
  <p>This is a proxy for {registry}.</p>
  <p>Pull through it with <code>docker pull &lt;this host&gt;/library/ubuntu</code>.</p>
</body>
</html>
"""


@router.api_route("/", methods=["GET", "HEAD"], response_class=HTMLResponse)
async def landing_page():
    return HTMLResponse(LANDING_PAGE.format(registry=settings.UPSTREAM_REGISTRY_URL))


async def not_found(path: str):
    return PlainTextResponse("Not Found", status_code=404)


# Registered last: any method on any path no other route claimed
router.add_api_route(
    "/{path:path}",
    not_found,
    include_in_schema=False,
    route_class_override=AnyMethodRoute,
)
