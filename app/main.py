import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.packages.registry_proxy import RegistryProxyError
from app.routes import cors, docker_proxy, landing
from app.settings import settings
from app.utils.logging import setup_logger
from app.utils.sentry import init_sentry

logger = structlog.stdlib.get_logger(__name__)

ERROR_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Cache-Control": "no-store",
}

init_sentry()
app = FastAPI(
    title="Registry Auth Relay",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)
setup_logger(app, token_path_prefix=settings.TOKEN_PATH_PREFIX)


@app.exception_handler(RegistryProxyError)
async def registry_proxy_exception_handler(request: Request, exc: RegistryProxyError):
    logger.warning(
        "Relay failed",
        error=exc.error,
        path=request.url.path,
        status_code=exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_content(),
        headers=ERROR_HEADERS,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "validation_error", "message": str(exc.errors())},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    # Exception text may contain upstream URLs or credentials
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_error", "message": "Internal Server Error"},
        headers=ERROR_HEADERS,
    )


# Preflight first: the relay and fallback routes accept every method
app.include_router(cors.router)
app.include_router(docker_proxy.router)
app.include_router(landing.router)
