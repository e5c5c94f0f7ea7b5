import logging
import time
from enum import Enum
from urllib.parse import parse_qsl, urlencode

import structlog
from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI, Request, Response
from pydantic_settings import BaseSettings
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp
from structlog.typing import Processor

REDACTED = "[redacted]"

# Upload session state and credentials that registries put in query strings
SENSITIVE_QUERY_KEYS = frozenset(
    {"_state", "token", "access_token", "refresh_token", "password", "account"}
)


class LogFormats(str, Enum):
    JSON = "json"
    CONSOLE = "console"


class LogSettings(BaseSettings):
    log_format: LogFormats = LogFormats.JSON
    log_level: str = "INFO"


def build_processors(log_format: LogFormats) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if log_format == LogFormats.JSON:
        processors.append(structlog.processors.format_exc_info)
    return processors


def setup_logger(app: FastAPI, token_path_prefix: str):
    """Route structlog and stdlib records through one renderer and install
    the request id and access log middlewares on ``app``.
    """
    log_settings = LogSettings()

    log_renderer: Processor
    if log_settings.log_format == LogFormats.CONSOLE:
        log_renderer = structlog.dev.ConsoleRenderer()
    else:
        log_renderer = structlog.processors.JSONRenderer()

    processors = build_processors(log_settings.log_format)
    structlog.configure(
        processors=processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            log_renderer,
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_settings.log_level.upper())

    for name in ["uvicorn", "uvicorn.error"]:
        logging.getLogger(name).handlers.clear()
        logging.getLogger(name).propagate = True

    # Replaced by the access line below
    logging.getLogger("uvicorn.access").handlers.clear()
    logging.getLogger("uvicorn.access").propagate = False

    # httpx logs full upstream URLs at INFO, token scopes included
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    app.add_middleware(RequestContextMiddleware, token_path_prefix=token_path_prefix)
    app.add_middleware(CorrelationIdMiddleware)


def redact_query(query: str, redact_all: bool = False) -> dict[str, str]:
    """Query parameters safe to log.

    Values of credential-like keys are replaced, and with ``redact_all``
    every value is. Repeated keys keep their last value.
    """
    return {
        key: REDACTED if redact_all or key in SENSITIVE_QUERY_KEYS else value
        for key, value in parse_qsl(query, keep_blank_values=True)
    }


access_logger = structlog.stdlib.get_logger("relay.access")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds the request id, method and path to the log context and writes
    one access line per request.

    Query strings on the token endpoint carry the account and requested
    scopes, so only their parameter names reach the log. For streamed
    registry responses the duration covers the time until the upstream
    headers arrived, not the full body transfer.
    """

    def __init__(self, app: ASGIApp, token_path_prefix: str):
        super().__init__(app)
        self.token_path_prefix = token_path_prefix

    def loggable_query(self, request: Request) -> dict[str, str]:
        is_token_path = request.url.path.startswith(self.token_path_prefix)
        return redact_query(request.url.query, redact_all=is_token_path)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        structlog.contextvars.clear_contextvars()
        request_id = correlation_id.get()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            structlog.stdlib.get_logger("relay.error").exception("Uncaught exception")
            raise
        finally:
            duration = time.perf_counter() - start_time
            query_params = self.loggable_query(request)
            target = request.url.path
            if query_params:
                target = f"{target}?{urlencode(query_params, safe='[]')}"
            http_version = request.scope["http_version"]
            access_logger.info(
                f'"{request.method} {target} HTTP/{http_version}" {status_code}',
                http={
                    "status_code": status_code,
                    "method": request.method,
                    "version": http_version,
                    "request_id": request_id,
                },
                duration=duration,
                query_params=query_params,
            )

        response.headers["X-Process-Time"] = str(duration)
        return response
