"""structlog setup and per-request logging context."""
import logging
import sys
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from discounts_display.config import settings

# Probe and scrape traffic is only logged at debug level
QUIET_PATHS = ("/health", "/metrics")


def _renderer():
    if settings.app_env == "production":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def setup_logging() -> None:
    """Route structlog through stdlib logging at the configured level."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)


def request_id_for(request: Request) -> str:
    """Inbound X-Request-ID, or a fresh one."""
    return request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:12]}"


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Bind request_id, method and path to every log event of a request.

    The request id is echoed back in ``X-Request-ID`` so storefront and
    admin callers can quote it.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request_id_for(request)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        logger = structlog.get_logger(__name__)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception("request_failed", exc_info=exc)
            raise

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        log = logger.debug if request.url.path.startswith(QUIET_PATHS) else logger.info
        log("request_completed", status_code=response.status_code, duration_ms=elapsed_ms)

        response.headers["X-Request-ID"] = request_id
        return response
