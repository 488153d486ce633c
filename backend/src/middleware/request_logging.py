"""Request logging middleware: one line per request with status, duration and client IP."""
import logging
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from src.monitoring.metrics import record_request

logger = logging.getLogger(__name__)

# Static media is noisy and carries no query semantics
QUIET_PATH_PREFIXES = ("/uploads/",)


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status, duration_ms and client; count the status bucket for /metrics."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        record_request(response.status_code)
        path = request.url.path
        if path.startswith(QUIET_PATH_PREFIXES) and response.status_code < 400:
            return response
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "request method=%s path=%s status=%s duration_ms=%.1f client=%s",
            request.method,
            path,
            response.status_code,
            duration_ms,
            _client_ip(request),
        )
        return response
