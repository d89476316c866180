"""
HTTP request logging middleware.

Logs every request with method, path, status, duration and, for movers
endpoints, the ``X-Source`` freshness tag.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.stdlib.get_logger("http")

QUIET_PATHS = frozenset({"/healthz"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests with timing, status and cache source."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id", str(uuid.uuid4())[:8])

        # Bind request context for all downstream logs
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)

        start = time.perf_counter()
        status_code = 500
        source = None

        try:
            response = await call_next(request)
            status_code = response.status_code
            source = response.headers.get("x-source")
            response.headers["x-request-id"] = request_id
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 1)

            if status_code >= 500:
                log = logger.error
            elif status_code >= 400:
                log = logger.warning
            elif request.url.path in QUIET_PATHS:
                log = logger.debug
            else:
                log = logger.info

            log(
                "http_request",
                method=request.method,
                status=status_code,
                source=source,
                query=str(request.url.query) or None,
                duration_ms=duration_ms,
                client=request.client.host if request.client else None,
            )
