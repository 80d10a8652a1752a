"""
Career Sewa API — Request Logging Middleware
==============================================

What:  One structured access-log record per HTTP request.
How:   Measures wall time around the downstream call and logs method, path,
       status, duration, request id and client IP through `extra=`, so the
       JSON formatter emits them as fields.

Log level follows the status class:
    5xx → ERROR, 4xx → WARNING, everything else → INFO

Health probe paths are not logged; they are polled every few seconds.
Request bodies are never logged here.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from career_sewa.middleware.request_id import request_id_var

logger = logging.getLogger("career_sewa.access")

QUIET_PATH_PREFIX = "/health"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log with duration and correlation id."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path.startswith(QUIET_PATH_PREFIX):
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        client_ip = request.client.host if request.client else "unknown"
        rid = request_id_var.get("")
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
                "user_agent": request.headers.get("user-agent", ""),
            },
        )
        return response
