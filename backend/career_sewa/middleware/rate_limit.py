"""
Career Sewa API — Rate Limiting Middleware
============================================

What:  Per-IP sliding window rate limiter.
How:   Keeps the timestamps of each client's requests inside the window;
       once the count reaches the limit the request is answered with the
       429 envelope and a Retry-After header.

Algorithm: Sliding Window Log
    1. Drop timestamps older than `window` seconds
    2. If the remaining count >= limit, reject
    3. Otherwise record now and let the request through

    Unlike a fixed window there is no burst of 2x the limit at a window
    boundary.

Scope:
    In-memory, so limits are per process. Health, docs and OpenAPI paths
    are never limited.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from career_sewa.config import Settings
from career_sewa.exceptions import TooManyRequestsError
from career_sewa.schemas.response import APIResponse

logger = logging.getLogger(__name__)

# Inactive clients are purged once per this many recorded requests
CLEANUP_EVERY = 1000


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding window limiter.

    Args:
        app:       Downstream ASGI app.
        settings:  Supplies rate_limit_requests and rate_limit_window.
    """

    EXCLUDED_PREFIXES = ("/health", "/docs", "/openapi.json", "/redoc")

    def __init__(self, app: ASGIApp, settings: Settings):
        super().__init__(app)
        self.max_requests = settings.rate_limit_requests
        self.window = settings.rate_limit_window
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._recorded = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path.startswith(self.EXCLUDED_PREFIXES):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        retry_after = self._check(client_ip, time.time())
        if retry_after is not None:
            logger.warning(
                "Rate limit exceeded for IP %s: %d requests in %ds window",
                client_ip,
                len(self._requests[client_ip]),
                self.window,
                extra={"client_ip": client_ip, "path": request.url.path},
            )
            error = TooManyRequestsError(
                "Too many requests from this IP, please try again later.",
                retry_after=retry_after,
            )
            return APIResponse.error(error.status_code, error.message).to_response(
                headers={"Retry-After": str(retry_after)}
            )

        return await call_next(request)

    def _check(self, client_ip: str, now: float) -> Optional[int]:
        """Records the request and returns None, or returns seconds to wait."""
        window_start = now - self.window
        timestamps = [ts for ts in self._requests[client_ip] if ts > window_start]
        self._requests[client_ip] = timestamps

        if len(timestamps) >= self.max_requests:
            return int(timestamps[0] + self.window - now) + 1

        timestamps.append(now)
        self._recorded += 1
        if self._recorded % CLEANUP_EVERY == 0:
            self._cleanup_inactive_ips(window_start)
        return None

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        inactive_ips = [
            ip for ip, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] < window_start
        ]
        for ip in inactive_ips:
            del self._requests[ip]

        if inactive_ips:
            logger.debug("Cleaned up %d inactive IP entries", len(inactive_ips))
