"""
API Middleware.

Request ID injection with timing, and per-IP rate limiting for every
incoming API request.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from quotememory.logging_config import bind_request, generate_trace_id, get_logger

logger = get_logger(__name__)


# Health checks hit these every few seconds; they are answered but not logged
QUIET_PATHS = frozenset({"/health", "/"})


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, bind it for logging and time the response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_trace_id()
        bind_request(request_id)

        start = time.monotonic()
        response = await call_next(request)
        elapsed_ms = round((time.monotonic() - start) * 1000, 1)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = str(elapsed_ms)

        if request.url.path not in QUIET_PATHS:
            log = logger.warning if response.status_code >= 500 else logger.info
            log(
                "api_request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                elapsed_ms=elapsed_ms,
            )
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window limiter per client IP.

    Counts live in this process only; behind several workers each one
    enforces its own window.
    """

    def __init__(self, app: ASGIApp, max_requests: int = 100, window_seconds: int = 60) -> None:
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: dict[str, list[float]] = defaultdict(list)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        client_ip = request.client.host if request.client else "unknown"
        now = time.time()

        hits = [t for t in self._hits[client_ip] if now - t < self.window_seconds]
        if len(hits) >= self.max_requests:
            self._hits[client_ip] = hits
            logger.warning("rate_limit_exceeded", client_ip=client_ip, path=request.url.path)
            return Response(
                content='{"error": "RATE_LIMITED", "message": "Rate limit exceeded"}',
                status_code=429,
                media_type="application/json",
                headers={"Retry-After": str(self.window_seconds)},
            )

        hits.append(now)
        self._hits[client_ip] = hits
        return await call_next(request)
