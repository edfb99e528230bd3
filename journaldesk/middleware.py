"""HTTP middleware for the REST API: request logging, body limits, headers, rate limits."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import defaultdict, deque

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger("journaldesk.http")

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

# Liveness/readiness probes are never throttled
UNTHROTTLED_PATHS = frozenset({"/healthz", "/readyz"})

API_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with a request id; unhandled errors become a logged JSON 500."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("[%s] %s %s failed", request_id, request.method, request.url.path)
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal server error", "type": "server_error", "request_id": request_id},
                headers={"X-Request-ID": request_id},
            )
        logger.info(
            "[%s] %s %s -> %d (%.1f ms)",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - start) * 1000,
        )
        response.headers["X-Request-ID"] = request_id
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Refuse bodies whose declared Content-Length exceeds ``max_bytes``."""

    def __init__(self, app, max_bytes: int):
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next):
        declared = request.headers.get("content-length")
        if declared is None:
            return await call_next(request)
        if not declared.isdigit():
            return JSONResponse(status_code=400, content={"detail": "Invalid Content-Length header"})
        if int(declared) > self.max_bytes:
            logger.warning("Refused %s-byte body on %s %s", declared, request.method, request.url.path)
            return JSONResponse(
                status_code=413,
                content={"detail": f"Request body too large (> {self.max_bytes} bytes)"},
            )
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add ``API_SECURITY_HEADERS`` unless a handler already set them."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in API_SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding one-minute window per caller.

    Callers are identified by API key, falling back to client address.
    Mutating requests draw on a separate, usually smaller, budget.
    """

    window_seconds = 60.0

    def __init__(self, app, requests_per_minute: int, write_requests_per_minute: int | None = None):
        super().__init__(app)
        self.read_limit = max(1, requests_per_minute)
        self.write_limit = max(1, write_requests_per_minute or requests_per_minute)
        self._hits: dict[tuple[str, bool], deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    def _caller(self, request: Request) -> str:
        api_key = request.headers.get("X-API-Key")
        if api_key:
            return f"key:{api_key}"
        return f"ip:{request.client.host if request.client else 'unknown'}"

    async def dispatch(self, request: Request, call_next):
        if request.url.path in UNTHROTTLED_PATHS:
            return await call_next(request)

        is_write = request.method in WRITE_METHODS
        limit = self.write_limit if is_write else self.read_limit
        now = time.monotonic()

        async with self._lock:
            hits = self._hits[(self._caller(request), is_write)]
            while hits and hits[0] <= now - self.window_seconds:
                hits.popleft()
            if len(hits) >= limit:
                retry_after = max(1, int(self.window_seconds - (now - hits[0])))
                logger.info("Rate limited %s %s", request.method, request.url.path)
                return JSONResponse(
                    status_code=429,
                    content={"detail": "Rate limit exceeded", "limit_per_minute": limit},
                    headers={"Retry-After": str(retry_after)},
                )
            hits.append(now)

        return await call_next(request)
