"""HTTP middleware for The Circle API.

Request ID tracing, access logging, security headers, and Prometheus
HTTP metrics. Registered in circle/main.py. WebSocket traffic on /ws
bypasses all of these (BaseHTTPMiddleware only sees HTTP scopes).

Usage:
    from circle.common.logging import request_id_var
    rid = request_id_var.get("")  # Current request ID from anywhere
"""

from __future__ import annotations

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from circle.common.logging import get_logger, request_id_var
from circle.common.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
    HTTP_REQUESTS_TOTAL,
)

logger = get_logger("API")

# Probe and scrape paths are excluded from access logs and metrics.
# /api/notifications is polled every 30s by every open tab; it is logged at DEBUG.
_QUIET_PATHS = frozenset({"/health", "/ready", "/metrics"})
_POLLED_PATHS = frozenset({"/api/notifications", "/api/notifications/unread-count"})

# Collapse ids in paths so metric labels stay low-cardinality
_PATH_ID_PATTERNS = [
    (re.compile(r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"), "/{id}"),
    (re.compile(r"/[0-9a-f]{32}"), "/{id}"),
    (re.compile(r"/\d+"), "/{id}"),
]


def _normalize_path(path: str) -> str:
    """Replace UUIDs, hex ids, and numeric ids in a path with {id}.

    Examples:
        /api/circles/3f2a...e1/messages      -> /api/circles/{id}/messages
        /api/notifications/42/read           -> /api/notifications/{id}/read
    """
    for pattern, replacement in _PATH_ID_PATTERNS:
        path = pattern.sub(replacement, path)
    return path


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to the context and the ``X-Request-ID`` header.

    Honors an incoming ``X-Request-ID`` so a frontend or proxy can
    correlate its own logs; otherwise a UUID4 hex is generated.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex
        request_id_var.set(rid)

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status, and duration for every HTTP request."""

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        path = request.url.path
        if path in _QUIET_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        log = logger.debug if path in _POLLED_PATHS else logger.info
        log(
            f"{request.method} {path} {response.status_code}",
            extra={
                "data": {
                    "method": request.method,
                    "path": path,
                    "status": response.status_code,
                    "duration_ms": round(duration_ms, 1),
                }
            },
        )
        return response


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Record request count, duration histogram, and in-progress gauge."""

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        if request.url.path in _QUIET_PATHS:
            return await call_next(request)

        method = request.method
        path_template = _normalize_path(request.url.path)
        status_code = "500"

        HTTP_REQUESTS_IN_PROGRESS.labels(method=method).inc()
        start = time.perf_counter()
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
            return response
        finally:
            HTTP_REQUESTS_IN_PROGRESS.labels(method=method).dec()
            HTTP_REQUESTS_TOTAL.labels(
                method=method,
                path_template=path_template,
                status_code=status_code,
            ).inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(
                method=method,
                path_template=path_template,
            ).observe(time.perf_counter() - start)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add OWASP-recommended security headers to every HTTP response."""

    HEADERS: dict[str, str] = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
        "Cache-Control": "no-store",
    }

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        response = await call_next(request)
        for header, value in self.HEADERS.items():
            response.headers[header] = value
        return response
