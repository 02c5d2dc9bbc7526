"""
Per-request correlation and access logging.

Every request gets an ID (taken from ``X-Request-ID`` when the caller
supplies one) that is placed in the logging context, so the provider
logs written while a panic fans out can be joined back to the HTTP call
that triggered it.  The acting ``user_id`` is added to the context when
it appears in the query string.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

# Paths polled by probes and the docs UI; not worth an access line each
_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health")


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def _access_line(request: Request, status_code: int, duration_ms: float, client_ip: str) -> None:
    path = request.url.path
    if path.startswith(_QUIET_PREFIXES):
        return
    level = logging.WARNING if status_code >= 400 else logging.INFO
    logger.log(
        level,
        "%s %s → %d (%.1fms) [%s]",
        request.method, path, status_code, duration_ms, client_ip,
        extra={
            "duration_ms": round(duration_ms, 1),
            "status_code": status_code,
            "endpoint": path,
        },
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Correlation ID, timing headers and one access log line per request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id: str = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        client_ip = request.client.host if request.client else "unknown"
        user_id: Optional[str] = request.query_params.get("user_id")

        context = {
            "request_id": request_id,
            "client_ip": client_ip,
            "endpoint": request.url.path,
            "method": request.method,
        }
        if user_id:
            context["user_id"] = user_id
        set_request_context(**context)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "Unhandled error in %s %s after %.1fms",
                request.method, request.url.path, _elapsed_ms(start),
                extra={"status_code": 500},
            )
            set_request_context()
            raise

        duration_ms = _elapsed_ms(start)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"
        _access_line(request, response.status_code, duration_ms, client_ip)

        set_request_context()
        return response
