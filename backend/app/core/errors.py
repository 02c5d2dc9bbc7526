"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Only validation and not-found conditions ever reach a caller of the
dispatch core. Transport failures are absorbed into per-recipient
delivery results; ``TransportError`` exists so provider code can raise
internally and convert at its own boundary.

Usage:
    from backend.app.core.errors import (
        DispatchAPIError,
        InvalidLocationError,
        NotFoundOrInactiveError,
        register_error_handlers,
    )

    raise NotFoundOrInactiveError()
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class DispatchAPIError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationError(DispatchAPIError):
    """Input validation failed (422). Never retried."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        error_code: str = "VALIDATION_ERROR",
        **details: Any,
    ):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code=error_code,
            details=d,
        )


class InvalidLocationError(ValidationError):
    """Trigger coordinates are missing, non-finite or out of range (422)."""

    def __init__(self, message: str = "Invalid location", **details: Any):
        super().__init__(message, error_code="INVALID_LOCATION", **details)


class NotFoundError(DispatchAPIError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        *,
        message: Optional[str] = None,
        error_code: str = "NOT_FOUND",
        **identifiers: Any,
    ):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=message or f"{resource} not found",
            status_code=404,
            error_code=error_code,
            details=details,
        )


class NotFoundOrInactiveError(NotFoundError):
    """
    Alert missing, owned by someone else, or no longer active (404).

    The three cases are indistinguishable to the caller.
    """

    def __init__(self) -> None:
        super().__init__(
            "PanicAlert",
            message="Alert not found or no longer active",
            error_code="NOT_FOUND_OR_INACTIVE",
        )


class TransportError(DispatchAPIError):
    """A channel provider call failed or timed out (502)."""

    def __init__(self, provider: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Provider '{provider}' failed: {message}",
            status_code=502,
            error_code="TRANSPORT_ERROR",
            details={"provider": provider, **details},
        )
        self.provider = provider
        self.reason = message


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    # Include request path in non-production
    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(DispatchAPIError)
    async def handle_dispatch_error(request: Request, exc: DispatchAPIError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "VALIDATION_ERROR", str(exc), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
        )
