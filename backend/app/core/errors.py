"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error response format
    • Itemised validation errors (every violated field reported together)
    • Automatic logging of unhandled errors

Usage:
    from backend.app.core.errors import NotFoundError, ForbiddenError

    raise NotFoundError("Alert", alert_id="...")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Iterable, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class RescueConnectError(Exception):
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


class ValidationError(RescueConnectError):
    """
    Input validation failed (400).

    ``errors`` is the full list of ``{"field": ..., "message": ...}`` items,
    one per violation.
    """

    def __init__(self, errors: List[Dict[str, str]], message: str = "Validation error"):
        self.errors = list(errors)
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details={"errors": self.errors},
        )

    @property
    def fields(self) -> List[str]:
        return [e["field"] for e in self.errors]

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}])


class NotFoundError(RescueConnectError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ForbiddenError(RescueConnectError):
    """Actor lacks rights for the operation (403)."""

    def __init__(self, message: str = "Not authorized", **details: Any):
        super().__init__(
            message=message,
            status_code=403,
            error_code="FORBIDDEN",
            details=details,
        )


class UnauthorizedError(RescueConnectError):
    """No actor identity on the request (401)."""

    def __init__(self, message: str = "Actor identity is missing"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="UNAUTHORIZED",
        )


class DependencyUnavailableError(RescueConnectError):
    """A backing store or query the operation relies on failed (503)."""

    def __init__(self, dependency: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Dependency '{dependency}' unavailable: {message}",
            status_code=503,
            error_code="DEPENDENCY_UNAVAILABLE",
            details={"dependency": dependency, **details},
        )
        self.dependency = dependency


# ═══════════════════════════════════════════════════════════════════════════
# Pydantic error conversion
# ═══════════════════════════════════════════════════════════════════════════

def _field_name(loc: Iterable[Any]) -> str:
    # Drop the request section ("body", "query", ...) FastAPI prefixes
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or "body"


def itemise_pydantic_errors(errors: Iterable[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Flatten pydantic ``errors()`` output into ``{field, message}`` items."""
    items = []
    for err in errors:
        message = err.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        items.append({"field": _field_name(err.get("loc", ())), "message": message})
    return items


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

    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(RescueConnectError)
    async def handle_app_error(request: Request, exc: RescueConnectError):
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(
            level,
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = itemise_pydantic_errors(exc.errors())
        logger.warning("Request validation failed: %s", errors)
        return _build_error_response(
            400, "VALIDATION_ERROR", "Validation error",
            {"errors": errors}, request,
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
