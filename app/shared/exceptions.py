"""Custom exception hierarchy and handlers."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception.

    Keyword arguments become ``details`` in the error envelope so clients can
    act on them (e.g. how many credits are missing) without parsing messages.
    """

    status_code = 400
    code = "app_error"

    def __init__(self, message: str, **details: Any) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_envelope(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = jsonable_encoder(self.details)
        return {"error": error}


class NotFoundException(AppException):
    """Raised when entity is not found."""

    status_code = 404
    code = "not_found"


class ConflictException(AppException):
    """Raised when entity conflicts with current state (e.g. slot taken)."""

    status_code = 409
    code = "conflict"


class UnauthorizedException(AppException):
    """Raised when user has no rights for operation."""

    status_code = 403
    code = "forbidden"


class ValidationException(AppException):
    """Raised for a bad slot or duration, before any side effect."""

    status_code = 422
    code = "validation_error"


class InsufficientCreditsException(AppException):
    """Raised when the payer's available balance cannot cover a booking."""

    status_code = 402
    code = "insufficient_credits"


class RoomProvisioningException(AppException):
    """Raised when the room provider fails or times out."""

    status_code = 502
    code = "room_provisioning_failed"


class SessionTimingException(AppException):
    """Raised when a join is attempted outside the legal window."""

    status_code = 422
    code = "session_timing"


class SettlementAlreadyAppliedException(AppException):
    """Idempotency guard: the reservation was already captured or released.

    Settlement treats it as success; it never reaches a client.
    """

    status_code = 409
    code = "settlement_already_applied"


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Render domain exceptions; 5xx ones are provider failures worth a warning."""
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions in unified shape."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": "http_error", "message": str(exc.detail)}},
    )


async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies and params share the domain validation code."""
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": ValidationException.code,
                "message": "Invalid request",
                "details": jsonable_encoder(exc.errors()),
            },
        },
    )


async def unhandled_exception_handler(_: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "internal_error", "message": "Internal server error"}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
