"""Engine error taxonomy and the consistent HTTP error response format."""

import uuid
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class EngineError(Exception):
    """Base class for errors raised by the learning engine.

    Carries a stable machine-readable code, a human message and optional
    structured details, mirroring the HTTP error envelope.
    """

    code = "ENGINE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidInput(EngineError):
    """Caller supplied something outside the accepted domain."""

    code = "INVALID_INPUT"


class MissingEntity(EngineError):
    """A referenced topic, arm or review item does not exist."""

    code = "MISSING_ENTITY"


class ConcurrencyConflict(EngineError):
    """A concurrent writer changed the row between read and write."""

    code = "CONCURRENCY_CONFLICT"


class DegenerateDistribution(EngineError):
    """Selection weights are unusable. Selectors fall back to uniform."""

    code = "DEGENERATE_DISTRIBUTION"


class ErrorResponse(BaseModel):
    """Error response envelope.

    Format: {error_code, message, details, request_id}
    """

    error_code: str
    message: str
    details: Any | None = None
    request_id: str | None = None


ENGINE_ERROR_STATUS: dict[type[EngineError], int] = {
    InvalidInput: status.HTTP_422_UNPROCESSABLE_ENTITY,
    MissingEntity: status.HTTP_404_NOT_FOUND,
    ConcurrencyConflict: status.HTTP_409_CONFLICT,
}


def status_for(exc: EngineError) -> int:
    """HTTP status code for an engine error (500 when unmapped)."""
    for error_type, status_code in ENGINE_ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def get_request_id(request: Request) -> str:
    """Get request ID from request state or generate new one."""
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return str(uuid.uuid4())


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors (422)."""
    request_id = get_request_id(request)

    details: list[dict[str, Any]] = []
    for error in exc.errors():
        details.append(
            {
                "field": ".".join(str(loc) for loc in error.get("loc", [])),
                "issue": error.get("msg", "Validation error"),
                "type": error.get("type", "validation_error"),
            }
        )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Invalid request data",
            details=details,
            request_id=request_id,
        ).model_dump(),
    )


async def engine_exception_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Handle engine errors that escaped an endpoint."""
    return JSONResponse(
        status_code=status_for(exc),
        content=ErrorResponse(
            error_code=exc.code,
            message=exc.message,
            details=exc.details,
            request_id=get_request_id(request),
        ).model_dump(),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    from mastery_engine.core.app_exceptions import AppError

    request_id = get_request_id(request)

    # AppError carries a structured detail with code
    if isinstance(exc, AppError):
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error_code=exc.code,
                message=exc.message,
                details=exc.details,
                request_id=request_id,
            ).model_dump(),
        )

    details = None
    code = "HTTP_ERROR"
    if isinstance(exc.detail, dict):
        if "code" in exc.detail:
            code = exc.detail["code"]
            message = exc.detail.get("message", "An error occurred")
            details = exc.detail.get("details")
        else:
            details = exc.detail.copy()
            message = details.pop("message", "An error occurred")
    elif isinstance(exc.detail, str):
        message = exc.detail
    else:
        message = str(exc.detail)

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error_code=code,
            message=message,
            details=details,
            request_id=request_id,
        ).model_dump(),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions (500)."""
    request_id = get_request_id(request)

    # In production, don't expose internal error details
    from mastery_engine.core.config import settings

    if settings.ENV == "prod":
        message = "An internal server error occurred"
        details = None
    else:
        message = str(exc)
        details = {"type": type(exc).__name__}

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error_code="INTERNAL_ERROR",
            message=message,
            details=details,
            request_id=request_id,
        ).model_dump(),
    )
