"""Application-specific exceptions for consistent error handling."""

from typing import Any

from fastapi import HTTPException

from mastery_engine.core.errors import EngineError, status_for


class AppError(HTTPException):
    """Application error with standardized error code."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | list[Any] | None = None,
    ):
        """Initialize application error."""
        super().__init__(
            status_code=status_code,
            detail={
                "code": code,
                "message": message,
                "details": details,
            },
        )
        self.code = code
        self.message = message
        self.details = details

    @classmethod
    def from_engine_error(cls, exc: EngineError) -> "AppError":
        """Translate an engine error into its HTTP form."""
        return cls(
            status_code=status_for(exc),
            code=exc.code,
            message=exc.message,
            details=exc.details,
        )

