"""Structured API error responses.

Every error leaves the API as ``{"error": {"error_code", "message", "details"}}``.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from automation_engine.errors import AutomationError


class ErrorDetail(BaseModel):
    """Detailed error information."""

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] = Field(default_factory=dict)
    request_id: str | None = Field(None, description="Request ID for tracing (if available)")


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: ErrorDetail


# Map AutomationError codes to HTTP status codes
ERROR_STATUS_MAP: dict[str, int] = {
    "WEBHOOK_VERIFICATION": 401,
    "RULE_VALIDATION": 400,
    "RULE_NOT_FOUND": 404,
    "RUN_NOT_FOUND": 404,
    "RULE_DISABLED": 409,
}


def get_status_code(error_code: str) -> int:
    """Get HTTP status code for an error code."""
    return ERROR_STATUS_MAP.get(error_code, 500)


def automation_error_to_response(
    error: AutomationError,
    request_id: str | None = None,
) -> JSONResponse:
    """Convert an AutomationError to a structured JSON response."""
    content = ErrorResponse(
        error=ErrorDetail(
            error_code=error.code,
            message=error.message,
            details=error.details,
            request_id=request_id,
        )
    )
    return JSONResponse(status_code=get_status_code(error.code), content=content.model_dump())


async def automation_exception_handler(request: Request, exc: AutomationError) -> JSONResponse:
    """FastAPI exception handler for AutomationError."""
    return automation_error_to_response(exc, request.headers.get("X-Request-ID"))


class APIException(HTTPException):
    """HTTPException with a structured error body."""

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.error_code = error_code
        self.message = message
        self.error_details = details or {}
        super().__init__(status_code=status_code, detail=message)

    def to_response(self, request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error=ErrorDetail(
                error_code=self.error_code,
                message=self.message,
                details=self.error_details,
                request_id=request_id,
            )
        )


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    """FastAPI exception handler for APIException."""
    request_id = request.headers.get("X-Request-ID")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(request_id).model_dump(),
    )


COMMON_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Bad Request - Invalid input or parameters"},
    401: {"model": ErrorResponse, "description": "Unauthorized - Webhook verification failed"},
    404: {"model": ErrorResponse, "description": "Not Found - Resource does not exist"},
    409: {"model": ErrorResponse, "description": "Conflict - Rule is disabled"},
    429: {"model": ErrorResponse, "description": "Rate Limited - Too many requests"},
    503: {"model": ErrorResponse, "description": "Service Unavailable - Engine not initialized"},
}


def responses(*status_codes: int) -> dict:
    """Generate a responses dict for specific status codes."""
    return {code: COMMON_RESPONSES[code] for code in status_codes if code in COMMON_RESPONSES}


def bad_request(message: str, details: dict[str, Any] | None = None) -> APIException:
    return APIException(status_code=400, error_code="VALIDATION", message=message, details=details)


def service_unavailable(message: str = "Automation engine not initialized") -> APIException:
    return APIException(status_code=503, error_code="SERVICE_UNAVAILABLE", message=message)
