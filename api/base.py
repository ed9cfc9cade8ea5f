"""Unified API response format and error handling."""

from typing import Any
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from utils.timezone import now_utc


class APIError(BaseModel):
    """Error details in API response."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")


class APIMeta(BaseModel):
    """Metadata included in every API response."""

    timestamp: datetime = Field(..., description="Response timestamp (UTC)")
    request_id: str = Field(..., description="Unique request identifier for tracing")


class APIResponse(BaseModel):
    """
    Unified response format for all API endpoints.

    Every endpoint returns this structure, making client parsing predictable.
    """

    success: bool
    data: Any | None = None
    error: APIError | None = None
    warnings: list[str] = Field(default_factory=list)
    meta: APIMeta


def _meta(request_id: str | None) -> APIMeta:
    return APIMeta(timestamp=now_utc(), request_id=request_id or str(uuid4()))


def success_response(data: Any, warnings: list[str] | None = None, request_id: str | None = None) -> APIResponse:
    """Create a success response. Warnings report side effects that failed after commit."""
    return APIResponse(
        success=True,
        data=data,
        error=None,
        warnings=warnings or [],
        meta=_meta(request_id),
    )


def error_response(code: str, message: str, request_id: str | None = None) -> APIResponse:
    """Create an error response."""
    return APIResponse(
        success=False,
        data=None,
        error=APIError(code=code, message=message),
        meta=_meta(request_id),
    )


class ErrorCodes:
    """
    Standard error codes for consistent error handling.

    Billing errors carry their own code (core.exceptions); these cover the
    transport and infrastructure cases.
    """

    # Authentication
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    INVALID_TOKEN = "INVALID_TOKEN"

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Infrastructure
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
