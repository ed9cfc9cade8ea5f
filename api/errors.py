"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.exceptions import (
    BillingError,
    ConflictError,
    ExternalServiceError,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Most specific first
_STATUS_BY_KIND = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvalidStateTransition, 409),
    (ExternalServiceError, 502),
)


def status_for(exc: BillingError) -> int:
    for kind, status_code in _STATUS_BY_KIND:
        if isinstance(exc, kind):
            return status_code
    return 400


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _format_pydantic_errors(errors: list[dict]) -> str:
    parts = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else error.get("msg", ""))
    return "; ".join(parts)


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"External service failure: {exc}")
        return JSONResponse(
            status_code=status_code,
            content=error_response(exc.code, str(exc), _request_id(request)).model_dump(mode="json"),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                _format_pydantic_errors(exc.errors()),
                _request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(PydanticValidationError)
    async def model_validation_error_handler(request: Request, exc: PydanticValidationError):
        # Action payloads are validated inside the handlers, not by FastAPI
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                _format_pydantic_errors(exc.errors()),
                _request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content=error_response(
                ErrorCodes.INTERNAL_ERROR,
                "An internal error occurred",
                _request_id(request),
            ).model_dump(mode="json"),
        )
