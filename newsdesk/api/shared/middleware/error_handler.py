"""
Global Error Handlers

Turns API exceptions, core errors and unexpected failures into the
standard error envelope.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ....core.errors import ConflictInFlight, StoreError, ValidationError
from ..error_codes import ErrorCode, get_status_code
from ..exceptions import APIException
from ..responses import ErrorBody, ErrorDetail

logger = logging.getLogger(__name__)


def _error_response(code: ErrorCode, body: ErrorBody, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=get_status_code(code),
        content=body.envelope(),
        headers=headers,
    )


def register_error_handlers(app: FastAPI):
    """
    Register all error handlers on the FastAPI app.

    - APIException (errors raised by the HTTP layer)
    - ValidationError / ConflictInFlight / StoreError (core errors)
    - RequestValidationError (FastAPI validation)
    - Generic Exception (catch-all for unexpected errors)
    """

    @app.exception_handler(APIException)
    async def api_exception_handler(request: Request, exc: APIException):
        """Handle custom API exceptions."""
        logger.warning(
            f"API Error: {exc.code.value} - {exc.message}",
            extra={"error_code": exc.code.value, "path": request.url.path}
        )
        body = ErrorBody(code=exc.code.value, message=exc.message, details=exc.details)
        return _error_response(exc.code, body, headers=exc.headers)

    @app.exception_handler(ValidationError)
    async def core_validation_handler(request: Request, exc: ValidationError):
        details = [ErrorDetail(field=exc.field, message=exc.message)] if exc.field else None
        body = ErrorBody(
            code=ErrorCode.VALIDATION_ERROR.value,
            message=exc.message,
            details=details,
        )
        logger.info(f"Rejected request to {request.url.path}: {exc.message}")
        return _error_response(ErrorCode.VALIDATION_ERROR, body)

    @app.exception_handler(ConflictInFlight)
    async def conflict_in_flight_handler(request: Request, exc: ConflictInFlight):
        body = ErrorBody(code=ErrorCode.CONFLICT_IN_FLIGHT.value, message=str(exc))
        return _error_response(
            ErrorCode.CONFLICT_IN_FLIGHT,
            body,
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error(
            f"Store unavailable: {exc}",
            extra={"path": request.url.path}
        )
        body = ErrorBody(
            code=ErrorCode.STORE_UNAVAILABLE.value,
            message="The service is temporarily unavailable, retry later",
        )
        return _error_response(ErrorCode.STORE_UNAVAILABLE, body)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle FastAPI validation errors."""
        details = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            details.append(ErrorDetail(
                field=field,
                message=error["msg"],
                code=error["type"]
            ))

        logger.warning(
            f"Validation Error: {len(details)} field(s)",
            extra={"path": request.url.path}
        )

        body = ErrorBody(
            code=ErrorCode.VALIDATION_ERROR.value,
            message="Request validation failed",
            details=details,
        )
        return _error_response(ErrorCode.VALIDATION_ERROR, body)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error(
            f"Unhandled Exception: {type(exc).__name__}: {exc}",
            extra={"path": request.url.path},
            exc_info=exc
        )

        # Don't expose internal details
        body = ErrorBody(
            code=ErrorCode.INTERNAL_ERROR.value,
            message="An internal error occurred",
        )
        return _error_response(ErrorCode.INTERNAL_ERROR, body)
