"""
Error handling middleware and exception handlers.

Business-rule errors (``VMSError``) become their own status and machine
code; database failures are reported without leaking statement text.
Every error response uses the same envelope:

    {"error": {"code", "message", "path", "method", ["details"], ["request_id"]}}
"""

import logging
import traceback
from typing import Any, Callable, Optional
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError, IntegrityError, OperationalError
import re

from core.exceptions import VMSError

logger = logging.getLogger(__name__)

# Patterns for sensitive data that should never be logged or returned
SENSITIVE_PATTERNS = [
    re.compile(r'password["\s:=]+[^"\s,}]+', re.IGNORECASE),
    re.compile(r'token["\s:=]+[^"\s,}]+', re.IGNORECASE),
    re.compile(r'api[_-]?key["\s:=]+[^"\s,}]+', re.IGNORECASE),
    re.compile(r'secret["\s:=]+[^"\s,}]+', re.IGNORECASE),
    re.compile(r'authorization["\s:]+[^"\s,}]+', re.IGNORECASE),
    re.compile(r'[\w.+-]+@[\w-]+\.[\w.-]+'),  # e-mail addresses
]


def sanitize_error_message(message: str) -> str:
    """
    Remove sensitive information from error messages.

    Args:
        message: Original error message

    Returns:
        Sanitized error message
    """
    sanitized = message
    for pattern in SENSITIVE_PATTERNS:
        sanitized = pattern.sub('[REDACTED]', sanitized)
    return sanitized


def get_safe_error_details(exc: Exception, include_details: bool = False) -> dict[str, Any]:
    """Type and sanitized message of an exception, plus a traceback in debug."""
    details = {
        "type": type(exc).__name__,
        "message": sanitize_error_message(str(exc)),
    }
    if include_details:
        details["traceback"] = traceback.format_exc()
    return details


def error_envelope(
    code: str,
    message: str,
    path: str,
    method: str,
    details: Optional[Any] = None,
) -> dict[str, Any]:
    error = {"code": code, "message": message, "path": path, "method": method}
    if details is not None:
        error["details"] = details
    return {"error": error}


def vms_error_response(exc: VMSError, path: str, method: str) -> JSONResponse:
    """Response for a business-rule error; it is expected, so logged as a warning."""
    payload = exc.to_dict()
    logger.warning(f"{exc.code}: {method} {path} - {sanitize_error_message(exc.message)}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(
            exc.code,
            sanitize_error_message(exc.message),
            path,
            method,
            payload.get("details"),
        ),
    )


def format_validation_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    errors = []
    for error in exc.errors():
        errors.append(
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": sanitize_error_message(error["msg"]),
                "type": error["type"],
            }
        )
    return errors


class ErrorHandlingMiddleware:
    """
    Outermost ASGI layer: turns anything that escaped the exception
    handlers into the JSON error envelope.
    """

    def __init__(self, app: Callable, debug: bool = False):
        """
        Initialize error handling middleware.

        Args:
            app: The ASGI application
            debug: Whether to include detailed error information
        """
        self.app = app
        self.debug = debug

    async def __call__(self, scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        try:
            await self.app(scope, receive, send)
        except Exception as exc:
            response = await self._handle_exception(exc, scope)
            await response(scope, receive, send)

    async def _handle_exception(self, exc: Exception, scope: dict) -> Response:
        """
        Map an exception to a status code and error code.

        Args:
            exc: The exception to handle
            scope: ASGI scope for context

        Returns:
            JSONResponse with error details
        """
        request_path = scope.get("path", "unknown")
        request_method = scope.get("method", "unknown")

        if isinstance(exc, VMSError):
            return vms_error_response(exc, request_path, request_method)

        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        error_code = "INTERNAL_SERVER_ERROR"
        message = "An unexpected error occurred"
        details = None

        if isinstance(exc, StarletteHTTPException):
            status_code = exc.status_code
            error_code = "HTTP_EXCEPTION"
            message = sanitize_error_message(str(exc.detail))
            logger.warning(
                f"HTTP exception: {request_method} {request_path} - "
                f"Status: {status_code}, Message: {message}"
            )

        elif isinstance(exc, RequestValidationError):
            status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
            error_code = "VALIDATION_ERROR"
            message = "Request validation failed"
            details = format_validation_errors(exc)
            logger.warning(f"Validation error: {request_method} {request_path} - {details}")

        elif isinstance(exc, IntegrityError):
            status_code = status.HTTP_409_CONFLICT
            error_code = "INTEGRITY_ERROR"
            message = "Database integrity constraint violated"
            if self.debug:
                details = get_safe_error_details(exc, include_details=True)
            logger.error(
                f"Database integrity error: {request_method} {request_path}",
                exc_info=not self.debug,
            )

        elif isinstance(exc, OperationalError):
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            error_code = "DATABASE_ERROR"
            message = "Database service temporarily unavailable"
            logger.error(
                f"Database operational error: {request_method} {request_path}",
                exc_info=True,
            )

        elif isinstance(exc, SQLAlchemyError):
            error_code = "DATABASE_ERROR"
            message = "A database error occurred"
            if self.debug:
                details = get_safe_error_details(exc, include_details=True)
            logger.error(
                f"SQLAlchemy error: {request_method} {request_path}",
                exc_info=not self.debug,
            )

        elif isinstance(exc, ValueError):
            status_code = status.HTTP_400_BAD_REQUEST
            error_code = "INVALID_INPUT"
            message = sanitize_error_message(str(exc)) or "Invalid input provided"
            logger.warning(f"Value error: {request_method} {request_path} - {message}")

        else:
            if self.debug:
                details = get_safe_error_details(exc, include_details=True)
            logger.error(
                f"Unhandled exception: {request_method} {request_path} - "
                f"{type(exc).__name__}: {sanitize_error_message(str(exc))}",
                exc_info=True,
            )

        error_response = error_envelope(
            error_code, message, request_path, request_method, details
        )
        headers = dict(scope.get("headers") or [])
        request_id = headers.get(b"x-request-id")
        if request_id:
            error_response["error"]["request_id"] = request_id.decode()

        return JSONResponse(status_code=status_code, content=error_response)


def setup_error_handlers(app):
    """
    Set up exception handlers for FastAPI application.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(VMSError)
    async def vms_exception_handler(request: Request, exc: VMSError):
        return vms_error_response(exc, str(request.url.path), request.method)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(
                "HTTP_EXCEPTION",
                sanitize_error_message(str(exc.detail)),
                str(request.url.path),
                request.method,
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_envelope(
                "VALIDATION_ERROR",
                "Request validation failed",
                str(request.url.path),
                request.method,
                format_validation_errors(exc),
            ),
        )

    @app.exception_handler(IntegrityError)
    async def integrity_exception_handler(request: Request, exc: IntegrityError):
        logger.error(f"Database integrity error: {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=error_envelope(
                "INTEGRITY_ERROR",
                "Database integrity constraint violated",
                str(request.url.path),
                request.method,
            ),
        )
