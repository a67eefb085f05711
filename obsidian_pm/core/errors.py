"""
Application errors and the JSON error envelope.

Every error response has the shape

    {"error": {"code", "message", "request_id"}, "detail": message}

and echoes the request id in the `x-request-id` header.
"""

import logging
from typing import Optional
from uuid import uuid4

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

from obsidian_pm.core.logging import get_logger, get_request_id


class AppError(Exception):
    """Base for errors that map onto an HTTP status and a stable code."""

    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.status_code = status_code or self.status_code


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class AuthenticationError(AppError):
    code = "unauthorized"
    status_code = 401


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class PersistenceError(AppError):
    """A datastore write failed; the caller may retry."""
    code = "persistence_error"
    status_code = 500


class BillingDisabledError(AppError):
    code = "billing_disabled"
    status_code = 503


_HTTP_CODES = {401: "unauthorized", 403: "forbidden", 404: "not_found", 405: "method_not_allowed"}


def _error_response(request: Request, status: int, code: str, message: str) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None) or get_request_id() or uuid4().hex
    return JSONResponse(
        status_code=status,
        content={
            "error": {"code": code, "message": message, "request_id": request_id},
            "detail": message,
        },
        headers={"x-request-id": request_id},
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    get_logger().log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={"error_code": exc.code, "status": exc.status_code, "error_message": exc.message},
    )
    return _error_response(request, exc.status_code, exc.code, exc.message)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    get_logger().warning("http.error", extra={"error_code": code, "status": exc.status_code})
    return _error_response(request, exc.status_code, code, str(exc.detail or "HTTP error"))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    get_logger().error("unhandled.exception", exc_info=exc, extra={"error_code": "internal_error"})
    return _error_response(request, 500, "internal_error", "Unexpected error")


def register_error_handlers(app) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
