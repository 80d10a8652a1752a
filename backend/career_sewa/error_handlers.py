"""
Career Sewa API — Global Exception Handlers
=============================================

What:  Translates every exception that escapes a route into the taxonomy and
       renders it through the response envelope.
Why:   No library-specific error shape (pydantic error lists, driver
       messages, Starlette's {"detail": ...}) ever reaches a client.
How:   convert_to_api_error() is the single translation point; one handler
       registered for each exception family calls it, logs, and renders.

Translation table:
    APIError                        → itself
    RequestValidationError          → 422 (400 when the body is not JSON)
    pydantic.ValidationError        → 422
    sqlalchemy IntegrityError       → 409
    JWT/JOSE token errors           → 401
    Starlette HTTPException 404     → 404 "Route <path> not found"
    Starlette HTTPException 405     → 405
    Starlette HTTPException 429     → 429
    json.JSONDecodeError            → 400
    anything else                   → 500

Rendering:
    development  data = {message, statusCode, stack, isOperational}
    otherwise    data = null; 5xx messages become "Internal server error"
"""

import json
import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from career_sewa.config import Settings
from career_sewa.exceptions import (
    APIError,
    BadGatewayError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    GatewayTimeoutError,
    InternalServerError,
    MethodNotAllowedError,
    NotFoundError,
    NotImplementedAPIError,
    ServiceUnavailableError,
    TooManyRequestsError,
    UnauthorizedError,
    ValidationFailedError,
)
from career_sewa.middleware.request_id import request_id_var
from career_sewa.schemas.response import APIResponse

logger = logging.getLogger(__name__)

GENERIC_SERVER_MESSAGE = "Internal server error"

# Body keys whose values never reach a log line
SENSITIVE_KEYS = ("password", "token", "secret")


def convert_to_api_error(exc: BaseException, request: Optional[Request] = None) -> APIError:
    """Map any exception onto the fixed taxonomy."""
    if isinstance(exc, APIError):
        return exc

    if isinstance(exc, RequestValidationError):
        if any(error.get("type") == "json_invalid" for error in exc.errors()):
            return BadRequestError("Invalid JSON payload")
        return ValidationFailedError.from_validation_error(exc)

    if isinstance(exc, PydanticValidationError):
        return ValidationFailedError.from_validation_error(exc)

    if isinstance(exc, IntegrityError):
        return ConflictError.from_integrity_error(exc)

    if UnauthorizedError.is_token_error(exc):
        return UnauthorizedError.from_token_error(exc)

    if isinstance(exc, StarletteHTTPException):
        return _from_http_exception(exc, request)

    if isinstance(exc, json.JSONDecodeError):
        return BadRequestError("Invalid JSON payload")

    return InternalServerError(str(exc) or None, context={"error_type": type(exc).__name__})


# Statuses raised as plain HTTPException that have a taxonomy member.
# 404 and 405 are handled separately so their messages can name the route.
_HTTP_STATUS_ERRORS = {
    400: BadRequestError,
    401: UnauthorizedError,
    403: ForbiddenError,
    409: ConflictError,
    422: ValidationFailedError,
    429: TooManyRequestsError,
    500: InternalServerError,
    501: NotImplementedAPIError,
    502: BadGatewayError,
    503: ServiceUnavailableError,
    504: GatewayTimeoutError,
}


def _from_http_exception(exc: StarletteHTTPException, request: Optional[Request]) -> APIError:
    path = request.url.path if request is not None else ""
    if exc.status_code == 404:
        if exc.detail in (None, "Not Found") and request is not None:
            return NotFoundError(f"Route {path} not found")
        return NotFoundError(str(exc.detail))
    if exc.status_code == 405:
        method = request.method if request is not None else ""
        return MethodNotAllowedError(f"Method {method} not allowed for {path}".strip())
    error_class = _HTTP_STATUS_ERRORS.get(exc.status_code)
    if error_class is not None:
        return error_class(str(exc.detail))
    return APIError(
        message=str(exc.detail),
        status_code=exc.status_code,
        is_operational=exc.status_code < 500,
    )


def sanitize_body(body: Any) -> Any:
    """Drop credential-bearing fields from a request body before logging it."""
    if isinstance(body, dict):
        return {
            key: sanitize_body(value)
            for key, value in body.items()
            if not any(marker in str(key).lower() for marker in SENSITIVE_KEYS)
        }
    if isinstance(body, list):
        return [sanitize_body(item) for item in body]
    return body


def _request_context(request: Request, exc: BaseException) -> Dict[str, Any]:
    context: Dict[str, Any] = {
        "request_id": request_id_var.get("") or getattr(request.state, "request_id", ""),
        "method": request.method,
        "path": request.url.path,
        "query": dict(request.query_params),
        "client_ip": request.client.host if request.client else "unknown",
        "user_agent": request.headers.get("user-agent", ""),
    }
    body = getattr(exc, "body", None)
    if body is not None:
        context["body"] = sanitize_body(body)
    return context


def log_api_error(request: Request, error: APIError, exc: BaseException) -> None:
    """≥500 at error level with the stack trace; 4xx at warning level without."""
    context = _request_context(request, exc)
    context.update(status_code=error.status_code, is_operational=error.is_operational)

    if error.status_code >= 500:
        logger.error(
            "%s %s -> %d: %s",
            request.method,
            request.url.path,
            error.status_code,
            error.message,
            exc_info=(type(exc), exc, exc.__traceback__),
            extra=context,
        )
    else:
        logger.warning(
            "%s %s -> %d: %s",
            request.method,
            request.url.path,
            error.status_code,
            error.message,
            extra=context,
        )


def render_api_error(error: APIError, exc: BaseException, settings: Settings) -> JSONResponse:
    message = error.message
    data: Optional[Dict[str, Any]] = None

    if settings.is_development:
        data = {
            "message": error.message,
            "statusCode": error.status_code,
            "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            "isOperational": error.is_operational,
        }
    elif error.status_code >= 500:
        message = GENERIC_SERVER_MESSAGE

    headers = None
    if isinstance(error, TooManyRequestsError) and error.retry_after is not None:
        headers = {"Retry-After": str(error.retry_after)}

    return APIResponse.error(error.status_code, message, data).to_response(headers=headers)


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """
    Install one handler per exception family; all of them share the same
    translate → log → render path.
    """

    async def handle_exception(request: Request, exc: Exception) -> JSONResponse:
        error = convert_to_api_error(exc, request)
        log_api_error(request, error, exc)
        return render_api_error(error, exc, settings)

    for exc_class in (
        APIError,
        RequestValidationError,
        PydanticValidationError,
        StarletteHTTPException,
        IntegrityError,
        Exception,
    ):
        app.add_exception_handler(exc_class, handle_exception)
