"""
Career Sewa API — Custom Exception Hierarchy
==============================================

What:  Defines the fixed error taxonomy every failure is translated into.
Why:   A single error shape lets the global handlers answer with the standard
       response envelope and pick the correct status code, log level and
       client-facing message without per-route try/except blocks.
How:   Each APIError subclass pins a status code and an operational flag.
       Translator classmethods turn library-specific failures (pydantic
       validation errors, unique-constraint violations, malformed ids,
       token errors) into taxonomy members at the boundary.
Who:   Raised by services, routes and the connection manager; caught by the
       handlers registered in error_handlers.py.

Exception Hierarchy:
    CareerSewaError (base)
    └── APIError
        ├── BadRequestError              → 400 (operational)
        ├── UnauthorizedError            → 401 (operational)
        ├── ForbiddenError               → 403 (operational)
        ├── NotFoundError                → 404 (operational)
        ├── MethodNotAllowedError        → 405 (operational)
        ├── ConflictError                → 409 (operational)
        ├── ValidationFailedError        → 422 (operational)
        ├── TooManyRequestsError         → 429 (operational)
        ├── InternalServerError          → 500 (non-operational)
        │   └── DatabaseDisconnectionError
        ├── NotImplementedAPIError       → 501 (non-operational)
        ├── BadGatewayError              → 502 (non-operational)
        ├── ServiceUnavailableError      → 503 (non-operational)
        │   └── DatabaseConnectionError
        └── GatewayTimeoutError          → 504 (non-operational)

Operational vs non-operational:
    4xx errors describe expected client misuse and are always operational.
    5xx errors point at a defect or a dependency outage.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional


class CareerSewaError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing error description
        context:  Additional debug info (logged, never returned in production)
    """

    def __init__(
        self,
        message: str = "Something went wrong",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class APIError(CareerSewaError):
    """
    An error that maps directly to an HTTP status code.

    Subclasses override `status_code`, `default_message` and
    `is_operational`; instances may still override the status code when a
    translator needs an unusual one.
    """

    status_code: int = 500
    default_message: str = "Something went wrong"
    is_operational: bool = True

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        is_operational: Optional[bool] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message or self.default_message, context=context)
        if status_code is not None:
            self.status_code = status_code
        if is_operational is not None:
            self.is_operational = is_operational
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "statusCode": self.status_code,
            "isOperational": self.is_operational,
            "timestamp": self.timestamp.isoformat(),
        }


# ══════════════════════════════════════════════════════════════════════════
# Client errors (4xx): always operational
# ══════════════════════════════════════════════════════════════════════════


class BadRequestError(APIError):
    status_code = 400
    default_message = "Bad request"

    @classmethod
    def from_cast_error(cls, field: str, value: Any) -> "BadRequestError":
        """A path or query value could not be converted (e.g. a malformed UUID)."""
        return cls(f"Invalid {field}: {value}", context={"field": field})


class UnauthorizedError(APIError):
    status_code = 401
    default_message = "Unauthorized access"

    # Keyed by exception class name so any JOSE/JWT library's errors translate
    _TOKEN_MESSAGES = {
        "ExpiredSignatureError": "Token expired",
        "TokenExpiredError": "Token expired",
        "ImmatureSignatureError": "Token not active",
        "NotBeforeError": "Token not active",
        "InvalidTokenError": "Invalid token",
        "DecodeError": "Invalid token",
        "InvalidSignatureError": "Invalid token",
        "JsonWebTokenError": "Invalid token",
    }

    @classmethod
    def is_token_error(cls, exc: BaseException) -> bool:
        return type(exc).__name__ in cls._TOKEN_MESSAGES

    @classmethod
    def from_token_error(cls, exc: BaseException) -> "UnauthorizedError":
        message = cls._TOKEN_MESSAGES.get(type(exc).__name__, "Token error")
        return cls(message)


class ForbiddenError(APIError):
    status_code = 403
    default_message = "Access forbidden"


class NotFoundError(APIError):
    """
    Raised when a requested resource does not exist.

    SQLAlchemy returns None for missing records; services convert that None
    into this error so routes never deal with HTTP details.
    """

    status_code = 404
    default_message = "Resource not found"

    def __init__(
        self,
        message: Optional[str] = None,
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if resource:
            ctx["resource"] = resource
            message = message or f"The requested {resource} was not found"
            if resource_id:
                ctx["resource_id"] = resource_id
                message = f"{resource} with ID '{resource_id}' was not found"
        super().__init__(message=message, context=ctx)


class MethodNotAllowedError(APIError):
    status_code = 405
    default_message = "Method not allowed"


class ConflictError(APIError):
    status_code = 409
    default_message = "Resource conflict"

    # "Key (email)=(a@b.c) already exists."  (PostgreSQL)
    _PG_DETAIL = re.compile(r"Key \((?P<field>[^)]+)\)=\((?P<value>[^)]*)\)")
    # "UNIQUE constraint failed: users.email"  (SQLite)
    _SQLITE_DETAIL = re.compile(r"UNIQUE constraint failed: (?:\w+\.)?(?P<field>\w+)")

    @classmethod
    def from_integrity_error(
        cls,
        exc: BaseException,
        values: Optional[Dict[str, Any]] = None,
    ) -> "ConflictError":
        """
        Translate a unique-constraint violation into a 409.

        Args:
            exc:    The driver/SQLAlchemy IntegrityError.
            values: The values that were being written, used to name the
                    duplicate when the driver message omits it.
        """
        text = str(getattr(exc, "orig", None) or exc)
        field, value = None, None

        match = cls._PG_DETAIL.search(text)
        if match:
            field, value = match.group("field"), match.group("value")
        else:
            match = cls._SQLITE_DETAIL.search(text)
            if match:
                field = match.group("field")
                value = (values or {}).get(field)

        if field is None:
            return cls("Duplicate value already exists")
        return cls(
            f"Duplicate {field}: {value} already exists",
            context={"field": field},
        )


class ValidationFailedError(APIError):
    status_code = 422
    default_message = "Validation failed"

    @classmethod
    def from_messages(cls, messages: Iterable[str]) -> "ValidationFailedError":
        messages = list(messages)
        return cls(
            f"Validation failed: {', '.join(messages)}",
            context={"errors": messages},
        )

    @classmethod
    def from_validation_error(cls, exc: Any) -> "ValidationFailedError":
        """
        Translate pydantic's ValidationError or FastAPI's RequestValidationError.

        Both expose `errors()`; each entry's `msg` is kept verbatim so the
        client sees every field-level problem in one message. Missing-field
        entries are named after their location instead.
        """
        return cls.from_messages(_field_message(error) for error in exc.errors())


class TooManyRequestsError(APIError):
    status_code = 429
    default_message = "Too many requests"

    def __init__(
        self,
        message: Optional[str] = None,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after is not None:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


# ══════════════════════════════════════════════════════════════════════════
# Server errors (5xx): non-operational
# ══════════════════════════════════════════════════════════════════════════


class InternalServerError(APIError):
    status_code = 500
    default_message = "Internal server error"
    is_operational = False


class NotImplementedAPIError(APIError):
    status_code = 501
    default_message = "Not implemented"
    is_operational = False


class BadGatewayError(APIError):
    status_code = 502
    default_message = "Bad gateway"
    is_operational = False


class ServiceUnavailableError(APIError):
    status_code = 503
    default_message = "Service unavailable"
    is_operational = False


class GatewayTimeoutError(APIError):
    status_code = 504
    default_message = "Gateway timeout"
    is_operational = False


class DatabaseConnectionError(ServiceUnavailableError):
    """
    Raised when the backing store cannot be reached.

    When:    Retries exhausted in connect(), or a session is requested while
             the manager is not connected.
    Context: Always carries the masked target, never the raw URL.
    """

    default_message = "Unable to connect to the database"


class DatabaseDisconnectionError(InternalServerError):
    """Raised when closing the connection pool fails; state stays Connected."""

    default_message = "Error disconnecting from the database"


def _field_message(error: Dict[str, Any]) -> str:
    loc = error.get("loc") or ()
    if error.get("type") == "missing" and loc:
        # pydantic's "Field required" does not say which field
        return f"{loc[-1]} is required"
    msg = error.get("msg", "Invalid value")
    # Custom validators raise ValueError; pydantic prefixes "Value error, "
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    return msg
