"""
Career Sewa API — Error Taxonomy Tests
========================================

What:  Tests for the translators that turn library errors into taxonomy
       members, and for convert_to_api_error's boundary mapping.
"""

import json

import pytest
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from career_sewa.error_handlers import convert_to_api_error, sanitize_body
from career_sewa.exceptions import (
    APIError,
    BadGatewayError,
    BadRequestError,
    ConflictError,
    DatabaseConnectionError,
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
from career_sewa.schemas.response import APIResponse
from career_sewa.schemas.user import UserCreate


def integrity_error(message: str) -> IntegrityError:
    return IntegrityError("INSERT INTO users ...", {}, Exception(message))


class TestTaxonomy:

    @pytest.mark.parametrize(
        "error_class, status, operational",
        [
            (BadRequestError, 400, True),
            (UnauthorizedError, 401, True),
            (NotFoundError, 404, True),
            (ConflictError, 409, True),
            (ValidationFailedError, 422, True),
            (InternalServerError, 500, False),
            (ServiceUnavailableError, 503, False),
        ],
    )
    def test_status_and_operational_flag(self, error_class, status, operational):
        error = error_class()
        assert error.status_code == status
        assert error.is_operational is operational
        assert error.message == error_class.default_message

    def test_database_connection_error_is_unavailable(self):
        error = DatabaseConnectionError()
        assert isinstance(error, ServiceUnavailableError)
        assert error.status_code == 503
        assert error.message == "Unable to connect to the database"

    def test_not_found_names_the_resource(self):
        error = NotFoundError(resource="User", resource_id="42")
        assert error.message == "User with ID '42' was not found"
        assert error.context == {"resource": "User", "resource_id": "42"}


class TestTranslators:

    def test_cast_error(self):
        error = BadRequestError.from_cast_error("id", "not-a-uuid")
        assert error.status_code == 400
        assert error.message == "Invalid id: not-a-uuid"

    def test_postgres_duplicate_key(self):
        exc = integrity_error(
            'duplicate key value violates unique constraint "users_email_key"\n'
            "DETAIL:  Key (email)=(jane@example.com) already exists."
        )
        error = ConflictError.from_integrity_error(exc)
        assert error.status_code == 409
        assert error.message == "Duplicate email: jane@example.com already exists"

    def test_sqlite_unique_constraint_uses_written_values(self):
        exc = integrity_error("UNIQUE constraint failed: users.email")
        error = ConflictError.from_integrity_error(exc, values={"email": "jane@example.com"})
        assert error.message == "Duplicate email: jane@example.com already exists"

    def test_unrecognised_integrity_message(self):
        error = ConflictError.from_integrity_error(integrity_error("something odd"))
        assert error.message == "Duplicate value already exists"

    @pytest.mark.parametrize(
        "class_name, message",
        [
            ("ExpiredSignatureError", "Token expired"),
            ("ImmatureSignatureError", "Token not active"),
            ("InvalidTokenError", "Invalid token"),
        ],
    )
    def test_token_errors(self, class_name, message):
        exc = type(class_name, (Exception,), {})("bad token")
        assert UnauthorizedError.is_token_error(exc)
        error = UnauthorizedError.from_token_error(exc)
        assert error.status_code == 401
        assert error.message == message

    def test_validation_error_joins_every_field_message(self):
        with pytest.raises(ValidationError) as exc_info:
            UserCreate(fullname="A", email="bad", password="short")

        error = ValidationFailedError.from_validation_error(exc_info.value)
        envelope = APIResponse.error(error.status_code, error.message).to_dict()

        assert envelope["statusCode"] == 422
        assert envelope["success"] is False
        assert envelope["message"] == (
            "Validation failed: Full name must be at least 2 characters long, "
            "bad is not a valid email address!, "
            "Password must be at least 8 characters long"
        )

    def test_missing_field_is_named_by_location(self):
        class Search(BaseModel):
            query: str

        with pytest.raises(ValidationError) as exc_info:
            Search()

        error = ValidationFailedError.from_validation_error(exc_info.value)
        assert error.message == "Validation failed: query is required"


class TestConvertToApiError:

    def test_api_error_passes_through(self):
        error = NotFoundError()
        assert convert_to_api_error(error) is error

    def test_http_404(self):
        error = convert_to_api_error(StarletteHTTPException(404, detail="Gone"))
        assert isinstance(error, NotFoundError)
        assert error.message == "Gone"

    def test_http_405(self):
        error = convert_to_api_error(StarletteHTTPException(405))
        assert isinstance(error, MethodNotAllowedError)
        assert error.status_code == 405

    @pytest.mark.parametrize(
        "status, error_class",
        [
            (400, BadRequestError),
            (401, UnauthorizedError),
            (403, ForbiddenError),
            (409, ConflictError),
            (422, ValidationFailedError),
            (429, TooManyRequestsError),
            (500, InternalServerError),
            (501, NotImplementedAPIError),
            (502, BadGatewayError),
            (503, ServiceUnavailableError),
            (504, GatewayTimeoutError),
        ],
    )
    def test_http_status_maps_to_taxonomy(self, status, error_class):
        error = convert_to_api_error(StarletteHTTPException(status, detail="raised by a route"))
        assert type(error) is error_class
        assert error.status_code == status
        assert error.message == "raised by a route"
        assert error.is_operational is (status < 500)

    def test_other_http_status_is_kept(self):
        error = convert_to_api_error(StarletteHTTPException(418, detail="teapot"))
        assert type(error) is APIError
        assert (error.status_code, error.message, error.is_operational) == (418, "teapot", True)

    def test_integrity_error(self):
        error = convert_to_api_error(integrity_error("UNIQUE constraint failed: users.email"))
        assert isinstance(error, ConflictError)

    def test_json_decode_error(self):
        with pytest.raises(json.JSONDecodeError) as exc_info:
            json.loads("{not json")
        error = convert_to_api_error(exc_info.value)
        assert isinstance(error, BadRequestError)
        assert error.message == "Invalid JSON payload"

    def test_unknown_error_becomes_internal(self):
        error = convert_to_api_error(RuntimeError("kaboom"))
        assert isinstance(error, InternalServerError)
        assert error.status_code == 500
        assert error.is_operational is False
        assert error.message == "kaboom"


def test_sanitize_body_drops_credentials():
    body = {
        "email": "jane@example.com",
        "password": "hunter22",
        "profile": {"resetToken": "abc", "city": "Kathmandu"},
    }
    assert sanitize_body(body) == {
        "email": "jane@example.com",
        "profile": {"city": "Kathmandu"},
    }
