"""Tests for API error classes.

HTTP status codes and error codes, including the single INVALID_TOKEN
surface shared by every token verification failure.
"""

import pytest

from patient_portal.core.errors import (
    AlreadyConfirmedError,
    APIError,
    ConflictError,
    DeliveryError,
    DestinationMismatchError,
    InvalidTokenError,
    MalformedTokenError,
    NotFoundError,
    StorageError,
    TokenExpiredError,
    TokenNotFoundError,
    UnauthorizedError,
    ValidationError,
)


class TestAPIError:
    """Tests for base APIError class."""

    def test_api_error_has_required_attributes(self):
        """APIError should have code, message, status_code, details."""
        error = APIError(
            code="TEST_ERROR",
            message="Test message",
            status_code=418,
            details=[{"field": "test"}],
        )
        assert error.code == "TEST_ERROR"
        assert error.message == "Test message"
        assert error.status_code == 418
        assert error.details == [{"field": "test"}]

    def test_api_error_defaults_to_500(self):
        """APIError should default to 500 status code."""
        error = APIError(code="TEST", message="Test")
        assert error.status_code == 500
        assert error.details is None

    def test_api_error_is_exception(self):
        """APIError should be an Exception subclass."""
        error = APIError(code="TEST", message="Test")
        assert isinstance(error, Exception)
        assert str(error) == "Test"


class TestStatusCodes:
    @pytest.mark.parametrize(
        ("error", "code", "status"),
        [
            (ValidationError("bad"), "VALIDATION_ERROR", 400),
            (UnauthorizedError(), "UNAUTHORIZED", 401),
            (NotFoundError("Patient"), "NOT_FOUND", 404),
            (ConflictError("PATIENT_ALREADY_EXISTS", "taken"), "PATIENT_ALREADY_EXISTS", 409),
            (AlreadyConfirmedError(), "ALREADY_CONFIRMED", 422),
            (InvalidTokenError(), "INVALID_TOKEN", 400),
            (StorageError(), "STORAGE_ERROR", 503),
            (DeliveryError(), "DELIVERY_FAILED", 502),
        ],
    )
    def test_code_and_status(self, error, code, status):
        assert error.code == code
        assert error.status_code == status

    def test_validation_error_with_details(self):
        """ValidationError should pass through details."""
        details = [{"field": "email", "message": "did not change"}]
        error = ValidationError("Invalid email", details=details)
        assert error.details == details

    def test_not_found_message_includes_id(self):
        assert NotFoundError("Patient", "42").message == "Patient with id '42' not found"
        assert NotFoundError("Patient").message == "Patient not found"

    def test_unauthorized_custom_message(self):
        assert UnauthorizedError("Invalid email or password").message == (
            "Invalid email or password"
        )


class TestInvalidTokenFamily:
    """Every verification failure looks the same from the outside."""

    @pytest.mark.parametrize(
        "cls",
        [TokenNotFoundError, TokenExpiredError, DestinationMismatchError, MalformedTokenError],
    )
    def test_subclasses_share_code_and_message(self, cls):
        error = cls()
        assert isinstance(error, InvalidTokenError)
        assert error.code == "INVALID_TOKEN"
        assert error.message == "Invalid or expired token"
        assert error.status_code == 400

    def test_storage_error_is_not_an_invalid_token(self):
        """A store outage is never reported as an invalid token."""
        assert not isinstance(StorageError(), InvalidTokenError)
