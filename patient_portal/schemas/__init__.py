"""Pydantic request/response schemas for API endpoints."""

from patient_portal.schemas.patient import (
    ChangeEmailRequest,
    ChangePasswordRequest,
    ChangePhoneNumberRequest,
    EmailRequest,
    LogInRequest,
    PatientResponse,
    RegisterRequest,
    ResetPasswordRequest,
)

__all__ = [
    # Requests
    "ChangeEmailRequest",
    "ChangePasswordRequest",
    "ChangePhoneNumberRequest",
    "EmailRequest",
    "LogInRequest",
    "RegisterRequest",
    "ResetPasswordRequest",
    # Responses
    "PatientResponse",
]
