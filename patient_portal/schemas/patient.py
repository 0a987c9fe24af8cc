"""Patient request/response schemas.

Field rules for registration and settings changes:
- email: no spaces, contains "@", at most 160 characters
- password: 8 to 72 characters, and at most 72 bytes (bcrypt limit)
- phone_number: "07" followed by 8 digits
- gender: "male" or "female"

All request schemas use ConfigDict(extra="forbid") to reject unexpected fields.
"""

import re
from datetime import date, datetime
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator

_EMAIL_PATTERN = re.compile(r"^[^\s]+@[^\s]+$")
_PHONE_NUMBER_PATTERN = re.compile(r"^07\d{8}$")

EMAIL_MAX_LENGTH = 160
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 72

_MSG_PASSWORD_MISMATCH = "does not match password"  # nosec B105


def validate_email_format(value: str) -> str:
    """Validate email format and length; returns the trimmed value."""
    value = value.strip()
    if not _EMAIL_PATTERN.match(value):
        msg = "must have the @ sign and no spaces"
        raise ValueError(msg)
    if len(value) > EMAIL_MAX_LENGTH:
        msg = f"should be at most {EMAIL_MAX_LENGTH} character(s)"
        raise ValueError(msg)
    return value


def validate_password_length(value: str) -> str:
    """Validate password length in characters and in bytes."""
    if len(value) < PASSWORD_MIN_LENGTH:
        msg = f"should be at least {PASSWORD_MIN_LENGTH} character(s)"
        raise ValueError(msg)
    if len(value) > PASSWORD_MAX_LENGTH or len(value.encode()) > PASSWORD_MAX_LENGTH:
        msg = f"should be at most {PASSWORD_MAX_LENGTH} character(s)"
        raise ValueError(msg)
    return value


def validate_phone_number_format(value: str) -> str:
    """Validate a mobile number of the form 07XXXXXXXX."""
    value = value.strip()
    if not _PHONE_NUMBER_PATTERN.match(value):
        msg = "must start with 07"
        raise ValueError(msg)
    return value


EmailField = Annotated[str, AfterValidator(validate_email_format)]
PasswordField = Annotated[str, AfterValidator(validate_password_length)]
PhoneNumberField = Annotated[str, AfterValidator(validate_phone_number_format)]


# ===================================================================
# Requests
# ===================================================================


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(extra="forbid")

    email: EmailField
    password: PasswordField
    first_name: str = Field(min_length=1, max_length=255)
    middle_name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(min_length=1, max_length=255)
    username: str = Field(min_length=1, max_length=255)
    phone_number: PhoneNumberField
    date_of_birth: date
    gender: Literal["male", "female"] = "male"


class LogInRequest(BaseModel):
    """Request body for POST /auth/log-in."""

    model_config = ConfigDict(extra="forbid")

    email: str = Field(min_length=1, max_length=EMAIL_MAX_LENGTH)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class EmailRequest(BaseModel):
    """Request body for endpoints that send a link to an email address."""

    model_config = ConfigDict(extra="forbid")

    email: str = Field(min_length=1, max_length=EMAIL_MAX_LENGTH)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password/{token}."""

    model_config = ConfigDict(extra="forbid")

    password: PasswordField
    password_confirmation: str

    @model_validator(mode="after")
    def check_confirmation(self) -> "ResetPasswordRequest":
        if self.password != self.password_confirmation:
            raise ValueError(_MSG_PASSWORD_MISMATCH)
        return self


class ChangeEmailRequest(BaseModel):
    """Request body for POST /settings/email."""

    model_config = ConfigDict(extra="forbid")

    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)
    email: EmailField


class ChangePhoneNumberRequest(BaseModel):
    """Request body for POST /settings/phone-number."""

    model_config = ConfigDict(extra="forbid")

    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)
    phone_number: PhoneNumberField


class ChangePasswordRequest(BaseModel):
    """Request body for POST /settings/password."""

    model_config = ConfigDict(extra="forbid")

    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)
    password: PasswordField
    password_confirmation: str

    @model_validator(mode="after")
    def check_confirmation(self) -> "ChangePasswordRequest":
        if self.password != self.password_confirmation:
            raise ValueError(_MSG_PASSWORD_MISMATCH)
        return self


# ===================================================================
# Responses
# ===================================================================


class PatientResponse(BaseModel):
    """Public view of a patient. Never carries the password hash."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    first_name: str
    middle_name: str
    last_name: str
    username: str
    phone_number: str
    date_of_birth: date
    gender: str
    confirmed_at: datetime | None
