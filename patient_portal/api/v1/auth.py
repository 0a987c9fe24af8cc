"""Authentication endpoints.

register, log-in, log-out, me, account confirmation and password reset.

Security considerations:
- log-in: constant-time comparison via DUMMY_HASH prevents patient enumeration
- "send me a link" endpoints answer the same way whether or not the email
  is registered
- every token failure returns the same INVALID_TOKEN error
- reset-password deletes all tokens, ending every session
"""

import structlog
from fastapi import APIRouter, Request, Response

from patient_portal.api.deps import (
    CurrentPatient,
    DbSession,
    Notifier,
    SessionToken,
    frontend_link,
)
from patient_portal.core.auth import clear_session_cookie, set_session_cookie
from patient_portal.core.errors import (
    InvalidTokenError,
    UnauthorizedError,
)
from patient_portal.core.rate_limiting import limiter
from patient_portal.core.responses import DataResponse
from patient_portal.schemas.patient import (
    EmailRequest,
    LogInRequest,
    PatientResponse,
    RegisterRequest,
    ResetPasswordRequest,
)
from patient_portal.services import accounts

logger = structlog.get_logger()

router = APIRouter()

_CONFIRM_PATH = "/patients/confirm"
_RESET_PASSWORD_PATH = "/patients/reset-password"

_CONFIRM_SENT_MSG = (
    "If your email is in our system and it has not been confirmed yet, "
    "you will receive an email with instructions shortly."
)
_RESET_SENT_MSG = (
    "If your email is in our system, you will receive instructions "
    "to reset your password shortly."
)


# ===================================================================
# Registration and session
# ===================================================================


@router.post("/register", status_code=201)
@limiter.limit("3/hour")
async def register(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: RegisterRequest,
    db: DbSession,
    notifier: Notifier,
) -> DataResponse[PatientResponse]:
    """Register a new patient and send the confirmation link.

    Rate limit: 3 per hour per IP.
    """
    patient = await accounts.register_patient(db, body)
    await accounts.deliver_confirmation_instructions(
        db, patient, frontend_link(_CONFIRM_PATH), notifier
    )
    return DataResponse(data=PatientResponse.model_validate(patient))


@router.post("/log-in")
@limiter.limit("5/15minute")
async def log_in(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: LogInRequest,
    response: Response,
    db: DbSession,
) -> DataResponse[PatientResponse]:
    """Check email + password and set the session cookie.

    Rate limit: 5 per 15 minutes per IP.
    """
    patient = await accounts.get_patient_by_email_and_password(
        db, body.email, body.password
    )
    if patient is None:
        logger.info("log_in_failed")
        raise UnauthorizedError("Invalid email or password")

    token = await accounts.generate_session_token(db, patient)
    await db.commit()
    set_session_cookie(response, token)
    return DataResponse(data=PatientResponse.model_validate(patient))


@router.post("/log-out")
async def log_out(
    response: Response,
    token: SessionToken,
    db: DbSession,
) -> DataResponse[dict]:
    """Revoke the current session token and clear the cookie.

    Succeeds without a cookie too.
    """
    if token is not None:
        await accounts.delete_session_token(db, token)
        await db.commit()
    clear_session_cookie(response)
    return DataResponse(data={"message": "Logged out successfully"})


@router.get("/me")
async def me(patient: CurrentPatient) -> DataResponse[PatientResponse]:
    """Return the logged-in patient."""
    return DataResponse(data=PatientResponse.model_validate(patient))


# ===================================================================
# Confirmation
# ===================================================================


@router.post("/confirm")
@limiter.limit("5/hour")
async def request_confirmation(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: EmailRequest,
    db: DbSession,
    notifier: Notifier,
) -> DataResponse[dict]:
    """Resend the confirmation link.

    Same answer whether the email is unknown, unconfirmed or confirmed.
    """
    patient = await accounts.get_patient_by_email(db, body.email)
    if patient is not None and patient.confirmed_at is None:
        await accounts.deliver_confirmation_instructions(
            db, patient, frontend_link(_CONFIRM_PATH), notifier
        )
    return DataResponse(data={"message": _CONFIRM_SENT_MSG})


@router.post("/confirm/{token}")
async def confirm(token: str, db: DbSession) -> DataResponse[PatientResponse]:
    """Confirm the account owning the token."""
    patient = await accounts.confirm_patient(db, token)
    if patient is None:
        raise InvalidTokenError()
    return DataResponse(data=PatientResponse.model_validate(patient))


# ===================================================================
# Password reset
# ===================================================================


@router.post("/reset-password")
@limiter.limit("5/hour")
async def request_password_reset(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: EmailRequest,
    db: DbSession,
    notifier: Notifier,
) -> DataResponse[dict]:
    """Send a password reset link if the email is registered."""
    patient = await accounts.get_patient_by_email(db, body.email)
    if patient is not None:
        await accounts.deliver_reset_password_instructions(
            db, patient, frontend_link(_RESET_PASSWORD_PATH), notifier
        )
    return DataResponse(data={"message": _RESET_SENT_MSG})


@router.get("/reset-password/{token}")
async def check_reset_password_token(token: str, db: DbSession) -> DataResponse[dict]:
    """Tell the frontend whether a reset link is still usable."""
    patient = await accounts.get_patient_by_reset_password_token(db, token)
    if patient is None:
        raise InvalidTokenError()
    return DataResponse(data={"valid": True})


@router.post("/reset-password/{token}")
async def reset_password(
    token: str,
    body: ResetPasswordRequest,
    response: Response,
    db: DbSession,
) -> DataResponse[dict]:
    """Set a new password with a reset token.

    Every token of the patient is deleted, so all sessions end.
    """
    patient = await accounts.get_patient_by_reset_password_token(db, token)
    if patient is None:
        raise InvalidTokenError()

    await accounts.reset_patient_password(db, patient, body.password, token=token)
    clear_session_cookie(response)
    return DataResponse(data={"message": "Password reset successfully"})
