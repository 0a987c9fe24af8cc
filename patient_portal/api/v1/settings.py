"""Account settings endpoints: email, phone number and password changes.

Email and phone changes are two-step: the request endpoint checks the
current password and sends a link; the token endpoint applies the change.
A password change ends every session and re-issues one for this device.
"""

from fastapi import APIRouter, Request, Response

from patient_portal.api.deps import CurrentPatient, DbSession, Notifier, frontend_link
from patient_portal.core.auth import set_session_cookie
from patient_portal.core.errors import InvalidTokenError
from patient_portal.core.rate_limiting import limiter
from patient_portal.core.responses import DataResponse
from patient_portal.schemas.patient import (
    ChangeEmailRequest,
    ChangePasswordRequest,
    ChangePhoneNumberRequest,
    PatientResponse,
)
from patient_portal.services import accounts

router = APIRouter()

_CONFIRM_EMAIL_PATH = "/patients/settings/confirm-email"
_CONFIRM_PHONE_NUMBER_PATH = "/patients/settings/confirm-phone-number"


@router.post("/email")
@limiter.limit("5/hour")
async def request_email_change(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: ChangeEmailRequest,
    patient: CurrentPatient,
    db: DbSession,
    notifier: Notifier,
) -> DataResponse[dict]:
    """Send an email change link to the new address."""
    new_email = await accounts.apply_patient_email(
        db, patient, body.current_password, body.email
    )
    await accounts.deliver_update_email_instructions(
        db, patient, new_email, frontend_link(_CONFIRM_EMAIL_PATH), notifier
    )
    return DataResponse(
        data={"message": "A link to confirm your email change has been sent to the new address."}
    )


@router.post("/email/{token}")
async def confirm_email_change(
    token: str,
    patient: CurrentPatient,
    db: DbSession,
) -> DataResponse[PatientResponse]:
    """Apply a pending email change."""
    if not await accounts.update_patient_email(db, patient, token):
        raise InvalidTokenError()
    await db.refresh(patient)
    return DataResponse(data=PatientResponse.model_validate(patient))


@router.post("/phone-number")
@limiter.limit("5/hour")
async def request_phone_number_change(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: ChangePhoneNumberRequest,
    patient: CurrentPatient,
    db: DbSession,
    notifier: Notifier,
) -> DataResponse[dict]:
    """Send a phone number change link to the account's email."""
    new_phone_number = await accounts.apply_patient_phone_number(
        db, patient, body.current_password, body.phone_number
    )
    await accounts.deliver_update_phone_number_instructions(
        db,
        patient,
        new_phone_number,
        frontend_link(_CONFIRM_PHONE_NUMBER_PATH),
        notifier,
    )
    return DataResponse(
        data={"message": "A link to confirm your phone number change has been sent to your email."}
    )


@router.post("/phone-number/{token}")
async def confirm_phone_number_change(
    token: str,
    patient: CurrentPatient,
    db: DbSession,
) -> DataResponse[PatientResponse]:
    """Apply a pending phone number change."""
    if not await accounts.update_patient_phone_number(db, patient, token):
        raise InvalidTokenError()
    await db.refresh(patient)
    return DataResponse(data=PatientResponse.model_validate(patient))


@router.post("/password")
@limiter.limit("5/hour")
async def change_password(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: ChangePasswordRequest,
    response: Response,
    patient: CurrentPatient,
    db: DbSession,
) -> DataResponse[dict]:
    """Change the password, end every session, and keep this one logged in."""
    patient = await accounts.update_patient_password(
        db, patient, body.current_password, body.password
    )
    token = await accounts.generate_session_token(db, patient)
    await db.commit()
    set_session_cookie(response, token)
    return DataResponse(data={"message": "Password updated successfully"})
