"""Patient account workflows built on the token authority.

Registration, password log-in, sessions, confirmation, password reset,
and email/phone/password changes. Every flow that consumes a delivered
token goes through token_authority.consume_and_mutate(), so the patient
update and the token deletion commit together or not at all.

Token verification failures surface here only as InvalidTokenError, or as
a None/False result for the lookup-style functions; which check failed is
never exposed.

URL builders (``url_for``) receive the encoded token and return the link
embedded in the notification.
"""

import logging
from collections.abc import Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from patient_portal.core import email as notifications
from patient_portal.core.auth import hash_password, verify_password
from patient_portal.core.email import Notification, PatientNotifier
from patient_portal.core.errors import (
    AlreadyConfirmedError,
    ConflictError,
    InvalidTokenError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from patient_portal.core.tokens import TokenContext
from patient_portal.models.patient import Patient
from patient_portal.repositories.patient_repository import PatientRepository
from patient_portal.schemas.patient import (
    RegisterRequest,
    validate_email_format,
    validate_phone_number_format,
)
from patient_portal.services import token_authority
from patient_portal.services.token_authority import ALL_CONTEXTS

logger = logging.getLogger(__name__)

UrlBuilder = Callable[[str], str]

_MSG_TAKEN = "has already been taken"
_MSG_NOT_CHANGED = "did not change"
_MSG_BAD_PASSWORD = "is not valid"  # nosec B105


def _field_error(field: str, message: str) -> list[dict]:
    return [{"field": field, "message": message}]


# ===================================================================
# Lookups
# ===================================================================


async def get_patient_by_email(db: AsyncSession, email: str) -> Patient | None:
    """Fetch a patient by email (case-insensitive)."""
    return await PatientRepository.get_by_email(db, email)


async def get_patient(db: AsyncSession, patient_id: int) -> Patient:
    """Fetch a patient by id.

    Raises:
        NotFoundError: If the patient does not exist.
    """
    patient = await PatientRepository.get_by_id(db, patient_id)
    if patient is None:
        raise NotFoundError("Patient", str(patient_id))
    return patient


async def get_patient_by_email_and_password(
    db: AsyncSession, email: str, password: str
) -> Patient | None:
    """Return the patient only if the password matches.

    A bcrypt comparison runs even when no patient has the email, so the
    two failure cases take the same time.
    """
    patient = await PatientRepository.get_by_email(db, email)
    hashed = patient.hashed_password if patient else None
    if verify_password(password, hashed):
        return patient
    return None


# ===================================================================
# Registration
# ===================================================================


async def register_patient(db: AsyncSession, registration: RegisterRequest) -> Patient:
    """Create and commit a new patient.

    Args:
        db: Async database session.
        registration: Validated registration data.

    Returns:
        The created Patient.

    Raises:
        ConflictError: If email, username or phone number is taken.
        StorageError: If the insert fails for any other reason.
    """
    details: list[dict] = []
    if await PatientRepository.get_by_email(db, registration.email):
        details += _field_error("email", _MSG_TAKEN)
    if await PatientRepository.get_by_username(db, registration.username):
        details += _field_error("username", _MSG_TAKEN)
    if await PatientRepository.get_by_phone_number(db, registration.phone_number):
        details += _field_error("phone_number", _MSG_TAKEN)
    if details:
        raise ConflictError(
            code="PATIENT_ALREADY_EXISTS",
            message="Patient already registered",
            details=details,
        )

    try:
        patient = await PatientRepository.create(
            db,
            email=registration.email,
            hashed_password=hash_password(registration.password),
            first_name=registration.first_name,
            middle_name=registration.middle_name,
            last_name=registration.last_name,
            username=registration.username,
            phone_number=registration.phone_number,
            date_of_birth=registration.date_of_birth,
            gender=registration.gender,
        )
        await db.commit()
    except IntegrityError as exc:
        # Lost a race with a concurrent registration
        await db.rollback()
        raise ConflictError(
            code="PATIENT_ALREADY_EXISTS",
            message="Patient already registered",
        ) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Patient registration failed: %s", exc)
        raise StorageError("Patient registration failed") from exc

    logger.info("Registered patient %s", patient.id)
    return patient


# ===================================================================
# Sessions
# ===================================================================


async def generate_session_token(db: AsyncSession, patient: Patient) -> bytes:
    """Issue a session token; the caller commits."""
    return await token_authority.issue_session_token(db, patient)


async def get_patient_by_session_token(
    db: AsyncSession, raw_token: bytes
) -> Patient | None:
    """Return the patient of a live session token, or None."""
    return await token_authority.verify_session_token(db, raw_token)


async def delete_session_token(db: AsyncSession, raw_token: bytes) -> None:
    """Revoke one session token; the caller commits."""
    await token_authority.revoke_session_token(db, raw_token)


# ===================================================================
# Confirmation
# ===================================================================


async def deliver_confirmation_instructions(
    db: AsyncSession,
    patient: Patient,
    url_for: UrlBuilder,
    notifier: PatientNotifier,
) -> Notification:
    """Send a confirmation link to the patient's email.

    Raises:
        AlreadyConfirmedError: If the account is already confirmed.
        DeliveryError: If the notification cannot be sent.
    """
    if patient.confirmed_at is not None:
        raise AlreadyConfirmedError()

    encoded = await token_authority.issue_delivery_token(
        db, patient, TokenContext.confirm(), patient.email
    )
    await db.commit()
    return await notifications.deliver_confirmation_instructions(
        notifier, patient, url_for(encoded)
    )


async def confirm_patient(db: AsyncSession, encoded_token: str) -> Patient | None:
    """Confirm the account owning a confirm token.

    Sets confirmed_at and deletes the patient's confirm tokens.

    Returns:
        The confirmed Patient, or None if the token is invalid.
    """
    context = TokenContext.confirm()
    try:
        verified = await token_authority.check_delivery_token(db, encoded_token, context)
        patient = await token_authority.consume_and_mutate(
            db,
            verified.patient,
            {"confirmed_at": token_authority.utcnow()},
            [context],
            presented=verified,
        )
    except InvalidTokenError:
        return None

    logger.info("Confirmed patient %s", patient.id)
    return patient


# ===================================================================
# Password reset
# ===================================================================


async def deliver_reset_password_instructions(
    db: AsyncSession,
    patient: Patient,
    url_for: UrlBuilder,
    notifier: PatientNotifier,
) -> Notification:
    """Send a password reset link to the patient's email."""
    encoded = await token_authority.issue_delivery_token(
        db, patient, TokenContext.reset_password(), patient.email
    )
    await db.commit()
    return await notifications.deliver_reset_password_instructions(
        notifier, patient, url_for(encoded)
    )


async def get_patient_by_reset_password_token(
    db: AsyncSession, encoded_token: str
) -> Patient | None:
    """Return the owner of a valid reset token without consuming it."""
    try:
        return await token_authority.verify_delivery_token(
            db, encoded_token, TokenContext.reset_password()
        )
    except InvalidTokenError:
        return None


async def reset_patient_password(
    db: AsyncSession,
    patient: Patient,
    new_password: str,
    *,
    token: str | None = None,
) -> Patient:
    """Set a new password and delete every token of the patient.

    Args:
        db: Async database session.
        patient: Patient whose password is reset.
        new_password: Validated new password.
        token: Reset link token being redeemed. When given, it is claimed
            inside the same transaction, so one link resets at most once.

    Raises:
        InvalidTokenError: If the token is invalid, already used, or owned
            by another patient.
    """
    presented = None
    if token is not None:
        presented = await token_authority.check_delivery_token(
            db, token, TokenContext.reset_password()
        )
        if presented.patient.id != patient.id:
            raise InvalidTokenError()

    patient = await token_authority.consume_and_mutate(
        db,
        patient,
        {"hashed_password": hash_password(new_password)},
        ALL_CONTEXTS,
        presented=presented,
    )
    logger.info("Reset password for patient %s", patient.id)
    return patient


# ===================================================================
# Email change
# ===================================================================


async def apply_patient_email(
    db: AsyncSession,
    patient: Patient,
    current_password: str,
    new_email: str,
) -> str:
    """Check an email change without persisting it.

    Returns:
        The normalized new email.

    Raises:
        ValidationError: If the format is wrong, the email did not change,
            or the current password is wrong.
        ConflictError: If another patient already uses the email.
    """
    try:
        new_email = validate_email_format(new_email).lower()
    except ValueError as exc:
        raise ValidationError("Invalid email", _field_error("email", str(exc))) from exc

    if new_email == patient.email:
        raise ValidationError("Invalid email", _field_error("email", _MSG_NOT_CHANGED))
    if not verify_password(current_password, patient.hashed_password):
        raise ValidationError(
            "Invalid password", _field_error("current_password", _MSG_BAD_PASSWORD)
        )
    if await PatientRepository.get_by_email(db, new_email):
        raise ConflictError(
            code="EMAIL_ALREADY_EXISTS",
            message="Email already registered",
            details=_field_error("email", _MSG_TAKEN),
        )
    return new_email


async def deliver_update_email_instructions(
    db: AsyncSession,
    patient: Patient,
    new_email: str,
    url_for: UrlBuilder,
    notifier: PatientNotifier,
) -> Notification:
    """Send an email change link to the new address.

    The token is bound to the current email; ``sent_to`` records the new one.
    """
    encoded = await token_authority.issue_delivery_token(
        db, patient, TokenContext.change_email(patient.email), new_email
    )
    await db.commit()
    return await notifications.deliver_update_email_instructions(
        notifier, new_email, url_for(encoded)
    )


async def update_patient_email(
    db: AsyncSession, patient: Patient, encoded_token: str
) -> bool:
    """Apply a pending email change.

    Sets the email to the token's destination, marks the account confirmed
    and deletes that change token.

    Returns:
        True if the email changed, False if the token is invalid.

    Raises:
        ConflictError: If the new email was taken in the meantime.
    """
    context = TokenContext.change_email(patient.email)
    return await _apply_change(db, patient, encoded_token, context, "email")


# ===================================================================
# Phone number change
# ===================================================================


async def apply_patient_phone_number(
    db: AsyncSession,
    patient: Patient,
    current_password: str,
    new_phone_number: str,
) -> str:
    """Check a phone number change without persisting it.

    Raises:
        ValidationError: If the format is wrong, the number did not change,
            or the current password is wrong.
        ConflictError: If another patient already uses the number.
    """
    try:
        new_phone_number = validate_phone_number_format(new_phone_number)
    except ValueError as exc:
        raise ValidationError(
            "Invalid phone number", _field_error("phone_number", str(exc))
        ) from exc

    if new_phone_number == patient.phone_number:
        raise ValidationError(
            "Invalid phone number", _field_error("phone_number", _MSG_NOT_CHANGED)
        )
    if not verify_password(current_password, patient.hashed_password):
        raise ValidationError(
            "Invalid password", _field_error("current_password", _MSG_BAD_PASSWORD)
        )
    if await PatientRepository.get_by_phone_number(db, new_phone_number):
        raise ConflictError(
            code="PHONE_NUMBER_ALREADY_EXISTS",
            message="Phone number already registered",
            details=_field_error("phone_number", _MSG_TAKEN),
        )
    return new_phone_number


async def deliver_update_phone_number_instructions(
    db: AsyncSession,
    patient: Patient,
    new_phone_number: str,
    url_for: UrlBuilder,
    notifier: PatientNotifier,
) -> Notification:
    """Send a phone number change link to the account's email."""
    encoded = await token_authority.issue_delivery_token(
        db,
        patient,
        TokenContext.change_phone_number(patient.phone_number),
        new_phone_number,
    )
    await db.commit()
    return await notifications.deliver_update_phone_number_instructions(
        notifier, patient, new_phone_number, url_for(encoded)
    )


async def update_patient_phone_number(
    db: AsyncSession, patient: Patient, encoded_token: str
) -> bool:
    """Apply a pending phone number change.

    Returns:
        True if the number changed, False if the token is invalid.

    Raises:
        ConflictError: If the new number was taken in the meantime.
    """
    context = TokenContext.change_phone_number(patient.phone_number)
    return await _apply_change(db, patient, encoded_token, context, "phone_number")


async def _apply_change(
    db: AsyncSession,
    patient: Patient,
    encoded_token: str,
    context: TokenContext,
    field: str,
) -> bool:
    try:
        verified = await token_authority.check_delivery_token(db, encoded_token, context)
    except InvalidTokenError:
        return False
    if verified.patient.id != patient.id:
        logger.warning(
            "%s token for patient %s presented by patient %s",
            context.kind.value,
            verified.patient.id,
            patient.id,
        )
        return False

    changes: dict = {field: verified.sent_to}
    if field == "email":
        changes["confirmed_at"] = token_authority.utcnow()
    try:
        await token_authority.consume_and_mutate(
            db, patient, changes, [context], presented=verified
        )
    except InvalidTokenError:
        return False
    logger.info("Changed %s for patient %s", field, patient.id)
    return True


# ===================================================================
# Password change
# ===================================================================


async def update_patient_password(
    db: AsyncSession,
    patient: Patient,
    current_password: str,
    new_password: str,
) -> Patient:
    """Change the password and delete every token of the patient.

    All sessions end, including the one making the request; the caller
    issues a fresh session token if the patient should stay logged in.

    Raises:
        ValidationError: If the current password is wrong.
    """
    if not verify_password(current_password, patient.hashed_password):
        raise ValidationError(
            "Invalid password", _field_error("current_password", _MSG_BAD_PASSWORD)
        )

    patient = await token_authority.consume_and_mutate(
        db,
        patient,
        {"hashed_password": hash_password(new_password)},
        ALL_CONTEXTS,
    )
    logger.info("Changed password for patient %s", patient.id)
    return patient
