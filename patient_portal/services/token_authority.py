"""Token authority: issuance, verification and revocation of patient tokens.

Session tokens are 32 random bytes stored raw and matched byte-for-byte;
they live in the session cookie, never in a message. Delivered tokens
(confirmation, password reset, contact changes) are 32 random bytes whose
SHA-256 digest is stored; only the base64 encoding of the raw bytes leaves
the server, inside a link.

Verification failures raise InvalidTokenError subclasses (not found,
expired, destination mismatch, malformed). Callers outside this module only
ever see the base class. Store failures raise StorageError and are never
reported as an invalid token.

Every function takes an optional ``now`` so expiry can be exercised without
sleeping; it defaults to the current UTC time.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Literal

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from patient_portal.core.config import settings
from patient_portal.core.errors import (
    ConflictError,
    DestinationMismatchError,
    NotFoundError,
    StorageError,
    TokenExpiredError,
    TokenNotFoundError,
    ValidationError,
)
from patient_portal.core.tokens import (
    Channel,
    TokenContext,
    TokenKind,
    decode_token,
    encode_token,
    generate_token_bytes,
    hash_token,
)
from patient_portal.models.patient import Patient
from patient_portal.repositories.patient_repository import PatientRepository
from patient_portal.repositories.patient_token_repository import (
    PatientTokenRepository,
)

logger = logging.getLogger(__name__)

ALL_CONTEXTS: Literal["all"] = "all"

_STORAGE_FAILURE_MSG = "Token storage failed"


@dataclass(frozen=True)
class VerifiedToken:
    """Result of a successful delivered-token check.

    Attributes:
        patient: Owner of the token.
        context: Context the token was verified against.
        sent_to: Destination recorded at issuance. For change contexts this
            is the pending new email or phone number.
        digest: Stored SHA-256 digest, used to consume exactly this token.
    """

    patient: Patient
    context: TokenContext
    sent_to: str | None
    digest: bytes


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _channel_value(patient: Patient, channel: Channel | None) -> str | None:
    if channel is Channel.EMAIL:
        return patient.email
    if channel is Channel.PHONE_NUMBER:
        return patient.phone_number
    return None


# ===================================================================
# Issuance
# ===================================================================


async def issue_session_token(
    db: AsyncSession,
    patient: Patient,
    *,
    now: datetime | None = None,
) -> bytes:
    """Issue a session token for a patient.

    Args:
        db: Async database session. The insert is flushed, not committed.
        patient: Token owner.
        now: Issuance time override.

    Returns:
        The raw 32-byte token, to be placed in the session cookie.

    Raises:
        StorageError: If the insert fails.
    """
    raw = generate_token_bytes()
    try:
        await PatientTokenRepository.create(
            db,
            patient_id=patient.id,
            token=raw,
            context=TokenContext.session().value,
            inserted_at=now or utcnow(),
        )
    except SQLAlchemyError as exc:
        logger.error("Session token insert failed for patient %s: %s", patient.id, exc)
        raise StorageError(_STORAGE_FAILURE_MSG) from exc

    logger.info("Issued session token for patient %s", patient.id)
    return raw


async def issue_delivery_token(
    db: AsyncSession,
    patient: Patient,
    context: TokenContext,
    destination: str,
    *,
    now: datetime | None = None,
) -> str:
    """Issue a token to be delivered out-of-band.

    Only the SHA-256 digest of the random bytes is stored. The raw bytes
    are returned base64-encoded and are never persisted or logged.

    Args:
        db: Async database session. The insert is flushed, not committed.
        patient: Token owner.
        context: Delivered context (anything but session).
        destination: Email or phone number the token is sent to.
        now: Issuance time override.

    Returns:
        URL-safe, padding-free base64 encoding of the raw token.

    Raises:
        ValueError: If called with the session context.
        StorageError: If the insert fails.
    """
    if context.kind is TokenKind.SESSION:
        msg = "Session tokens are issued with issue_session_token()"
        raise ValueError(msg)

    raw = generate_token_bytes()
    try:
        await PatientTokenRepository.create(
            db,
            patient_id=patient.id,
            token=hash_token(raw),
            context=context.value,
            sent_to=destination,
            inserted_at=now or utcnow(),
        )
    except SQLAlchemyError as exc:
        logger.error(
            "%s token insert failed for patient %s: %s",
            context.kind.value,
            patient.id,
            exc,
        )
        raise StorageError(_STORAGE_FAILURE_MSG) from exc

    logger.info("Issued %s token for patient %s", context.kind.value, patient.id)
    return encode_token(raw)


# ===================================================================
# Verification
# ===================================================================


async def verify_session_token(
    db: AsyncSession,
    raw_token: bytes,
    *,
    now: datetime | None = None,
) -> Patient | None:
    """Return the patient owning a live session token.

    The token is matched byte-for-byte and is not consumed.

    Args:
        db: Async database session.
        raw_token: Raw bytes from the session cookie.
        now: Verification time override.

    Returns:
        Patient if the token exists and is within the session window,
        None otherwise.

    Raises:
        StorageError: If the lookup fails.
    """
    context = TokenContext.session()
    issued_since = (now or utcnow()) - context.validity
    try:
        return await PatientTokenRepository.get_patient(
            db,
            token=raw_token,
            context=context.value,
            issued_since=issued_since,
        )
    except SQLAlchemyError as exc:
        logger.error("Session token lookup failed: %s", exc)
        raise StorageError(_STORAGE_FAILURE_MSG) from exc


async def check_delivery_token(
    db: AsyncSession,
    encoded_token: str,
    context: TokenContext,
    *,
    now: datetime | None = None,
) -> VerifiedToken:
    """Verify a delivered token and return it with its owner.

    Checks, in order: the value decodes; a token with that digest exists in
    the context; it is within the context's window; the destination still
    matches the patient's current contact field. For change contexts the
    current field must equal the value carried by the context, since
    ``sent_to`` holds the pending new value.

    The token is not consumed.

    Args:
        db: Async database session.
        encoded_token: Base64 value taken from the link.
        context: Context to verify against.
        now: Verification time override.

    Returns:
        VerifiedToken with the patient and recorded destination.

    Raises:
        MalformedTokenError: If the value cannot be decoded.
        TokenNotFoundError: If no token matches.
        TokenExpiredError: If the token is older than the window.
        DestinationMismatchError: If the patient's contact field changed.
        StorageError: If the lookup fails.
    """
    digest = hash_token(decode_token(encoded_token))

    try:
        found = await PatientTokenRepository.get_with_patient(
            db, token=digest, context=context.value
        )
    except SQLAlchemyError as exc:
        logger.error("%s token lookup failed: %s", context.kind.value, exc)
        raise StorageError(_STORAGE_FAILURE_MSG) from exc

    if found is None:
        raise TokenNotFoundError()
    row, patient = found

    if (now or utcnow()) - _as_utc(row.inserted_at) > context.validity:
        logger.info("Rejected expired %s token for patient %s", context.kind.value, patient.id)
        raise TokenExpiredError()

    current = _channel_value(patient, context.channel)
    expected = context.current if context.is_change else row.sent_to
    if current != expected:
        logger.info(
            "Rejected %s token for patient %s: destination changed",
            context.kind.value,
            patient.id,
        )
        raise DestinationMismatchError()

    return VerifiedToken(
        patient=patient, context=context, sent_to=row.sent_to, digest=digest
    )


async def verify_delivery_token(
    db: AsyncSession,
    encoded_token: str,
    context: TokenContext,
    *,
    now: datetime | None = None,
) -> Patient:
    """Verify a delivered token and return its owner.

    See check_delivery_token() for the checks performed.

    Raises:
        InvalidTokenError: If any check fails.
        StorageError: If the lookup fails.
    """
    verified = await check_delivery_token(db, encoded_token, context, now=now)
    return verified.patient


# ===================================================================
# Consumption and revocation
# ===================================================================


async def consume_and_mutate(
    db: AsyncSession,
    patient: Patient,
    changes: Mapping[str, str | datetime | None],
    contexts: Sequence[TokenContext] | Literal["all"],
    *,
    presented: VerifiedToken | None = None,
) -> Patient:
    """Apply patient changes and delete tokens in one transaction.

    The update and the token deletion are committed together. On any
    failure the session is rolled back, so neither the patient row nor its
    tokens change; the caller must refresh any loaded objects before
    reading them again.

    When ``presented`` is given, that exact token is deleted first and the
    transaction aborts if it is already gone. Of two requests racing with
    the same link, only one gets past this delete.

    Args:
        db: Async database session. Pending work in it is committed too.
        patient: Patient to update.
        changes: Field names and new values (see PatientRepository.update).
        contexts: Contexts whose tokens are deleted, or ALL_CONTEXTS.
        presented: Delivered token being redeemed, from check_delivery_token().

    Returns:
        Updated Patient.

    Raises:
        TokenNotFoundError: If the presented token was already consumed.
        ValidationError: If a field name is not updatable.
        ConflictError: If a unique constraint is violated.
        NotFoundError: If the patient no longer exists.
        StorageError: If the store fails for any other reason.
    """
    patient_id = patient.id
    context_values = (
        None if contexts == ALL_CONTEXTS else [c.value for c in contexts]
    )

    try:
        if presented is not None:
            claimed = await PatientTokenRepository.delete(
                db, token=presented.digest, context=presented.context.value
            )
            if claimed == 0:
                logger.info(
                    "Rejected reused %s token for patient %s",
                    presented.context.kind.value,
                    patient_id,
                )
                raise TokenNotFoundError()
        updated = await PatientRepository.update(db, patient_id, **changes)
        if updated is None:
            raise NotFoundError("Patient", str(patient_id))
        deleted = await PatientTokenRepository.delete_for_patient(
            db, patient_id, contexts=context_values
        )
        await db.commit()
    except ValueError as exc:
        await db.rollback()
        raise ValidationError(str(exc)) from exc
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            code="CONSTRAINT_VIOLATION",
            message="Value already in use",
        ) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Patient update for %s failed: %s", patient_id, exc)
        raise StorageError("Patient update failed") from exc
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Updated patient %s (%s) and deleted %d token(s)",
        patient_id,
        ", ".join(sorted(changes)),
        deleted,
    )
    return updated


async def invalidate_all(db: AsyncSession, patient: Patient) -> int:
    """Delete every token of a patient, regardless of context.

    Args:
        db: Async database session. The delete is not committed.
        patient: Token owner.

    Returns:
        Number of deleted tokens.

    Raises:
        StorageError: If the delete fails.
    """
    try:
        deleted = await PatientTokenRepository.delete_for_patient(db, patient.id)
    except SQLAlchemyError as exc:
        logger.error("Token invalidation failed for patient %s: %s", patient.id, exc)
        raise StorageError(_STORAGE_FAILURE_MSG) from exc

    logger.info("Invalidated %d token(s) for patient %s", deleted, patient.id)
    return deleted


async def revoke_session_token(db: AsyncSession, raw_token: bytes) -> None:
    """Delete one session token (log out a single device).

    Unknown tokens are ignored.

    Raises:
        StorageError: If the delete fails.
    """
    try:
        await PatientTokenRepository.delete(
            db, token=raw_token, context=TokenContext.session().value
        )
    except SQLAlchemyError as exc:
        logger.error("Session token delete failed: %s", exc)
        raise StorageError(_STORAGE_FAILURE_MSG) from exc


async def purge_expired(db: AsyncSession, *, now: datetime | None = None) -> int:
    """Delete tokens that are past their context's window.

    Change contexts are stored as ``change:<current>`` for both channels,
    so they are purged with the longer of the two change windows.

    Args:
        db: Async database session. The deletes are not committed.
        now: Reference time override.

    Returns:
        Number of deleted tokens.

    Raises:
        StorageError: If a delete fails.
    """
    now = now or utcnow()
    fixed = (
        TokenContext.session(),
        TokenContext.confirm(),
        TokenContext.reset_password(),
    )
    change_window = timedelta(
        days=max(
            settings.change_email_validity_days,
            settings.change_phone_number_validity_days,
        )
    )

    total = 0
    try:
        for context in fixed:
            total += await PatientTokenRepository.delete_issued_before(
                db, context=context.value, cutoff=now - context.validity
            )
        total += await PatientTokenRepository.delete_issued_before(
            db, context=None, cutoff=now - change_window, change_contexts=True
        )
    except SQLAlchemyError as exc:
        logger.error("Expired token purge failed: %s", exc)
        raise StorageError(_STORAGE_FAILURE_MSG) from exc

    logger.info("Purged %d expired token(s)", total)
    return total
