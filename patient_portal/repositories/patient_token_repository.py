"""Repository for PatientToken CRUD operations.

Session tokens are stored raw; delivered tokens are stored as SHA-256
digests. Rows are unique per (context, token).
"""

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import Delete, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from patient_portal.models.patient import Patient
from patient_portal.models.patient_token import PatientToken


async def _delete_rows(db: AsyncSession, stmt: Delete) -> int:
    # RETURNING gives the count and lets the session drop deleted rows
    # from its identity map
    stmt = stmt.returning(PatientToken.id).execution_options(
        synchronize_session="fetch"
    )
    result = await db.execute(stmt)
    return len(result.all())


class PatientTokenRepository:
    """Stateless repository for PatientToken table operations.

    All methods are static with no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        patient_id: int,
        token: bytes,
        context: str,
        inserted_at: datetime,
        sent_to: str | None = None,
    ) -> PatientToken:
        """Store a new token.

        Args:
            db: Async database session.
            patient_id: Owning patient.
            token: Raw bytes (session) or SHA-256 digest (delivered).
            context: Serialized token context.
            inserted_at: Issuance timestamp.
            sent_to: Destination snapshot for delivered tokens.

        Returns:
            Created PatientToken.

        Raises:
            sqlalchemy.exc.IntegrityError: If (context, token) already exists.
        """
        row = PatientToken(
            patient_id=patient_id,
            token=token,
            context=context,
            sent_to=sent_to,
            inserted_at=inserted_at,
        )
        db.add(row)
        await db.flush()
        return row

    @staticmethod
    async def get(
        db: AsyncSession,
        *,
        token: bytes,
        context: str,
    ) -> PatientToken | None:
        """Look up a token by its unique (token, context) pair.

        Args:
            db: Async database session.
            token: Stored token value.
            context: Serialized token context.

        Returns:
            PatientToken if found, None otherwise.
        """
        stmt = select(PatientToken).where(
            PatientToken.token == token,
            PatientToken.context == context,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_with_patient(
        db: AsyncSession,
        *,
        token: bytes,
        context: str,
    ) -> tuple[PatientToken, Patient] | None:
        """Look up a token together with its owner in one query.

        Args:
            db: Async database session.
            token: Stored token value.
            context: Serialized token context.

        Returns:
            (PatientToken, Patient) if found, None otherwise.
        """
        stmt = (
            select(PatientToken, Patient)
            .join(Patient, PatientToken.patient_id == Patient.id)
            .where(
                PatientToken.token == token,
                PatientToken.context == context,
            )
        )
        result = await db.execute(stmt)
        row = result.one_or_none()
        if row is None:
            return None
        return row[0], row[1]

    @staticmethod
    async def get_patient(
        db: AsyncSession,
        *,
        token: bytes,
        context: str,
        issued_since: datetime,
    ) -> Patient | None:
        """Fetch the owner of a token issued at or after a cutoff.

        Args:
            db: Async database session.
            token: Stored token value.
            context: Serialized token context.
            issued_since: Tokens issued before this instant are ignored.

        Returns:
            Owning Patient if a live token matches, None otherwise.
        """
        stmt = (
            select(Patient)
            .join(PatientToken, PatientToken.patient_id == Patient.id)
            .where(
                PatientToken.token == token,
                PatientToken.context == context,
                PatientToken.inserted_at >= issued_since,
            )
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_for_patient(
        db: AsyncSession,
        patient_id: int,
    ) -> list[PatientToken]:
        """Return every token owned by a patient, oldest first."""
        stmt = (
            select(PatientToken)
            .where(PatientToken.patient_id == patient_id)
            .order_by(PatientToken.id)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def delete(
        db: AsyncSession,
        *,
        token: bytes,
        context: str,
    ) -> int:
        """Delete a single token.

        Returns:
            Number of deleted rows (0 or 1).
        """
        stmt = delete(PatientToken).where(
            PatientToken.token == token,
            PatientToken.context == context,
        )
        return await _delete_rows(db, stmt)

    @staticmethod
    async def delete_for_patient(
        db: AsyncSession,
        patient_id: int,
        *,
        contexts: Iterable[str] | None = None,
    ) -> int:
        """Delete a patient's tokens.

        Args:
            db: Async database session.
            patient_id: Owning patient.
            contexts: Serialized contexts to delete. None deletes every token
                of the patient regardless of context.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(PatientToken).where(PatientToken.patient_id == patient_id)
        if contexts is not None:
            stmt = stmt.where(PatientToken.context.in_(list(contexts)))
        return await _delete_rows(db, stmt)

    @staticmethod
    async def delete_issued_before(
        db: AsyncSession,
        *,
        context: str | None,
        cutoff: datetime,
        change_contexts: bool = False,
    ) -> int:
        """Delete tokens issued before a cutoff (periodic cleanup).

        Args:
            db: Async database session.
            context: Exact serialized context to match. Ignored when
                change_contexts is True.
            cutoff: Tokens issued before this instant are removed.
            change_contexts: Match every ``change:*`` context instead.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(PatientToken).where(PatientToken.inserted_at < cutoff)
        if change_contexts:
            stmt = stmt.where(PatientToken.context.startswith("change:"))
        else:
            stmt = stmt.where(PatientToken.context == context)
        return await _delete_rows(db, stmt)
