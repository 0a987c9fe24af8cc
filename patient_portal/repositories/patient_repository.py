"""Repository for Patient CRUD operations.

Provides database access for the patients table. Email is normalized to
lowercase on write and on lookup, which makes email uniqueness and lookups
case-insensitive.
"""

from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from patient_portal.models.patient import Patient

# Fields that may be updated via PatientRepository.update().
# Security: Never add 'id', 'created_at', or 'updated_at'.
# - id: primary key, immutable
# - created_at/updated_at: server-managed timestamps
# email and phone_number are allowed here only because the token flows
# verify ownership of the new value before calling update().
_UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "email",
        "hashed_password",
        "phone_number",
        "confirmed_at",
    }
)


class PatientRepository:
    """Stateless repository for Patient table operations.

    All methods are static with no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, patient_id: int) -> Patient | None:
        """Fetch a patient by primary key.

        Args:
            db: Async database session.
            patient_id: Integer primary key.

        Returns:
            Patient if found, None otherwise.
        """
        return await db.get(Patient, patient_id)

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> Patient | None:
        """Fetch a patient by email address (case-insensitive).

        Args:
            db: Async database session.
            email: Email address to look up.

        Returns:
            Patient if found, None otherwise.
        """
        stmt = select(Patient).where(Patient.email == email.strip().lower())
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_username(db: AsyncSession, username: str) -> Patient | None:
        """Fetch a patient by username."""
        stmt = select(Patient).where(Patient.username == username)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_phone_number(
        db: AsyncSession, phone_number: str
    ) -> Patient | None:
        """Fetch a patient by phone number."""
        stmt = select(Patient).where(Patient.phone_number == phone_number)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        hashed_password: str,
        first_name: str,
        middle_name: str,
        last_name: str,
        username: str,
        phone_number: str,
        date_of_birth: date,
        gender: str = "male",
    ) -> Patient:
        """Create a new patient.

        Email is normalized to lowercase before storage.

        Args:
            db: Async database session.
            email: Patient email address.
            hashed_password: bcrypt hash of the password.
            first_name: Given name.
            middle_name: Middle name.
            last_name: Family name.
            username: Unique handle.
            phone_number: Unique mobile number.
            date_of_birth: Birth date.
            gender: "male" or "female".

        Returns:
            Created Patient with database-generated fields populated.

        Raises:
            sqlalchemy.exc.IntegrityError: If email, username or phone
                number already exists.
        """
        patient = Patient(
            email=email.strip().lower(),
            hashed_password=hashed_password,
            first_name=first_name,
            middle_name=middle_name,
            last_name=last_name,
            username=username,
            phone_number=phone_number,
            date_of_birth=date_of_birth,
            gender=gender,
        )
        db.add(patient)
        await db.flush()
        await db.refresh(patient)
        return patient

    @staticmethod
    async def update(
        db: AsyncSession,
        patient_id: int,
        **kwargs: str | datetime | None,
    ) -> Patient | None:
        """Update patient fields.

        Only fields in _UPDATABLE_FIELDS are allowed. Unknown field names
        raise ValueError.

        Args:
            db: Async database session.
            patient_id: ID of the patient to update.
            **kwargs: Field names and values to update.

        Returns:
            Updated Patient if found, None if patient does not exist.

        Raises:
            ValueError: If an unknown field name is passed.
            sqlalchemy.exc.IntegrityError: If a unique field collides.
        """
        unknown = set(kwargs) - _UPDATABLE_FIELDS
        if unknown:
            msg = f"Unknown fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        patient = await db.get(Patient, patient_id)
        if patient is None:
            return None

        for field, value in kwargs.items():
            if field == "email" and isinstance(value, str):
                value = value.strip().lower()
            setattr(patient, field, value)

        await db.flush()
        await db.refresh(patient)
        return patient
