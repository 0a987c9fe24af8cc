"""Patient model - the portal's user account.

Identity record for authentication: email, hashed password, profile
attributes and confirmation timestamp. Tokens hang off it via patients_tokens.
"""

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Date, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from patient_portal.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from patient_portal.models.patient_token import PatientToken


class Patient(Base, TimestampMixin):
    """Patient account.

    Attributes:
        id: Integer primary key.
        email: Unique email address, stored lower-cased.
        hashed_password: bcrypt hash. Never exposed in repr or responses.
        first_name: Given name.
        middle_name: Middle name.
        last_name: Family name.
        username: Unique handle.
        phone_number: Unique mobile number ("07" + 8 digits).
        date_of_birth: Birth date.
        gender: "male" or "female".
        confirmed_at: Timestamp when the account was confirmed. NULL = unconfirmed.
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(
        String(160),
        unique=True,
        nullable=False,
    )
    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    middle_name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    phone_number: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
    )
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)
    gender: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        server_default=text("'male'"),
        default="male",
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )

    # Relationships
    tokens: Mapped[list["PatientToken"]] = relationship(
        "PatientToken",
        back_populates="patient",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        # Never include hashed_password
        return f"<Patient(id={self.id}, email='{self.email}')>"
