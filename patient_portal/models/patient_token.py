"""Patient token model - session and delivered tokens.

One row per issued credential. Session tokens store the raw random bytes;
tokens delivered by email or SMS store only the SHA-256 digest.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from patient_portal.models.base import Base

if TYPE_CHECKING:
    from patient_portal.models.patient import Patient


class PatientToken(Base):
    """Issued authentication token.

    Attributes:
        id: Integer primary key.
        patient_id: Owning patient. Tokens are deleted with the patient.
        token: Raw bytes (session) or SHA-256 digest (delivered tokens).
        context: Serialized TokenContext, e.g. ``"session"`` or
            ``"change:old@example.com"``.
        sent_to: Destination snapshot at issuance (email or phone number).
            NULL for session tokens.
        inserted_at: Issuance timestamp. Expiry is measured from here.
    """

    __tablename__ = "patients_tokens"
    __table_args__ = (
        UniqueConstraint("context", "token", name="uq_patients_tokens_context_token"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token: Mapped[bytes] = mapped_column(
        LargeBinary(64),
        nullable=False,
    )
    context: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    sent_to: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    inserted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    patient: Mapped["Patient"] = relationship("Patient", back_populates="tokens")

    def __repr__(self) -> str:
        # Never include the token value
        return (
            f"<PatientToken(id={self.id}, patient_id={self.patient_id}, "
            f"context='{self.context}')>"
        )
