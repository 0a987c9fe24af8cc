"""SQLAlchemy ORM models for the patient portal.

All models are exported from this module for convenient imports:
    from patient_portal.models import Patient, PatientToken

Models are organized by domain:
- patient.py: Patient (account record)
- patient_token.py: PatientToken (session and delivered tokens)
"""

from patient_portal.models.base import Base, TimestampMixin
from patient_portal.models.patient import Patient
from patient_portal.models.patient_token import PatientToken

__all__ = [
    "Base",
    "Patient",
    "PatientToken",
    "TimestampMixin",
]
