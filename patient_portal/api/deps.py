"""Shared dependencies for API endpoints.

The session token is read from the httpOnly cookie and resolved to a
patient through the token authority. Every failure (no cookie, malformed
cookie, unknown or expired token) yields the same 401.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from patient_portal.core.auth import read_session_cookie
from patient_portal.core.config import settings
from patient_portal.core.database import get_db
from patient_portal.core.email import PatientNotifier, get_notifier
from patient_portal.core.errors import UnauthorizedError
from patient_portal.models.patient import Patient
from patient_portal.services import accounts

DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_session_token(request: Request) -> bytes | None:
    """Raw session token from the cookie, or None."""
    return read_session_cookie(request)


SessionToken = Annotated[bytes | None, Depends(get_session_token)]


async def get_current_patient(token: SessionToken, db: DbSession) -> Patient:
    """Resolve the session cookie to a patient.

    Raises:
        UnauthorizedError: For any authentication failure.
    """
    if token is None:
        raise UnauthorizedError()
    patient = await accounts.get_patient_by_session_token(db, token)
    if patient is None:
        raise UnauthorizedError()
    return patient


CurrentPatient = Annotated[Patient, Depends(get_current_patient)]
Notifier = Annotated[PatientNotifier, Depends(get_notifier)]


def frontend_link(path: str) -> accounts.UrlBuilder:
    """Build links of the form ``{FRONTEND_URL}{path}/{token}``."""
    base = f"{settings.frontend_url.rstrip('/')}{path}"
    return lambda token: f"{base}/{token}"
