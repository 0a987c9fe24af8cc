"""Password hashing and session cookie helpers.

Pipeline:
- hash_password / verify_password: bcrypt with the configured cost factor
- DUMMY_HASH: Timing-safe constant for patient enumeration defense
- set_session_cookie / clear_session_cookie / read_session_cookie: the
  session token travels as padding-free base64 in an httpOnly cookie
"""

import logging

import bcrypt
from fastapi import Request, Response

from patient_portal.core.config import settings
from patient_portal.core.errors import MalformedTokenError
from patient_portal.core.tokens import decode_token, encode_token

logger = logging.getLogger(__name__)

# bcrypt only reads the first 72 bytes of a password
_BCRYPT_MAX_BYTES = 72

# Pre-computed bcrypt hash for timing-safe comparison on patient-not-found.
# Security: prevents patient enumeration via response time differences.
DUMMY_HASH = b"$2b$12$ZP2PVB8yI35X.mkRqcUPUuSzJA1CNRt4dZ7X3cyrfJu.2S3w.Qen2"


def hash_password(password: str) -> str:
    """Hash a password with bcrypt.

    Args:
        password: Plain-text password, at most 72 bytes once encoded.

    Returns:
        bcrypt hash as a string.
    """
    return bcrypt.hashpw(
        password.encode(), bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    ).decode()


def verify_password(password: str, hashed_password: str | None) -> bool:
    """Check a password against a stored hash.

    Always performs one bcrypt comparison, against DUMMY_HASH when there is
    no stored hash, so response time does not reveal whether a patient exists.

    Args:
        password: Candidate plain-text password.
        hashed_password: Stored bcrypt hash, or None if no patient matched.

    Returns:
        True only if the password matches the stored hash.
    """
    candidate = password.encode()
    if hashed_password is None or len(candidate) > _BCRYPT_MAX_BYTES:
        # Stored passwords never exceed 72 bytes, so a longer one cannot match
        bcrypt.checkpw(candidate[:_BCRYPT_MAX_BYTES], DUMMY_HASH)
        return False
    return bcrypt.checkpw(candidate, hashed_password.encode())


def set_session_cookie(response: Response, raw_token: bytes) -> None:
    """Set the httpOnly session cookie on a response.

    Security: httpOnly prevents XSS cookie theft. Secure flag and SameSite
    are configured via settings for environment-appropriate security.

    Args:
        response: FastAPI response object.
        raw_token: Raw session token bytes.
    """
    response.set_cookie(
        key=settings.session_cookie_name,
        value=encode_token(raw_token),
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        path="/",
        max_age=settings.session_validity_days * 24 * 60 * 60,
        domain=settings.session_cookie_domain or None,
    )


def clear_session_cookie(response: Response) -> None:
    """Expire the session cookie on the client."""
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        secure=settings.session_cookie_secure,
        httponly=True,
        samesite=settings.session_cookie_samesite,
        domain=settings.session_cookie_domain or None,
    )


def read_session_cookie(request: Request) -> bytes | None:
    """Return the raw session token from the request cookie.

    Returns:
        Raw token bytes, or None if the cookie is missing or not valid base64.
    """
    value = request.cookies.get(settings.session_cookie_name)
    if not value:
        return None
    try:
        return decode_token(value)
    except MalformedTokenError:
        logger.info("Ignoring malformed session cookie")
        return None
