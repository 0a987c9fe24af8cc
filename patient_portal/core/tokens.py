"""Token contexts and pure token helpers.

A token's context says which workflow it belongs to. Contexts are a tagged
variant rather than ad hoc strings: the change variants carry the patient's
*current* contact value, and every variant knows its validity window and the
patient field it is delivered through.

Helpers:
- generate_token_bytes: 32 bytes from the OS CSPRNG
- hash_token: SHA-256 digest stored at rest for delivered tokens
- encode_token / decode_token: URL-safe, padding-free base64
"""

import base64
import binascii
import hashlib
import secrets
import string
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from patient_portal.core.config import settings
from patient_portal.core.errors import MalformedTokenError

# Raw token size in bytes
TOKEN_SIZE = 32

_CHANGE_PREFIX = "change:"

_URLSAFE_ALPHABET = frozenset(string.ascii_letters + string.digits + "-_")


class TokenKind(str, Enum):
    """Workflow a token belongs to."""

    SESSION = "session"
    CONFIRM = "confirm"
    RESET_PASSWORD = "reset_password"
    CHANGE_EMAIL = "change_email"
    CHANGE_PHONE_NUMBER = "change_phone_number"


class Channel(str, Enum):
    """Patient field a delivered token is sent to."""

    EMAIL = "email"
    PHONE_NUMBER = "phone_number"


_CHANNELS: dict[TokenKind, Channel | None] = {
    TokenKind.SESSION: None,
    TokenKind.CONFIRM: Channel.EMAIL,
    TokenKind.RESET_PASSWORD: Channel.EMAIL,
    TokenKind.CHANGE_EMAIL: Channel.EMAIL,
    TokenKind.CHANGE_PHONE_NUMBER: Channel.PHONE_NUMBER,
}


@dataclass(frozen=True)
class TokenContext:
    """Context tag of an issued token.

    Build instances with the classmethods; ``current`` is only set for the
    change variants and holds the contact value being replaced.

    Attributes:
        kind: Workflow the token belongs to.
        current: Contact value at request time (change variants only).
    """

    kind: TokenKind
    current: str | None = None

    def __post_init__(self) -> None:
        is_change = self.kind in (TokenKind.CHANGE_EMAIL, TokenKind.CHANGE_PHONE_NUMBER)
        if is_change and not self.current:
            msg = f"{self.kind.value} context requires the current contact value"
            raise ValueError(msg)
        if not is_change and self.current is not None:
            msg = f"{self.kind.value} context does not carry a contact value"
            raise ValueError(msg)

    @classmethod
    def session(cls) -> "TokenContext":
        return cls(TokenKind.SESSION)

    @classmethod
    def confirm(cls) -> "TokenContext":
        return cls(TokenKind.CONFIRM)

    @classmethod
    def reset_password(cls) -> "TokenContext":
        return cls(TokenKind.RESET_PASSWORD)

    @classmethod
    def change_email(cls, current_email: str) -> "TokenContext":
        return cls(TokenKind.CHANGE_EMAIL, current_email)

    @classmethod
    def change_phone_number(cls, current_phone_number: str) -> "TokenContext":
        return cls(TokenKind.CHANGE_PHONE_NUMBER, current_phone_number)

    @property
    def value(self) -> str:
        """Stored form: ``session``, ``confirm``, ``reset_password`` or ``change:<current>``."""
        if self.current is not None:
            return f"{_CHANGE_PREFIX}{self.current}"
        return self.kind.value

    @property
    def is_change(self) -> bool:
        return self.current is not None

    @property
    def channel(self) -> Channel | None:
        """Patient field the token is delivered through (None for sessions)."""
        return _CHANNELS[self.kind]

    @property
    def validity(self) -> timedelta:
        """How long after issuance the token is accepted."""
        days = {
            TokenKind.SESSION: settings.session_validity_days,
            TokenKind.CONFIRM: settings.confirm_validity_days,
            TokenKind.RESET_PASSWORD: settings.reset_password_validity_days,
            TokenKind.CHANGE_EMAIL: settings.change_email_validity_days,
            TokenKind.CHANGE_PHONE_NUMBER: settings.change_phone_number_validity_days,
        }[self.kind]
        return timedelta(days=days)

    def __str__(self) -> str:
        return self.value


def generate_token_bytes() -> bytes:
    """Return TOKEN_SIZE bytes from a cryptographically secure source."""
    return secrets.token_bytes(TOKEN_SIZE)


def hash_token(raw: bytes) -> bytes:
    """SHA-256 digest of a raw token, as stored for delivered tokens."""
    return hashlib.sha256(raw).digest()


def encode_token(raw: bytes) -> str:
    """URL-safe base64 without padding, as embedded in links and cookies."""
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_token(encoded: str) -> bytes:
    """Decode a value produced by encode_token().

    Raises:
        MalformedTokenError: If the value is not padding-free URL-safe base64.
    """
    if not encoded or not set(encoded) <= _URLSAFE_ALPHABET:
        raise MalformedTokenError()
    data = encoded.encode("ascii")
    # Unpadded length 4n+1 is never valid base64
    if len(data) % 4 == 1:
        raise MalformedTokenError()
    padded = data + b"=" * (-len(data) % 4)
    try:
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except binascii.Error as exc:
        raise MalformedTokenError() from exc
