"""Tests for token contexts and pure token helpers.

Covers the TokenContext variants, SHA-256 hashing, and the padding-free
URL-safe base64 codec, including property-based checks with Hypothesis.
"""

import base64
import hashlib
from datetime import timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from patient_portal.core.errors import InvalidTokenError, MalformedTokenError
from patient_portal.core.tokens import (
    TOKEN_SIZE,
    Channel,
    TokenContext,
    TokenKind,
    decode_token,
    encode_token,
    generate_token_bytes,
    hash_token,
)


class TestTokenContext:
    """Tests for the tagged context variant."""

    @pytest.mark.parametrize(
        ("context", "expected"),
        [
            (TokenContext.session(), "session"),
            (TokenContext.confirm(), "confirm"),
            (TokenContext.reset_password(), "reset_password"),
            (TokenContext.change_email("old@example.com"), "change:old@example.com"),
            (TokenContext.change_phone_number("0712345678"), "change:0712345678"),
        ],
    )
    def test_value_is_the_stored_form(self, context, expected):
        """Each variant serializes to its stored context string."""
        assert context.value == expected
        assert str(context) == expected

    @pytest.mark.parametrize(
        ("context", "days"),
        [
            (TokenContext.session(), 60),
            (TokenContext.confirm(), 7),
            (TokenContext.reset_password(), 1),
            (TokenContext.change_email("a@b.c"), 7),
            (TokenContext.change_phone_number("0712345678"), 7),
        ],
    )
    def test_default_validity_windows(self, context, days):
        """Validity windows follow the configured defaults."""
        assert context.validity == timedelta(days=days)

    def test_channels(self):
        """Each variant knows the patient field it is delivered through."""
        assert TokenContext.session().channel is None
        assert TokenContext.confirm().channel is Channel.EMAIL
        assert TokenContext.reset_password().channel is Channel.EMAIL
        assert TokenContext.change_email("a@b.c").channel is Channel.EMAIL
        assert (
            TokenContext.change_phone_number("0712345678").channel
            is Channel.PHONE_NUMBER
        )

    def test_change_variants_require_current_value(self):
        """A change context without the current value is rejected."""
        with pytest.raises(ValueError, match="requires the current contact value"):
            TokenContext(TokenKind.CHANGE_EMAIL)
        with pytest.raises(ValueError, match="requires the current contact value"):
            TokenContext.change_phone_number("")

    def test_other_variants_reject_current_value(self):
        """Only change contexts carry a contact value."""
        with pytest.raises(ValueError, match="does not carry a contact value"):
            TokenContext(TokenKind.CONFIRM, "a@b.c")

    def test_is_change(self):
        assert TokenContext.change_email("a@b.c").is_change
        assert not TokenContext.reset_password().is_change

    def test_contexts_are_hashable_and_comparable(self):
        """Equal variants compare equal, so they can be used in sets."""
        assert TokenContext.change_email("a@b.c") == TokenContext.change_email("a@b.c")
        assert len({TokenContext.confirm(), TokenContext.confirm()}) == 1


class TestGenerateAndHash:
    def test_generates_token_size_bytes(self):
        assert len(generate_token_bytes()) == TOKEN_SIZE == 32

    def test_generated_tokens_differ(self):
        """Repeated generation never collides."""
        tokens = {generate_token_bytes() for _ in range(1000)}
        assert len(tokens) == 1000

    def test_hash_is_sha256_digest(self):
        raw = b"\x00" * 32
        assert hash_token(raw) == hashlib.sha256(raw).digest()
        assert hash_token(raw) != raw


class TestEncodeDecode:
    def test_encoding_has_no_padding_and_is_urlsafe(self):
        raw = b"\xfb\xff" * 16
        encoded = encode_token(raw)
        assert "=" not in encoded
        assert "+" not in encoded
        assert "/" not in encoded
        assert encoded == base64.urlsafe_b64encode(raw).decode().rstrip("=")

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "not base64!",
            "abc=",
            "a",
            "ab+/",
            "with space",
            "ümlaut",
        ],
    )
    def test_rejects_malformed_values(self, value):
        """Anything but padding-free URL-safe base64 is malformed."""
        with pytest.raises(MalformedTokenError):
            decode_token(value)

    def test_malformed_is_an_invalid_token(self):
        """Malformed input surfaces as the generic invalid-token error."""
        with pytest.raises(InvalidTokenError) as exc_info:
            decode_token("%%%")
        assert exc_info.value.code == "INVALID_TOKEN"
        assert exc_info.value.message == "Invalid or expired token"

    @given(st.binary(min_size=1, max_size=64))
    def test_decode_inverts_encode(self, raw):
        """Decoding an encoded value returns the original bytes."""
        assert decode_token(encode_token(raw)) == raw

    @given(st.text(max_size=60))
    def test_decode_never_raises_anything_but_malformed(self, value):
        """Arbitrary text either decodes or raises MalformedTokenError."""
        try:
            decode_token(value)
        except MalformedTokenError:
            pass
