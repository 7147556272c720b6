"""Property-based tests for the gateway credential cipher.

Tests that:
- Encrypting then decrypting returns the original secret
- Two encryptions of the same secret never produce the same envelope
- Envelopes are never double-encrypted and hex-looking secrets still get encrypted
- Tampered or malformed envelopes fail with DecryptionError
"""

import string

import pytest
from hypothesis import given, settings, strategies as st

from app.core.encryption import (
    IV_LENGTH,
    SALT_LENGTH,
    TAG_LENGTH,
    decrypt,
    encrypt,
    is_encrypted,
)
from app.core.exceptions import DecryptionError


# Strategy for realistic merchant passwords and API keys
secret_strategy = st.text(
    alphabet=string.ascii_letters + string.digits + "!@#$%^&*()_+-=[]{}|;,.<>?",
    min_size=1,
    max_size=128,
)

# Strategy for arbitrary unicode secrets
unicode_secret_strategy = st.text(min_size=1, max_size=64)


class TestCredentialRoundTrip:
    """Decrypting an envelope yields the encrypted secret."""

    @given(secret=secret_strategy)
    @settings(max_examples=25, deadline=None)
    def test_encrypt_decrypt_roundtrip(self, secret: str):
        envelope = encrypt(secret)

        assert envelope != secret
        assert decrypt(envelope) == secret

    @given(secret=unicode_secret_strategy)
    @settings(max_examples=25, deadline=None)
    def test_roundtrip_preserves_unicode(self, secret: str):
        assert decrypt(encrypt(secret)) == secret


class TestEnvelopeFormat:
    """Envelope shape: salt:iv:tag:ciphertext in hex."""

    @given(secret=secret_strategy)
    @settings(max_examples=25, deadline=None)
    def test_envelope_has_four_hex_groups(self, secret: str):
        envelope = encrypt(secret)
        salt, iv, tag, ciphertext = envelope.split(":")

        assert len(bytes.fromhex(salt)) == SALT_LENGTH
        assert len(bytes.fromhex(iv)) == IV_LENGTH
        assert len(bytes.fromhex(tag)) == TAG_LENGTH
        assert len(bytes.fromhex(ciphertext)) == len(secret.encode("utf-8"))
        assert envelope == envelope.lower()

    @given(secret=secret_strategy)
    @settings(max_examples=25, deadline=None)
    def test_fresh_salt_and_iv_per_call(self, secret: str):
        first = encrypt(secret)
        second = encrypt(secret)

        assert first != second
        assert first.split(":")[0] != second.split(":")[0]
        assert decrypt(first) == decrypt(second) == secret

    @given(secret=secret_strategy)
    @settings(max_examples=25, deadline=None)
    def test_encrypting_an_envelope_is_a_no_op(self, secret: str):
        envelope = encrypt(secret)

        assert is_encrypted(envelope)
        assert encrypt(envelope) == envelope

    @pytest.mark.parametrize(
        "value",
        ["lazY2k", "plain:text", "abc:def:ghi:xyz", "", "12:34:56", "abcd:1234:beef:cafe"],
    )
    def test_plaintext_is_not_detected_as_envelope(self, value: str):
        assert not is_encrypted(value)

    @given(
        groups=st.lists(
            st.text(alphabet="0123456789abcdef", min_size=1, max_size=16),
            min_size=4,
            max_size=4,
        )
    )
    @settings(max_examples=25, deadline=None)
    def test_short_hex_groups_are_encrypted_as_plaintext(self, groups: list[str]):
        value = ":".join(groups)

        assert not is_encrypted(value)
        envelope = encrypt(value)
        assert envelope != value
        assert decrypt(envelope) == value


class TestTamperDetection:
    """Authenticated encryption rejects any modified envelope."""

    @given(secret=secret_strategy, group=st.integers(min_value=0, max_value=3))
    @settings(max_examples=25, deadline=None)
    def test_flipped_byte_fails_authentication(self, secret: str, group: int):
        parts = encrypt(secret).split(":")
        raw = bytearray(bytes.fromhex(parts[group]))
        raw[0] ^= 0x01
        parts[group] = raw.hex()

        with pytest.raises(DecryptionError):
            decrypt(":".join(parts))

    @pytest.mark.parametrize(
        "envelope",
        [
            "not-an-envelope",
            "aa:bb:cc",
            "aa:bb:cc:dd:ee",
            "zz:zz:zz:zz",
            "00:00:00:00",
        ],
    )
    def test_malformed_envelope_rejected(self, envelope: str):
        with pytest.raises(DecryptionError):
            decrypt(envelope)

    def test_non_string_rejected(self):
        with pytest.raises(DecryptionError):
            decrypt(None)
