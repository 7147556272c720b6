"""Credential cipher for payment gateway secrets.

Encrypts individual secret fields with AES-256-GCM. Every call draws a
fresh random salt and IV and re-derives the key from the master secret
with PBKDF2-HMAC-SHA512, so no derived key is ever cached.

Envelope format (lowercase hex groups):

    salt:iv:tag:ciphertext
"""

import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from app.core.config import settings
from app.core.exceptions import ConfigurationError, DecryptionError

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32

_ENVELOPE_PATTERN = re.compile(
    rf"^[0-9a-f]{{{SALT_LENGTH * 2}}}:[0-9a-f]{{{IV_LENGTH * 2}}}:[0-9a-f]{{{TAG_LENGTH * 2}}}:[0-9a-f]+$"
)


def _master_key() -> bytes:
    """Get the process-wide master secret.

    Raises:
        ConfigurationError: If neither PAYMENT_ENCRYPTION_KEY nor SECRET_KEY is set
    """
    key = settings.PAYMENT_ENCRYPTION_KEY or settings.SECRET_KEY
    if not key:
        raise ConfigurationError(
            "PAYMENT_ENCRYPTION_KEY or SECRET_KEY must be set for credential encryption"
        )
    return key.encode("utf-8")


def _derive_key(salt: bytes) -> bytes:
    """Derive an AES-256 key for one envelope.

    Args:
        salt: Random salt stored in the envelope

    Returns:
        bytes: 32-byte key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=settings.PAYMENT_KDF_ITERATIONS,
    )
    return kdf.derive(_master_key())


def is_encrypted(value: str) -> bool:
    """Check whether a value already has the envelope shape.

    Args:
        value: Candidate string

    Returns:
        bool: True if the value has the salt, IV and tag lengths of an envelope
    """
    if not isinstance(value, str):
        return False
    return bool(_ENVELOPE_PATTERN.match(value))


def encrypt(plaintext: str) -> str:
    """Encrypt a secret value.

    Already-encrypted values are returned unchanged so repeated writes
    never double-encrypt.

    Args:
        plaintext: The secret to encrypt

    Returns:
        str: Envelope string
    """
    if is_encrypted(plaintext):
        return plaintext

    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_derive_key(salt)).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return ":".join([salt.hex(), iv.hex(), tag.hex(), ciphertext.hex()])


def decrypt(envelope: str) -> str:
    """Decrypt an envelope produced by encrypt().

    Args:
        envelope: Envelope string

    Returns:
        str: The original plaintext

    Raises:
        DecryptionError: If the envelope is malformed or fails authentication
    """
    if not isinstance(envelope, str):
        raise DecryptionError("Invalid encrypted data format")

    parts = envelope.split(":")
    if len(parts) != 4:
        raise DecryptionError("Invalid encrypted data format")

    try:
        salt, iv, tag, ciphertext = (bytes.fromhex(part) for part in parts)
    except ValueError as e:
        raise DecryptionError("Invalid encrypted data format") from e

    if len(salt) != SALT_LENGTH or len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
        raise DecryptionError("Invalid encrypted data format")

    try:
        plaintext = AESGCM(_derive_key(salt)).decrypt(iv, ciphertext + tag, None)
        return plaintext.decode("utf-8")
    except InvalidTag as e:
        raise DecryptionError("Failed to decrypt data: authentication failed") from e
    except UnicodeDecodeError as e:
        raise DecryptionError("Failed to decrypt data: invalid encoding") from e
