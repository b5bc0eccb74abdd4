"""
Credential codec - authenticated encryption of member credentials.

Only the credentials sub-record is sealed; every other member field is
stored in clear. Uses AES-256-GCM with a fresh random IV per call.
"""

import binascii
import json
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import ValidationError as PydanticValidationError

from member_registry.core.exceptions import ConfigurationError, DecryptionError
from member_registry.core.models import Credentials, EncryptedCredentials

KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16


class CredentialCodec:
    """Seal and open credentials with a fixed 256-bit key."""

    def __init__(self, key: bytes):
        """
        Initialize the codec.

        Args:
            key: Raw 32-byte AES-256 key

        Raises:
            ConfigurationError: If the key has the wrong length
        """
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
            raise ConfigurationError(
                f"Encryption key must be exactly {KEY_LENGTH} bytes",
                config_key="encryption_key",
            )
        self._aead = AESGCM(bytes(key))

    @classmethod
    def from_hex(cls, hex_key: str) -> "CredentialCodec":
        """Create a codec from a 64-character hex key."""
        try:
            key = bytes.fromhex(hex_key.strip())
        except (ValueError, AttributeError) as e:
            raise ConfigurationError(
                "Encryption key must be a hex string",
                config_key="encryption_key",
            ) from e
        return cls(key)

    @staticmethod
    def generate_key() -> str:
        """Return a new random key as hex."""
        return os.urandom(KEY_LENGTH).hex()

    def __repr__(self) -> str:
        return "CredentialCodec(key=***)"

    def encrypt(self, credentials: Credentials) -> EncryptedCredentials:
        """Seal credentials, returning hex cipher text, IV and tag."""
        iv = os.urandom(IV_LENGTH)
        plaintext = credentials.model_dump_json().encode("utf-8")
        sealed = self._aead.encrypt(iv, plaintext, None)
        # AESGCM appends the tag to the cipher text
        cipher_blob, auth_tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return EncryptedCredentials(
            cipher_blob=cipher_blob.hex(),
            iv=iv.hex(),
            auth_tag=auth_tag.hex(),
        )

    def decrypt(self, encrypted: EncryptedCredentials) -> Credentials:
        """
        Open sealed credentials.

        Raises:
            DecryptionError: If any field is malformed or the tag does not verify
        """
        try:
            cipher_blob = bytes.fromhex(encrypted.cipher_blob)
            iv = bytes.fromhex(encrypted.iv)
            auth_tag = bytes.fromhex(encrypted.auth_tag)
        except (ValueError, TypeError) as e:
            raise DecryptionError(reason="non-hex input") from e

        if len(iv) != IV_LENGTH:
            raise DecryptionError(reason=f"iv must be {IV_LENGTH} bytes, got {len(iv)}")
        if len(auth_tag) != TAG_LENGTH:
            raise DecryptionError(
                reason=f"auth tag must be {TAG_LENGTH} bytes, got {len(auth_tag)}"
            )

        try:
            plaintext = self._aead.decrypt(iv, cipher_blob + auth_tag, None)
        except InvalidTag as e:
            raise DecryptionError(reason="authentication tag mismatch") from e

        try:
            return Credentials.model_validate(json.loads(plaintext.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, PydanticValidationError) as e:
            raise DecryptionError(reason="decrypted payload is not valid credentials") from e


def is_hex(value: str) -> bool:
    """Check whether a string is non-empty, even-length hex."""
    if not value or len(value) % 2:
        return False
    try:
        binascii.unhexlify(value)
    except (binascii.Error, ValueError):
        return False
    return True
