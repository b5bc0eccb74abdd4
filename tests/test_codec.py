"""Tests for the credential codec."""

import pytest

from member_registry.core.exceptions import ConfigurationError, DecryptionError
from member_registry.core.models import Credentials, EncryptedCredentials
from member_registry.registry.codec import CredentialCodec, is_hex


def _flip_hex(value: str) -> str:
    """Flip the low bit of the first byte of a hex string."""
    first = int(value[:2], 16) ^ 0x01
    return f"{first:02x}{value[2:]}"


class TestCredentialCodec:
    """Tests for CredentialCodec."""

    def test_round_trip(self, codec: CredentialCodec, make_credentials) -> None:
        """Decrypting an encrypted payload returns equal credentials."""
        creds = make_credentials(1)
        assert codec.decrypt(codec.encrypt(creds)) == creds

    def test_output_is_hex_with_expected_lengths(
        self, codec: CredentialCodec, make_credentials
    ) -> None:
        """IV and tag are 16 bytes each, all fields lowercase hex."""
        sealed = codec.encrypt(make_credentials(1))
        assert len(sealed.iv) == 32
        assert len(sealed.auth_tag) == 32
        for value in (sealed.cipher_blob, sealed.iv, sealed.auth_tag):
            assert is_hex(value)
            assert value == value.lower()

    def test_fresh_iv_per_call(self, codec: CredentialCodec, make_credentials) -> None:
        """Encrypting the same credentials twice yields different output."""
        creds = make_credentials(1)
        first = codec.encrypt(creds)
        second = codec.encrypt(creds)
        assert first.iv != second.iv
        assert first.cipher_blob != second.cipher_blob

    def test_cipher_text_hides_tokens(self, codec: CredentialCodec, make_credentials) -> None:
        """Plain token values do not appear in the sealed output."""
        sealed = codec.encrypt(make_credentials(1, access_token="visible-token"))
        assert "visible-token".encode().hex() not in sealed.cipher_blob

    @pytest.mark.parametrize("field", ["cipher_blob", "iv", "auth_tag"])
    def test_tampering_is_detected(
        self, codec: CredentialCodec, make_credentials, field: str
    ) -> None:
        """Flipping a bit in any component fails authentication."""
        sealed = codec.encrypt(make_credentials(1))
        tampered = sealed.model_copy(update={field: _flip_hex(getattr(sealed, field))})
        with pytest.raises(DecryptionError) as exc_info:
            codec.decrypt(tampered)
        assert exc_info.value.reason == "authentication tag mismatch"

    def test_wrong_key_fails(self, codec: CredentialCodec, make_credentials) -> None:
        """A different key cannot open the payload."""
        sealed = codec.encrypt(make_credentials(1))
        other = CredentialCodec.from_hex("ff" * 32)
        with pytest.raises(DecryptionError):
            other.decrypt(sealed)

    def test_non_hex_input(self, codec: CredentialCodec) -> None:
        """Non-hex fields are rejected before decryption."""
        with pytest.raises(DecryptionError) as exc_info:
            codec.decrypt(EncryptedCredentials(cipher_blob="zz", iv="00" * 16, auth_tag="00" * 16))
        assert exc_info.value.reason == "non-hex input"

    def test_wrong_iv_length(self, codec: CredentialCodec, make_credentials) -> None:
        """An IV of the wrong size is rejected."""
        sealed = codec.encrypt(make_credentials(1))
        with pytest.raises(DecryptionError) as exc_info:
            codec.decrypt(sealed.model_copy(update={"iv": "00" * 12}))
        assert "iv" in exc_info.value.reason

    def test_wrong_tag_length(self, codec: CredentialCodec, make_credentials) -> None:
        """A truncated tag is rejected."""
        sealed = codec.encrypt(make_credentials(1))
        with pytest.raises(DecryptionError) as exc_info:
            codec.decrypt(sealed.model_copy(update={"auth_tag": sealed.auth_tag[:16]}))
        assert "auth tag" in exc_info.value.reason

    def test_sealed_non_credentials_payload(self, codec: CredentialCodec) -> None:
        """An authentic payload that is not a credentials object is rejected."""
        other = Credentials(access_token="a", refresh_token="r", expires_at=1)
        sealed = codec.encrypt(other)
        # Re-seal a bare JSON list under the same key
        iv = bytes.fromhex(sealed.iv)
        raw = codec._aead.encrypt(iv, b"[1, 2, 3]", None)
        bogus = EncryptedCredentials(
            cipher_blob=raw[:-16].hex(), iv=sealed.iv, auth_tag=raw[-16:].hex()
        )
        with pytest.raises(DecryptionError) as exc_info:
            codec.decrypt(bogus)
        assert exc_info.value.reason == "decrypted payload is not valid credentials"

    def test_repr_hides_key(self, codec: CredentialCodec, encryption_key: str) -> None:
        """The key never appears in the codec representation."""
        assert encryption_key not in repr(codec)


class TestCodecConstruction:
    """Tests for building codecs from keys."""

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            CredentialCodec(b"\x00" * 16)

    def test_non_hex_key_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            CredentialCodec.from_hex("not-a-hex-key" * 5)

    def test_generate_key(self) -> None:
        """Generated keys are 64 hex characters and usable."""
        key = CredentialCodec.generate_key()
        assert len(key) == 64
        assert is_hex(key)
        assert key != CredentialCodec.generate_key()
        CredentialCodec.from_hex(key)


class TestIsHex:
    """Tests for the is_hex helper."""

    @pytest.mark.parametrize("value", ["00", "deadBEEF", "0123456789abcdef"])
    def test_valid(self, value: str) -> None:
        assert is_hex(value)

    @pytest.mark.parametrize("value", ["", "0", "xyz0", "12 34"])
    def test_invalid(self, value: str) -> None:
        assert not is_hex(value)
