"""
Persisted document format for the member registry.

The whole registry is written as one versioned JSON document:

    {"version": "1.0", "savedAt": "...", "members": [{...}, ...]}

Member records use camelCase keys; credentials are sealed by the codec.
"""

import json
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from member_registry.core.exceptions import LoadValidationError
from member_registry.core.models import Credentials, EncryptedCredentials, Member
from member_registry.registry.codec import CredentialCodec, is_hex

DOCUMENT_VERSION = "1.0"
SUPPORTED_MAJOR_VERSION = "1"


def normalize_subject_id(value: Any) -> str:
    """
    Canonical key for a subject id: the decimal form of an integer.

    Accepts ints and ASCII digit strings, so 12 and "012" share the key "12".

    Raises:
        ValueError: If the id is missing, boolean, or not an integer
    """
    if isinstance(value, bool):
        raise ValueError("subject id must be an integer, not a boolean")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return str(int(value))
    raise ValueError("subject id must be an integer or a string of ASCII digits")


class PersistedCredentials(BaseModel):
    """Sealed credentials as stored in the document."""

    cipher_blob: str = Field(alias="cipherBlob")
    iv: str
    auth_tag: str = Field(alias="authTag")

    model_config = {"populate_by_name": True}

    @field_validator("cipher_blob", "iv", "auth_tag")
    @classmethod
    def _must_be_hex(cls, value: str) -> str:
        if not is_hex(value):
            raise ValueError("must be a non-empty hex string")
        return value

    def to_encrypted(self) -> EncryptedCredentials:
        return EncryptedCredentials(
            cipher_blob=self.cipher_blob, iv=self.iv, auth_tag=self.auth_tag
        )


class PersistedMember(BaseModel):
    """Structural schema of one member record in the document."""

    external_account_id: str = Field(alias="externalAccountId", min_length=1)
    profile_snapshot: dict[str, Any] | None = Field(default=None, alias="profileSnapshot")
    subject_snapshot: dict[str, Any] = Field(alias="subjectSnapshot")
    credentials: PersistedCredentials
    registered_at: str | None = Field(default=None, alias="registeredAt")
    last_credential_refresh: str | None = Field(default=None, alias="lastCredentialRefresh")
    is_active: bool = Field(default=True, alias="isActive")
    deactivated_at: str | None = Field(default=None, alias="deactivatedAt")
    reactivated_at: str | None = Field(default=None, alias="reactivatedAt")

    model_config = {"populate_by_name": True}

    @field_validator("subject_snapshot")
    @classmethod
    def _subject_id_numeric(cls, value: dict[str, Any]) -> dict[str, Any]:
        if value.get("id") is None:
            raise ValueError("subjectSnapshot.id is required")
        normalize_subject_id(value["id"])
        return value

    @field_validator("is_active", mode="before")
    @classmethod
    def _strict_bool(cls, value: Any) -> Any:
        if not isinstance(value, bool):
            raise ValueError("isActive must be a boolean")
        return value

    @property
    def subject_id(self) -> str:
        return normalize_subject_id(self.subject_snapshot["id"])

    def to_member(self, credentials: Credentials) -> Member:
        """Build a live member from this record and its opened credentials."""
        registered_at = self.registered_at or ""
        return Member(
            external_account_id=self.external_account_id,
            subject_id=self.subject_id,
            profile_snapshot=self.profile_snapshot,
            subject_snapshot=self.subject_snapshot,
            credentials=credentials,
            registered_at=registered_at,
            last_credential_refresh=self.last_credential_refresh or registered_at,
            is_active=self.is_active,
            deactivated_at=self.deactivated_at if not self.is_active else None,
            reactivated_at=self.reactivated_at,
        )


def member_to_record(member: Member, codec: CredentialCodec) -> dict[str, Any]:
    """Serialize a member into its document record, sealing credentials."""
    sealed = codec.encrypt(member.credentials)
    record: dict[str, Any] = {
        "externalAccountId": member.external_account_id,
        "profileSnapshot": member.profile_snapshot,
        "subjectSnapshot": member.subject_snapshot,
        "credentials": {
            "cipherBlob": sealed.cipher_blob,
            "iv": sealed.iv,
            "authTag": sealed.auth_tag,
        },
        "registeredAt": member.registered_at,
        "lastCredentialRefresh": member.last_credential_refresh,
        "isActive": member.is_active,
    }
    if member.deactivated_at is not None:
        record["deactivatedAt"] = member.deactivated_at
    if member.reactivated_at is not None:
        record["reactivatedAt"] = member.reactivated_at
    return record


def encode_document(
    members: Iterable[Member], codec: CredentialCodec, saved_at: datetime
) -> bytes:
    """Render the full registry document as UTF-8 JSON bytes."""
    document = {
        "version": DOCUMENT_VERSION,
        "savedAt": saved_at.isoformat(),
        "members": [member_to_record(m, codec) for m in members],
    }
    return (json.dumps(document, indent=2) + "\n").encode("utf-8")


def decode_document(raw: bytes) -> list[Any]:
    """
    Parse document bytes and return the raw member records.

    Raises:
        LoadValidationError: If the document envelope is unusable
    """
    try:
        document = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise LoadValidationError(f"Registry document is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise LoadValidationError(
            "Registry document must be a JSON object",
            details={"actual_type": type(document).__name__},
        )

    version = document.get("version", DOCUMENT_VERSION)
    if not isinstance(version, str) or version.split(".")[0] != SUPPORTED_MAJOR_VERSION:
        raise LoadValidationError(
            f"Unsupported registry document version: {version!r}",
            details={"supported": DOCUMENT_VERSION},
        )

    members = document.get("members")
    if not isinstance(members, list):
        raise LoadValidationError("Registry document has no 'members' list")
    return members


def describe_record_shape(raw: Any) -> dict[str, Any]:
    """Describe a raw record without exposing its values."""
    if not isinstance(raw, dict):
        return {"type": type(raw).__name__}
    shape: dict[str, Any] = {}
    for key, value in raw.items():
        if isinstance(value, dict):
            shape[key] = sorted(value.keys())
        else:
            shape[key] = type(value).__name__
    return shape
