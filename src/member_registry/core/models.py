"""
Core data models for the member registry.

Members, credentials, audit results and load reports share these
type-safe schemas.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class MemberAction(str, Enum):
    """Lifecycle actions recorded in the member action log."""

    REGISTERED = "REGISTERED"
    DEACTIVATED = "DEACTIVATED"
    REACTIVATED = "REACTIVATED"
    REMOVED = "REMOVED"
    CREDENTIALS_REFRESHED = "CREDENTIALS_REFRESHED"


class Credentials(BaseModel):
    """OAuth credentials for the linked subject. Encrypted at rest."""

    access_token: str
    refresh_token: str
    expires_at: int = Field(description="Expiry instant as Unix epoch seconds")
    token_type: str = "Bearer"
    expires_in: int | None = None

    def __repr__(self) -> str:
        return f"Credentials(token_type={self.token_type!r}, expires_at={self.expires_at})"

    __str__ = __repr__


class EncryptedCredentials(BaseModel):
    """AES-GCM sealed credentials; every field is lowercase hex."""

    cipher_blob: str
    iv: str
    auth_tag: str


class Member(BaseModel):
    """One linked identity pair: an external account and a subject."""

    external_account_id: str
    subject_id: str
    profile_snapshot: dict[str, Any] | None = None
    subject_snapshot: dict[str, Any] = Field(default_factory=dict)
    credentials: Credentials
    registered_at: str
    last_credential_refresh: str
    is_active: bool = True
    deactivated_at: str | None = None
    reactivated_at: str | None = None

    @property
    def display_name(self) -> str:
        """Best-effort human name from the snapshots."""
        if self.profile_snapshot:
            name = self.profile_snapshot.get("display_name") or self.profile_snapshot.get(
                "username"
            )
            if name:
                return str(name)
        first = self.subject_snapshot.get("firstname") or ""
        last = self.subject_snapshot.get("lastname") or ""
        full = f"{first} {last}".strip()
        return full or self.external_account_id

    def to_summary(self) -> dict[str, Any]:
        """Convert to summary for listing. Never includes credentials."""
        return {
            "subject_id": self.subject_id,
            "external_account_id": self.external_account_id,
            "display_name": self.display_name,
            "is_active": self.is_active,
            "registered_at": self.registered_at,
            "deactivated_at": self.deactivated_at,
        }


class AuditIssueKind(str, Enum):
    """Kinds of consistency errors reported by the auditor."""

    MISSING_OR_INCORRECT_MAPPING = "missing_or_incorrect_mapping"
    INACTIVE_MEMBER_MAPPED = "inactive_member_mapped"
    ORPHANED_MAPPING = "orphaned_discord_mapping"
    EXTERNAL_ACCOUNT_MISMATCH = "external_account_mismatch"


class AuditIssue(BaseModel):
    """A single consistency error."""

    kind: AuditIssueKind
    subject_id: str
    external_account_id: str
    mapped_subject_id: str | None = None
    reason: str = ""


class AuditReport(BaseModel):
    """Result of a consistency audit."""

    errors: list[AuditIssue] = Field(default_factory=list)
    member_count: int = 0
    mapping_count: int = 0

    @computed_field
    @property
    def is_consistent(self) -> bool:
        return not self.errors

    def kinds(self) -> set[AuditIssueKind]:
        """Distinct error kinds present in the report."""
        return {issue.kind for issue in self.errors}


class AnomalyKind(str, Enum):
    """Non-fatal integrity problems repaired during load."""

    DUPLICATE_EXTERNAL_ACCOUNT = "duplicate_external_account"
    DUPLICATE_SUBJECT = "duplicate_subject"


class LoadAnomaly(BaseModel):
    """A record dropped during load because its key was already taken."""

    kind: AnomalyKind
    record_index: int
    subject_id: str
    external_account_id: str
    kept_subject_id: str

    def describe(self) -> str:
        if self.kind == AnomalyKind.DUPLICATE_SUBJECT:
            return (
                f"Duplicate subject {self.subject_id} at record {self.record_index} "
                f"(external account {self.external_account_id}) dropped"
            )
        return (
            f"Duplicate external account {self.external_account_id} at record "
            f"{self.record_index} (subject {self.subject_id}) dropped, "
            f"kept subject {self.kept_subject_id}"
        )


class LoadReport(BaseModel):
    """Outcome of loading the persisted document."""

    found: bool = True
    loaded: int = 0
    anomalies: list[LoadAnomaly] = Field(default_factory=list)
    repaired: bool = False


class MemberStats(BaseModel):
    """Headcount statistics for the registry."""

    total: int = 0
    active: int = 0
    inactive: int = 0
    recent_registrations: int = 0
