"""
Registry Store - the bidirectional member index.

Keeps two synchronized maps:
- by_subject: subject_id -> Member
- by_external_account: external_account_id -> subject_id (active members only)

All invariant-preserving mutations go through the methods below; neither
map is handed out for direct mutation.
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from member_registry.core.models import Member


@dataclass(frozen=True)
class EntrySnapshot:
    """Undo value for one subject entry and one external account mapping."""

    subject_id: str
    external_account_id: str
    member: Member | None
    mapped_subject_id: str | None


class BidirectionalIndex:
    """In-memory store of members indexed by subject and external account."""

    def __init__(self) -> None:
        self._by_subject: dict[str, Member] = {}
        self._by_external_account: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._by_subject)

    def __contains__(self, subject_id: object) -> bool:
        return subject_id in self._by_subject

    @property
    def by_subject(self) -> Mapping[str, Member]:
        """Read-only view of subject_id -> Member."""
        return MappingProxyType(self._by_subject)

    @property
    def by_external_account(self) -> Mapping[str, str]:
        """Read-only view of external_account_id -> subject_id."""
        return MappingProxyType(self._by_external_account)

    def members(self) -> Iterator[Member]:
        """Iterate over stored members (live objects, internal use only)."""
        return iter(self._by_subject.values())

    def get(self, subject_id: str) -> Member | None:
        """Live member for a subject, or None. Callers must not mutate it."""
        return self._by_subject.get(subject_id)

    def subject_for_account(self, external_account_id: str) -> str | None:
        """Subject currently mapped to an external account, or None."""
        return self._by_external_account.get(external_account_id)

    def holder_of_account(self, external_account_id: str) -> Member | None:
        """Member holding an external account, whether active or not."""
        subject_id = self._by_external_account.get(external_account_id)
        if subject_id is not None:
            return self._by_subject.get(subject_id)
        for member in self._by_subject.values():
            if member.external_account_id == external_account_id:
                return member
        return None

    def insert(self, member: Member) -> None:
        """Add a member, mapping its external account only if active."""
        self._by_subject[member.subject_id] = member
        if member.is_active:
            self._by_external_account[member.external_account_id] = member.subject_id

    def deactivate(self, subject_id: str, when: str) -> None:
        member = self._by_subject[subject_id]
        member.is_active = False
        member.deactivated_at = when
        member.reactivated_at = None
        if self._by_external_account.get(member.external_account_id) == subject_id:
            del self._by_external_account[member.external_account_id]

    def reactivate(self, subject_id: str, when: str) -> None:
        member = self._by_subject[subject_id]
        member.is_active = True
        member.deactivated_at = None
        member.reactivated_at = when
        self._by_external_account[member.external_account_id] = subject_id

    def replace(self, member: Member) -> None:
        """Swap in an updated copy of a member; keys must be unchanged."""
        current = self._by_subject[member.subject_id]
        if (
            current.subject_id != member.subject_id
            or current.external_account_id != member.external_account_id
        ):
            raise ValueError("replace cannot change member keys")
        self._by_subject[member.subject_id] = member

    def delete(self, subject_id: str) -> Member:
        """Remove a member and its mapping; returns the removed member."""
        member = self._by_subject.pop(subject_id)
        if self._by_external_account.get(member.external_account_id) == subject_id:
            del self._by_external_account[member.external_account_id]
        return member

    def snapshot(self, subject_id: str, external_account_id: str) -> EntrySnapshot:
        """Capture the entries a mutation may touch."""
        member = self._by_subject.get(subject_id)
        return EntrySnapshot(
            subject_id=subject_id,
            external_account_id=external_account_id,
            member=member.model_copy(deep=True) if member is not None else None,
            mapped_subject_id=self._by_external_account.get(external_account_id),
        )

    def restore(self, snapshot: EntrySnapshot) -> None:
        """Put both captured entries back exactly as they were."""
        if snapshot.member is None:
            self._by_subject.pop(snapshot.subject_id, None)
        else:
            self._by_subject[snapshot.subject_id] = snapshot.member.model_copy(deep=True)

        if snapshot.mapped_subject_id is None:
            self._by_external_account.pop(snapshot.external_account_id, None)
        else:
            self._by_external_account[snapshot.external_account_id] = snapshot.mapped_subject_id
