"""
Member Registry - serialized, transactional mutations over the member index.

Every state-changing operation runs inside one exclusive critical section:
check -> snapshot -> mutate -> persist. If persistence fails, the snapshot
is restored and the original PersistenceError is re-raised, so a failed
mutation leaves no trace in memory.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timedelta
from typing import Any, TypeVar

from pydantic import ValidationError as PydanticValidationError

from member_registry.core.exceptions import (
    DuplicateExternalAccountError,
    DuplicateSubjectError,
    MemberNotFoundError,
    PersistenceError,
    ValidationError,
)
from member_registry.core.models import (
    AuditReport,
    Credentials,
    LoadReport,
    Member,
    MemberAction,
    MemberStats,
    utc_now,
)
from member_registry.registry.auditor import audit_registry
from member_registry.registry.codec import CredentialCodec
from member_registry.registry.document import encode_document, normalize_subject_id
from member_registry.registry.loader import RegistryLoader
from member_registry.registry.persistence import DocumentStore
from member_registry.registry.store import BidirectionalIndex, EntrySnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")

RECENT_REGISTRATION_WINDOW = timedelta(days=7)


def _subject_key(subject_id: str | int) -> str:
    try:
        return normalize_subject_id(subject_id)
    except ValueError:
        return str(subject_id)


def _coerce_credentials(credentials: Credentials | Mapping[str, Any]) -> Credentials:
    if isinstance(credentials, Credentials):
        return credentials
    try:
        return Credentials.model_validate(dict(credentials))
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid credentials payload",
            field="credentials",
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e


class MemberRegistry:
    """
    Coordinator for all registry state and its durable image.

    Reads are synchronous and lock-free; the event loop cannot interleave a
    mutation between the statements of a synchronous read. Mutations are
    async and serialized through an injectable, non-reentrant asyncio.Lock.
    """

    def __init__(
        self,
        store: DocumentStore,
        codec: CredentialCodec,
        *,
        lock: asyncio.Lock | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the registry.

        Args:
            store: Durable document storage
            codec: Credential codec used when writing the document
            lock: Mutual exclusion primitive for the critical section
            clock: Source of the current time (UTC)
        """
        self._store = store
        self._codec = codec
        self._lock = lock or asyncio.Lock()
        self._clock = clock or utc_now
        self._index = BidirectionalIndex()

    def _now(self) -> str:
        return self._clock().isoformat()

    # Critical section plumbing

    async def _run_exclusive(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an operation under the lock, detached from caller cancellation."""

        async def guarded() -> T:
            async with self._lock:
                return await operation()

        task = asyncio.ensure_future(guarded())
        task.add_done_callback(self._observe_outcome)
        return await asyncio.shield(task)

    @staticmethod
    def _observe_outcome(task: asyncio.Future) -> None:
        """Retrieve the result of a critical section whose caller may be gone."""
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug(f"Registry operation failed: {type(error).__name__}: {error}")

    async def _persist(self, operation: str) -> None:
        """Serialize the settled in-memory state and write it. Lock must be held."""
        try:
            document = encode_document(self._index.members(), self._codec, self._clock())
            await self._store.write(document)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Failed to save members: {e}", operation=operation
            ) from e

    async def _commit(self, operation: str, undo: EntrySnapshot) -> None:
        """Persist, or restore the snapshot and re-raise on failure."""
        try:
            await self._persist(operation)
        except PersistenceError as e:
            self._index.restore(undo)
            logger.error(
                f"Failed to {operation} member, rolled back changes: {e}",
                extra={
                    "event": "rollback",
                    "operation": operation,
                    "subject_id": undo.subject_id,
                    "external_account_id": undo.external_account_id,
                },
            )
            raise

    def _require(self, subject_id: str, operation: str) -> Member:
        member = self._index.get(subject_id)
        if member is None:
            raise MemberNotFoundError(
                f"Member with subject {subject_id} not found",
                subject_id=subject_id,
                operation=operation,
            )
        return member

    def _log_action(self, action: MemberAction, member: Member, **extra: Any) -> None:
        logger.info(
            f"{action.value}: {member.display_name} "
            f"(external account {member.external_account_id}, subject {member.subject_id})",
            extra={"action": action.value, **extra},
        )

    # Mutations

    async def register(
        self,
        external_account_id: str,
        subject_payload: Mapping[str, Any],
        credentials: Credentials | Mapping[str, Any],
        profile_payload: Mapping[str, Any] | None = None,
    ) -> Member:
        """
        Link an external account to a subject.

        Raises:
            ValidationError: If the subject payload has no id
            DuplicateExternalAccountError: If the account is already registered
            DuplicateSubjectError: If the subject is already registered
            PersistenceError: If the registry could not be saved
        """
        if not isinstance(external_account_id, str) or not external_account_id:
            raise ValidationError(
                "External account id must be a non-empty string",
                field="external_account_id",
            )
        if subject_payload.get("id") is None:
            raise ValidationError("Subject payload must include an 'id'", field="id")
        try:
            subject_id = normalize_subject_id(subject_payload["id"])
        except ValueError as e:
            raise ValidationError(f"Invalid subject id: {e}", field="id") from e
        credentials = _coerce_credentials(credentials)

        async def operation() -> Member:
            holder = self._index.holder_of_account(external_account_id)
            if holder is not None:
                logger.warning(
                    f"Attempted duplicate registration of external account {external_account_id}: "
                    f"already linked to subject {holder.subject_id}, requested {subject_id}"
                )
                raise DuplicateExternalAccountError(
                    f"External account {external_account_id} is already registered "
                    f"to subject {holder.subject_id}",
                    external_account_id=external_account_id,
                    existing_subject_id=holder.subject_id,
                )

            existing = self._index.get(subject_id)
            if existing is not None:
                logger.warning(
                    f"Attempted registration of existing subject {subject_id}: "
                    f"already linked to external account {existing.external_account_id}"
                )
                raise DuplicateSubjectError(
                    f"Subject {subject_id} is already registered "
                    f"to external account {existing.external_account_id}",
                    subject_id=subject_id,
                    existing_external_account_id=existing.external_account_id,
                )

            now = self._now()
            member = Member(
                external_account_id=external_account_id,
                subject_id=subject_id,
                profile_snapshot=dict(profile_payload) if profile_payload else None,
                subject_snapshot=dict(subject_payload),
                credentials=credentials,
                registered_at=now,
                last_credential_refresh=now,
                is_active=True,
            ).model_copy(deep=True)

            undo = self._index.snapshot(subject_id, external_account_id)
            self._index.insert(member)
            await self._commit("register", undo)

            self._log_action(MemberAction.REGISTERED, member, registered_at=now)
            return member.model_copy(deep=True)

        return await self._run_exclusive(operation)

    async def deactivate(self, subject_id: str | int) -> None:
        """
        Soft-delete a member and drop its external account mapping.

        Raises:
            MemberNotFoundError: If the subject is not registered
            PersistenceError: If the registry could not be saved
        """
        subject_id = _subject_key(subject_id)

        async def operation() -> None:
            member = self._require(subject_id, "deactivate")
            undo = self._index.snapshot(subject_id, member.external_account_id)
            self._index.deactivate(subject_id, self._now())
            await self._commit("deactivate", undo)

            member = self._index.get(subject_id)
            self._log_action(
                MemberAction.DEACTIVATED, member, deactivated_at=member.deactivated_at
            )

        await self._run_exclusive(operation)

    async def reactivate(self, subject_id: str | int) -> None:
        """
        Reactivate a member and restore its external account mapping.

        Raises:
            MemberNotFoundError: If the subject is not registered
            DuplicateExternalAccountError: If the account is mapped to another subject
            PersistenceError: If the registry could not be saved
        """
        subject_id = _subject_key(subject_id)

        async def operation() -> None:
            member = self._require(subject_id, "reactivate")
            account = member.external_account_id
            mapped = self._index.subject_for_account(account)
            if mapped is not None and mapped != subject_id:
                logger.error(
                    f"Cannot reactivate subject {subject_id} - external account "
                    f"{account} is linked to subject {mapped}"
                )
                raise DuplicateExternalAccountError(
                    f"External account {account} is already registered to subject {mapped}",
                    external_account_id=account,
                    existing_subject_id=mapped,
                    operation="reactivate",
                )

            undo = self._index.snapshot(subject_id, account)
            self._index.reactivate(subject_id, self._now())
            await self._commit("reactivate", undo)

            member = self._index.get(subject_id)
            self._log_action(
                MemberAction.REACTIVATED, member, reactivated_at=member.reactivated_at
            )

        await self._run_exclusive(operation)

    async def remove(self, subject_id: str | int) -> None:
        """
        Delete a member entirely.

        Raises:
            MemberNotFoundError: If the subject is not registered
            PersistenceError: If the registry could not be saved
        """
        subject_id = _subject_key(subject_id)

        async def operation() -> None:
            await self._delete(self._require(subject_id, "remove"))

        await self._run_exclusive(operation)

    async def remove_by_external_account(self, external_account_id: str) -> None:
        """
        Delete the member currently linked to an external account.

        Raises:
            MemberNotFoundError: If no active member holds the account
            PersistenceError: If the registry could not be saved
        """

        async def operation() -> None:
            subject_id = self._index.subject_for_account(external_account_id)
            if subject_id is None:
                raise MemberNotFoundError(
                    f"No member linked to external account {external_account_id}",
                    external_account_id=external_account_id,
                    operation="remove",
                )
            await self._delete(self._require(subject_id, "remove"))

        await self._run_exclusive(operation)

    async def _delete(self, member: Member) -> None:
        """Delete a member and persist. Lock must be held."""
        undo = self._index.snapshot(member.subject_id, member.external_account_id)
        removed = self._index.delete(member.subject_id)
        await self._commit("remove", undo)

        self._log_action(MemberAction.REMOVED, removed, removed_at=self._now())

    async def refresh_credentials(
        self, subject_id: str | int, credentials: Credentials | Mapping[str, Any]
    ) -> Member:
        """
        Replace a member's credentials after a token refresh.

        Raises:
            MemberNotFoundError: If the subject is not registered
            PersistenceError: If the registry could not be saved
        """
        subject_id = _subject_key(subject_id)
        credentials = _coerce_credentials(credentials)

        async def operation() -> Member:
            member = self._require(subject_id, "refresh_credentials")
            undo = self._index.snapshot(subject_id, member.external_account_id)
            updated = member.model_copy(
                deep=True,
                update={
                    "credentials": credentials.model_copy(),
                    "last_credential_refresh": self._now(),
                },
            )
            self._index.replace(updated)
            await self._commit("refresh_credentials", undo)

            self._log_action(
                MemberAction.CREDENTIALS_REFRESHED,
                updated,
                expires_at=credentials.expires_at,
                refreshed_at=updated.last_credential_refresh,
            )
            return updated.model_copy(deep=True)

        return await self._run_exclusive(operation)

    async def save(self) -> None:
        """Explicitly persist the full registry state."""

        async def operation() -> None:
            await self._persist("save")
            logger.debug(f"Members saved to storage: {len(self._index)} members")

        await self._run_exclusive(operation)

    async def load(self) -> LoadReport:
        """
        Load (or reload) the registry from storage.

        The new index is installed only if the whole document loads. When
        duplicates were dropped, the cleaned state is saved before the
        critical section is released.

        Raises:
            LoadValidationError: Document or a record is structurally invalid
            DecryptionError: A credential payload is corrupted or tampered
            PersistenceError: The document could not be read
        """

        async def operation() -> LoadReport:
            result = await RegistryLoader(self._store, self._codec).load()
            self._index = result.index
            report = result.report

            if report.anomalies:
                try:
                    await self._persist("load_repair")
                except PersistenceError as e:
                    logger.error(
                        f"Failed to save cleaned member data after load: {e}",
                        extra={"event": "repair_failed", "operation": "load_repair"},
                    )
                else:
                    report.repaired = True
                    logger.info("Cleaned member data saved after integrity check")
            return report

        return await self._run_exclusive(operation)

    # Reads

    def get_by_subject(self, subject_id: str | int) -> Member | None:
        """Copy of the member for a subject, or None."""
        member = self._index.get(_subject_key(subject_id))
        return member.model_copy(deep=True) if member is not None else None

    def get_by_external_account(self, external_account_id: str) -> Member | None:
        """Copy of the active member linked to an external account, or None."""
        subject_id = self._index.subject_for_account(external_account_id)
        if subject_id is None:
            return None
        return self.get_by_subject(subject_id)

    def list_all(self) -> list[Member]:
        """Copies of every member, active or not."""
        return [m.model_copy(deep=True) for m in self._index.members()]

    def list_active(self) -> list[Member]:
        return [m.model_copy(deep=True) for m in self._index.members() if m.is_active]

    def count_active(self) -> int:
        return sum(1 for m in self._index.members() if m.is_active)

    def stats(self, now: datetime | None = None) -> MemberStats:
        """Headcounts, including registrations in the last seven days."""
        now = now or self._clock()
        cutoff = now - RECENT_REGISTRATION_WINDOW
        stats = MemberStats()
        for member in self._index.members():
            stats.total += 1
            if member.is_active:
                stats.active += 1
            else:
                stats.inactive += 1
            try:
                registered = datetime.fromisoformat(member.registered_at)
            except ValueError:
                continue
            if registered.tzinfo is None:
                registered = registered.replace(tzinfo=now.tzinfo)
            if registered > cutoff:
                stats.recent_registrations += 1
        return stats

    def audit(self) -> AuditReport:
        """Check the index invariants. Pure read."""
        return audit_registry(self._index.by_subject, self._index.by_external_account)
