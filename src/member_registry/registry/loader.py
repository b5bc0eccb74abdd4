"""
Registry Loader - rebuilds the member index from the persisted document.

Each raw record is classified before anything is inserted:
- VALID: well formed, credentials open, keys not seen before
- INVALID: structurally broken; aborts the whole load
- DUPLICATE: a key was already accepted; the record is dropped

Structural and decryption failures abort the load so that no partial
registry is ever installed. Duplicates are repaired, not raised.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from member_registry.core.exceptions import DecryptionError, LoadValidationError
from member_registry.core.models import AnomalyKind, Credentials, LoadAnomaly, LoadReport
from member_registry.registry.auditor import audit_registry
from member_registry.registry.codec import CredentialCodec
from member_registry.registry.document import (
    PersistedMember,
    decode_document,
    describe_record_shape,
)
from member_registry.registry.persistence import DocumentStore
from member_registry.registry.store import BidirectionalIndex

logger = logging.getLogger(__name__)


class RecordVerdict(Enum):
    """Classification of a raw document record."""

    VALID = "valid"
    INVALID = "invalid"
    DUPLICATE = "duplicate"


@dataclass
class RecordCheck:
    """Tagged result of classifying one record."""

    verdict: RecordVerdict
    record_index: int
    record: PersistedMember | None = None
    errors: list[str] = field(default_factory=list)
    anomaly: LoadAnomaly | None = None


@dataclass
class LoadResult:
    """A fully built index plus the report describing how it was built."""

    index: BidirectionalIndex
    report: LoadReport


def _format_validation_errors(error: PydanticValidationError) -> list[str]:
    return [
        f"{'.'.join(str(part) for part in e['loc']) or '<record>'}: {e['msg']}"
        for e in error.errors()
    ]


class RegistryLoader:
    """Reads the document through a DocumentStore and builds a fresh index."""

    def __init__(self, store: DocumentStore, codec: CredentialCodec):
        self._store = store
        self._codec = codec

    async def load(self) -> LoadResult:
        """
        Read and rebuild the registry.

        Raises:
            LoadValidationError: Document or a record is structurally invalid
            DecryptionError: A credential payload is corrupted or tampered
            PersistenceError: The document could not be read
        """
        raw = await self._store.read()
        if raw is None:
            logger.info("No existing member data found, starting fresh")
            return LoadResult(index=BidirectionalIndex(), report=LoadReport(found=False))
        return self.build(raw)

    def build(self, raw: bytes) -> LoadResult:
        """Build an index from document bytes. Pure apart from logging."""
        try:
            records = decode_document(raw)
        except LoadValidationError as e:
            logger.error(f"Error loading members: {e}")
            raise

        index = BidirectionalIndex()
        anomalies: list[LoadAnomaly] = []
        accepted_accounts: dict[str, str] = {}

        for record_index, raw_record in enumerate(records):
            check = self._check_structure(record_index, raw_record)
            if check.verdict is RecordVerdict.INVALID:
                logger.error(
                    f"Invalid member record at index {record_index}: {'; '.join(check.errors)}",
                    extra={"record_shape": describe_record_shape(raw_record)},
                )
                raise LoadValidationError(
                    f"Member record {record_index} is structurally invalid",
                    record_index=record_index,
                    validation_errors=check.errors,
                    details={"record_shape": describe_record_shape(raw_record)},
                )

            record = check.record
            credentials = self._open_credentials(record_index, record)

            check = self._check_duplicates(record_index, record, index, accepted_accounts)
            if check.verdict is RecordVerdict.DUPLICATE:
                anomalies.append(check.anomaly)
                continue

            member = record.to_member(credentials)
            index.insert(member)
            accepted_accounts[member.external_account_id] = member.subject_id

        if anomalies:
            logger.warning(
                f"Data integrity issues detected during load: {len(anomalies)} record(s) dropped",
                extra={"anomalies": [a.model_dump(mode="json") for a in anomalies]},
            )
            for anomaly in anomalies:
                logger.warning(f"  {anomaly.kind.value}: {anomaly.describe()}")

        audit = audit_registry(index.by_subject, index.by_external_account)
        if not audit.is_consistent:
            logger.error(
                "Map consistency check failed after load",
                extra={"errors": [e.model_dump(mode="json") for e in audit.errors]},
            )
            raise LoadValidationError(
                "Critical data integrity failure - maps are inconsistent",
                validation_errors=[f"{e.kind.value}: {e.subject_id}" for e in audit.errors],
            )

        report = LoadReport(found=True, loaded=len(index), anomalies=anomalies)
        logger.info(
            f"Members loaded from storage: {report.loaded} members, "
            f"{len(index.by_external_account)} mappings, {len(anomalies)} anomalies"
        )
        return LoadResult(index=index, report=report)

    def _check_structure(self, record_index: int, raw_record: Any) -> RecordCheck:
        try:
            record = PersistedMember.model_validate(raw_record)
        except PydanticValidationError as e:
            return RecordCheck(
                verdict=RecordVerdict.INVALID,
                record_index=record_index,
                errors=_format_validation_errors(e),
            )
        return RecordCheck(verdict=RecordVerdict.VALID, record_index=record_index, record=record)

    def _open_credentials(self, record_index: int, record: PersistedMember) -> Credentials:
        try:
            return self._codec.decrypt(record.credentials.to_encrypted())
        except DecryptionError as e:
            logger.error(
                f"Failed to decrypt credentials for record {record_index} "
                f"(subject {record.subject_id}): {e.reason}"
            )
            raise DecryptionError(
                f"Failed to decrypt credentials for record {record_index}",
                record_index=record_index,
                reason=e.reason,
            ) from e

    @staticmethod
    def _check_duplicates(
        record_index: int,
        record: PersistedMember,
        index: BidirectionalIndex,
        accepted_accounts: dict[str, str],
    ) -> RecordCheck:
        subject_id = record.subject_id
        account = record.external_account_id

        kind: AnomalyKind | None = None
        kept_subject_id = ""
        if subject_id in index:
            kind = AnomalyKind.DUPLICATE_SUBJECT
            kept_subject_id = subject_id
        elif account in accepted_accounts:
            kind = AnomalyKind.DUPLICATE_EXTERNAL_ACCOUNT
            kept_subject_id = accepted_accounts[account]

        if kind is None:
            return RecordCheck(verdict=RecordVerdict.VALID, record_index=record_index, record=record)

        return RecordCheck(
            verdict=RecordVerdict.DUPLICATE,
            record_index=record_index,
            record=record,
            anomaly=LoadAnomaly(
                kind=kind,
                record_index=record_index,
                subject_id=subject_id,
                external_account_id=account,
                kept_subject_id=kept_subject_id,
            ),
        )
