"""Pytest configuration and fixtures."""

import asyncio
import json
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator

import pytest

from member_registry.core.exceptions import PersistenceError
from member_registry.core.models import Credentials, Member
from member_registry.registry.codec import CredentialCodec
from member_registry.registry.coordinator import MemberRegistry
from member_registry.registry.persistence import InMemoryDocumentStore

TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4


class FlakyDocumentStore(InMemoryDocumentStore):
    """In-memory store that yields to the event loop and can be told to fail."""

    def __init__(self, initial: bytes | None = None):
        super().__init__(initial)
        self.fail_writes = False
        self.last_failure: PersistenceError | None = None

    async def write(self, document: bytes) -> None:
        await asyncio.sleep(0)
        if self.fail_writes:
            self.last_failure = PersistenceError(
                "ENOSPC: no space left on device", operation="write"
            )
            raise self.last_failure
        await super().write(document)

    def parsed(self) -> dict[str, Any]:
        """The last written document as JSON."""
        assert self._document is not None
        return json.loads(self._document)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def encryption_key() -> str:
    return TEST_ENCRYPTION_KEY


@pytest.fixture
def codec(encryption_key: str) -> CredentialCodec:
    return CredentialCodec.from_hex(encryption_key)


@pytest.fixture
def document_store() -> FlakyDocumentStore:
    return FlakyDocumentStore()


@pytest.fixture
def registry(document_store: FlakyDocumentStore, codec: CredentialCodec) -> MemberRegistry:
    return MemberRegistry(document_store, codec)


@pytest.fixture
def make_credentials() -> Callable[..., Credentials]:
    """Factory for credentials tied to a number."""

    def _make(n: int = 1, **overrides: Any) -> Credentials:
        data = {
            "access_token": f"access_{n}",
            "refresh_token": f"refresh_{n}",
            "expires_at": 1_900_000_000 + n,
            "expires_in": 21600,
            "token_type": "Bearer",
        }
        data.update(overrides)
        return Credentials(**data)

    return _make


@pytest.fixture
def make_registration(make_credentials: Callable[..., Credentials]) -> Callable[..., dict]:
    """Factory for register() keyword arguments."""

    def _make(n: int = 1, *, account: str | None = None, subject: int | None = None) -> dict:
        subject_id = subject if subject is not None else 1000 + n
        return {
            "external_account_id": account or f"discord_{n}",
            "subject_payload": {
                "id": subject_id,
                "firstname": f"First{n}",
                "lastname": f"Last{n}",
                "city": "Test City",
            },
            "credentials": make_credentials(n),
            "profile_payload": {"username": f"user_{n}", "display_name": f"User {n}"},
        }

    return _make


@pytest.fixture
def make_record(codec: CredentialCodec, make_credentials: Callable[..., Credentials]):
    """Factory for raw persisted member records."""

    def _make(
        n: int = 1,
        *,
        account: str | None = None,
        subject: Any = None,
        active: bool = True,
    ) -> dict[str, Any]:
        sealed = codec.encrypt(make_credentials(n))
        record = {
            "externalAccountId": account or f"discord_{n}",
            "profileSnapshot": {"username": f"user_{n}"},
            "subjectSnapshot": {"id": subject if subject is not None else 1000 + n},
            "credentials": {
                "cipherBlob": sealed.cipher_blob,
                "iv": sealed.iv,
                "authTag": sealed.auth_tag,
            },
            "registeredAt": "2024-01-01T00:00:00+00:00",
            "lastCredentialRefresh": "2024-01-01T00:00:00+00:00",
            "isActive": active,
        }
        if not active:
            record["deactivatedAt"] = "2024-02-01T00:00:00+00:00"
        return record

    return _make


@pytest.fixture
def build_document() -> Callable[[list[Any]], bytes]:
    def _build(records: list[Any], version: str = "1.0") -> bytes:
        return json.dumps(
            {"version": version, "savedAt": "2024-03-01T00:00:00+00:00", "members": records}
        ).encode("utf-8")

    return _build


def registry_state(registry: MemberRegistry) -> tuple[list[dict], dict[str, str]]:
    """Full observable state of a registry: every member's fields plus the mappings."""
    members = sorted(
        (m.model_dump() for m in registry.list_all()), key=lambda m: m["subject_id"]
    )
    return members, dict(registry._index.by_external_account)


@pytest.fixture
def state_of() -> Callable[[MemberRegistry], tuple[list[dict], dict[str, str]]]:
    return registry_state


def make_member(
    subject_id: str,
    account: str,
    *,
    active: bool = True,
    credentials: Credentials | None = None,
) -> Member:
    return Member(
        external_account_id=account,
        subject_id=subject_id,
        subject_snapshot={"id": int(subject_id)},
        credentials=credentials
        or Credentials(access_token="a", refresh_token="r", expires_at=1_900_000_000),
        registered_at="2024-01-01T00:00:00+00:00",
        last_credential_refresh="2024-01-01T00:00:00+00:00",
        is_active=active,
        deactivated_at=None if active else "2024-02-01T00:00:00+00:00",
    )


@pytest.fixture
def member_factory() -> Callable[..., Member]:
    return make_member
