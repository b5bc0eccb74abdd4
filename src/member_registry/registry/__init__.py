"""
Member Registry Module.

Provides the bidirectional member index, its transactional coordinator,
encrypted persistence, loading with repair, and consistency auditing.
"""

__all__ = [
    "BidirectionalIndex",
    "CredentialCodec",
    "DocumentStore",
    "FileDocumentStore",
    "InMemoryDocumentStore",
    "MemberRegistry",
    "RegistryLoader",
    "audit_registry",
]

from member_registry.registry.auditor import audit_registry
from member_registry.registry.codec import CredentialCodec
from member_registry.registry.coordinator import MemberRegistry
from member_registry.registry.loader import RegistryLoader
from member_registry.registry.persistence import (
    DocumentStore,
    FileDocumentStore,
    InMemoryDocumentStore,
)
from member_registry.registry.store import BidirectionalIndex
