"""
Member Registry Core Module.

Provides foundational types and the exception hierarchy.
"""

__all__ = [
    "AnomalyKind",
    "AuditIssue",
    "AuditIssueKind",
    "AuditReport",
    "Credentials",
    "EncryptedCredentials",
    "LoadAnomaly",
    "LoadReport",
    "Member",
    "MemberAction",
    "MemberStats",
    # Exceptions
    "MemberRegistryError",
    "RegistryError",
    "MemberNotFoundError",
    "DuplicateExternalAccountError",
    "DuplicateSubjectError",
    "PersistenceError",
    "LoadValidationError",
    "DecryptionError",
    "ConfigurationError",
    "ValidationError",
]

from member_registry.core.exceptions import (
    ConfigurationError,
    DecryptionError,
    DuplicateExternalAccountError,
    DuplicateSubjectError,
    LoadValidationError,
    MemberNotFoundError,
    MemberRegistryError,
    PersistenceError,
    RegistryError,
    ValidationError,
)
from member_registry.core.models import (
    AnomalyKind,
    AuditIssue,
    AuditIssueKind,
    AuditReport,
    Credentials,
    EncryptedCredentials,
    LoadAnomaly,
    LoadReport,
    Member,
    MemberAction,
    MemberStats,
)
