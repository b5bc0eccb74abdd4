"""
Member Registry Exception Hierarchy.

Defines all custom exceptions used across the member registry.
Provides consistent error handling and debugging information.
"""

from typing import Any


class MemberRegistryError(Exception):
    """
    Base exception for all member registry errors.

    All custom exceptions inherit from this class, allowing
    generic catch blocks and consistent error handling.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        """
        Initialize a MemberRegistryError.

        Args:
            message: Human-readable error message
            details: Optional structured data for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation with details."""
        base = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{base} ({details_str})"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class RegistryError(MemberRegistryError):
    """
    Errors in registry operations.

    Raised when a registry mutation or lookup is rejected, including:
    - Member not found
    - External account already registered
    - Subject already registered
    """

    def __init__(
        self,
        message: str,
        *,
        subject_id: str | None = None,
        external_account_id: str | None = None,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize a RegistryError.

        Args:
            message: Human-readable error message
            subject_id: Subject involved
            external_account_id: External account involved
            operation: Operation being performed
            details: Optional structured data for debugging
        """
        details = details or {}
        if subject_id:
            details["subject_id"] = subject_id
        if external_account_id:
            details["external_account_id"] = external_account_id
        if operation:
            details["operation"] = operation

        super().__init__(message, details=details)
        self.subject_id = subject_id
        self.external_account_id = external_account_id
        self.operation = operation


class MemberNotFoundError(RegistryError):
    """Raised when a subject id does not exist in the registry."""

    def __init__(
        self,
        message: str = "Member not found",
        *,
        subject_id: str | None = None,
        external_account_id: str | None = None,
        operation: str | None = None,
    ):
        super().__init__(
            message,
            subject_id=subject_id,
            external_account_id=external_account_id,
            operation=operation,
        )


class DuplicateExternalAccountError(RegistryError):
    """Raised when an external account is already linked to a subject."""

    def __init__(
        self,
        message: str = "External account already registered",
        *,
        external_account_id: str | None = None,
        existing_subject_id: str | None = None,
        operation: str = "register",
    ):
        details = {}
        if existing_subject_id:
            details["existing_subject_id"] = existing_subject_id
        super().__init__(
            message,
            external_account_id=external_account_id,
            operation=operation,
            details=details,
        )
        self.existing_subject_id = existing_subject_id


class DuplicateSubjectError(RegistryError):
    """Raised when a subject is already linked to an external account."""

    def __init__(
        self,
        message: str = "Subject already registered",
        *,
        subject_id: str | None = None,
        existing_external_account_id: str | None = None,
    ):
        details = {}
        if existing_external_account_id:
            details["existing_external_account_id"] = existing_external_account_id
        super().__init__(
            message,
            subject_id=subject_id,
            operation="register",
            details=details,
        )
        self.existing_external_account_id = existing_external_account_id


class PersistenceError(MemberRegistryError):
    """
    Errors from the durable document store.

    Raised when reading or writing the persisted registry document fails.
    A mutation that hits this error is rolled back in memory before the
    error reaches the caller.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        path: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if operation:
            details["operation"] = operation
        if path:
            details["path"] = path

        super().__init__(message, details=details)
        self.operation = operation
        self.path = path


class LoadValidationError(MemberRegistryError):
    """
    Raised when a persisted document cannot be loaded.

    Covers unparsable documents, unsupported versions and structurally
    invalid member records. No partial registry is installed.
    """

    def __init__(
        self,
        message: str,
        *,
        record_index: int | None = None,
        validation_errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if record_index is not None:
            details["record_index"] = record_index
        if validation_errors:
            details["validation_errors"] = validation_errors

        super().__init__(message, details=details)
        self.record_index = record_index
        self.validation_errors = validation_errors or []


class DecryptionError(MemberRegistryError):
    """Raised when an encrypted credential payload is malformed or tampered."""

    def __init__(
        self,
        message: str = "Failed to decrypt credentials",
        *,
        record_index: int | None = None,
        reason: str | None = None,
    ):
        details: dict[str, Any] = {}
        if record_index is not None:
            details["record_index"] = record_index
        if reason:
            details["reason"] = reason
        super().__init__(message, details=details)
        self.record_index = record_index
        self.reason = reason


class ConfigurationError(MemberRegistryError):
    """
    Errors in configuration loading or validation.

    Raised when:
    - Required environment variables are not set
    - Configuration values are invalid (e.g. wrong key length)
    """

    def __init__(
        self,
        message: str,
        *,
        env_var: str | None = None,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize a ConfigurationError.

        Args:
            message: Human-readable error message
            env_var: Environment variable name if applicable
            config_key: Configuration key if applicable
            details: Optional structured data for debugging
        """
        details = details or {}
        if env_var:
            details["env_var"] = env_var
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, details=details)
        self.env_var = env_var
        self.config_key = config_key


class ValidationError(MemberRegistryError):
    """Raised when a caller-supplied payload is missing required fields."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)
        self.field = field


def format_exception(error: Exception) -> str:
    """
    Format an exception for user-friendly display.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    if isinstance(error, MemberRegistryError):
        return str(error)
    return f"{error.__class__.__name__}: {error}"
