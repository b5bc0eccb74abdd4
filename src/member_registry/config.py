"""
Runtime configuration for the member registry.

Values come from MR_* environment variables; the encryption key is
validated at startup and never logged.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from member_registry.core.exceptions import ConfigurationError
from member_registry.registry.codec import KEY_LENGTH, CredentialCodec
from member_registry.registry.coordinator import MemberRegistry
from member_registry.registry.persistence import FileDocumentStore

DEFAULT_DATA_FILE = Path("var/registry/members.json")
DEFAULT_LOG_LEVEL = "INFO"

ENV_ENCRYPTION_KEY = "MR_ENCRYPTION_KEY"
ENV_DATA_FILE = "MR_DATA_FILE"
ENV_LOG_LEVEL = "MR_LOG_LEVEL"


@dataclass(frozen=True)
class RegistryConfig:
    """Settings needed to open the registry."""

    encryption_key: str = field(repr=False)
    data_file: Path = DEFAULT_DATA_FILE
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls) -> "RegistryConfig":
        """
        Create configuration from environment variables.

        Raises:
            ConfigurationError: If the key is missing or malformed, or the
                log level is unknown
        """
        key = os.getenv(ENV_ENCRYPTION_KEY, "").strip()
        if not key:
            raise ConfigurationError(
                f"{ENV_ENCRYPTION_KEY} environment variable not set",
                env_var=ENV_ENCRYPTION_KEY,
            )
        if len(key) != KEY_LENGTH * 2:
            raise ConfigurationError(
                f"{ENV_ENCRYPTION_KEY} must be {KEY_LENGTH * 2} hex characters",
                env_var=ENV_ENCRYPTION_KEY,
            )
        try:
            bytes.fromhex(key)
        except ValueError as e:
            raise ConfigurationError(
                f"{ENV_ENCRYPTION_KEY} must be a hex string",
                env_var=ENV_ENCRYPTION_KEY,
            ) from e

        log_level = os.getenv(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL).upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ConfigurationError(
                f"Unknown log level: {log_level}",
                env_var=ENV_LOG_LEVEL,
            )

        data_file = Path(os.getenv(ENV_DATA_FILE) or DEFAULT_DATA_FILE)
        return cls(encryption_key=key, data_file=data_file, log_level=log_level)

    def create_codec(self) -> CredentialCodec:
        return CredentialCodec.from_hex(self.encryption_key)

    def create_registry(self) -> MemberRegistry:
        """Build an (unloaded) registry backed by the configured data file."""
        return MemberRegistry(FileDocumentStore(self.data_file), self.create_codec())
