"""
Persistence adapters - durable storage of the registry document.

The registry treats storage as a black box holding one document:
the last successful write wins and reads return the latest completed write.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

from member_registry.core.exceptions import PersistenceError

logger = logging.getLogger(__name__)


class DocumentStore(ABC):
    """
    Base class for registry document storage.

    Implementations raise PersistenceError for any I/O failure.
    """

    @abstractmethod
    async def read(self) -> bytes | None:
        """Return the latest document, or None if nothing was written yet."""

    @abstractmethod
    async def write(self, document: bytes) -> None:
        """Durably replace the stored document."""


class FileDocumentStore(DocumentStore):
    """Single JSON file on local disk, replaced atomically on every write."""

    def __init__(self, path: Path | str):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def __repr__(self) -> str:
        return f"FileDocumentStore(path={str(self._path)!r})"

    def _read_sync(self) -> bytes | None:
        try:
            return self._path.read_bytes()
        except FileNotFoundError:
            return None

    def _write_sync(self, document: bytes) -> None:
        """Write to a temp file in the same directory, then swap it in."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._path.with_name(f"{self._path.name}.tmp")

        try:
            with open(temp_path, "wb") as f:
                f.write(document)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self._path)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise

    async def read(self) -> bytes | None:
        try:
            return await asyncio.to_thread(self._read_sync)
        except OSError as e:
            raise PersistenceError(
                f"Failed to read registry document: {e}",
                operation="read",
                path=str(self._path),
            ) from e

    async def write(self, document: bytes) -> None:
        try:
            await asyncio.to_thread(self._write_sync, document)
        except OSError as e:
            raise PersistenceError(
                f"Failed to write registry document: {e}",
                operation="write",
                path=str(self._path),
            ) from e
        logger.debug(f"Registry document written to {self._path} ({len(document)} bytes)")


class InMemoryDocumentStore(DocumentStore):
    """Keeps the document in memory; useful for embedding and tests."""

    def __init__(self, initial: bytes | None = None):
        self._document = initial
        self.write_count = 0

    async def read(self) -> bytes | None:
        return self._document

    async def write(self, document: bytes) -> None:
        self._document = bytes(document)
        self.write_count += 1
