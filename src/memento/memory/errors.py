"""Error types raised by the memory store, index and service."""

from __future__ import annotations


class MementoError(Exception):
    """Base class for memory store failures."""


class NotFoundError(MementoError):
    """The target memory (or store) does not exist."""

    def __init__(self, memory_id: str, message: str | None = None) -> None:
        self.memory_id = memory_id
        super().__init__(message or f"Memory {memory_id} not found")


class AlreadyExistsError(MementoError):
    """A memory file or store directory is already present."""


class FormatError(MementoError):
    """A record file could not be parsed."""


class StorageError(MementoError):
    """A directory or file could not be created, written or locked."""


class IndexUnavailableError(MementoError):
    """The search index snapshot could not be loaded or written."""
