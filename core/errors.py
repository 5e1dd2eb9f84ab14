"""Error taxonomy for file-backed record columns."""

from __future__ import annotations


class FileColumnError(Exception):
    """Base class for all file-column lifecycle errors."""


class ConfigurationError(FileColumnError):
    """A lifecycle hook was invoked on a field that is not file-backed."""


class StoreError(FileColumnError):
    """The underlying record store rejected a mutation."""


class StorageIOError(FileColumnError, OSError):
    """Copying, removing or creating storage on disk failed."""


class MissingStorageError(StorageIOError, FileNotFoundError):
    """A stored reference does not resolve to an existing file."""
