"""Record-to-file lifecycle synchronization."""

from core.errors import (
    ConfigurationError,
    FileColumnError,
    MissingStorageError,
    StorageIOError,
    StoreError,
)
from lifecycle.synchronizer import LifecycleSynchronizer

__all__ = [
    "ConfigurationError",
    "FileColumnError",
    "LifecycleSynchronizer",
    "MissingStorageError",
    "StorageIOError",
    "StoreError",
]
