"""Resolved references to stored files."""

from __future__ import annotations

import errno
import hashlib
from pathlib import Path
from typing import IO, Any

from core.errors import MissingStorageError


class FileRef:
    """Openable handle for a file-backed field value.

    Holds the storage root, the persisted relative reference and the resolved
    path. Building one never touches the filesystem; a missing file is only
    reported when the reference is opened.
    """

    __slots__ = ("root", "stored", "path")

    def __init__(self, root: Path, stored: str, path: Path) -> None:
        self.root = Path(root)
        self.stored = stored
        self.path = Path(path)

    def __fspath__(self) -> str:
        return str(self.path)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FileRef):
            return NotImplemented
        return self.path == other.path

    def __hash__(self) -> int:
        return hash(self.path)

    def __repr__(self) -> str:
        return f"FileRef({self.stored!r}, path={str(self.path)!r})"

    @property
    def name(self) -> str:
        return self.path.name

    def exists(self) -> bool:
        return self.path.is_file()

    def open(self, mode: str = "rb", **kwargs: Any) -> IO[Any]:
        """Open the backing file, raising MissingStorageError if absent."""
        try:
            return self.path.open(mode, **kwargs)
        except FileNotFoundError as exc:
            raise MissingStorageError(
                errno.ENOENT, "Backing file is missing", str(self.path)
            ) from exc

    def read_bytes(self) -> bytes:
        with self.open("rb") as fh:
            return fh.read()

    def sha256(self) -> str:
        """Return SHA-256 hex digest of the file contents."""
        digest = hashlib.sha256()
        with self.open("rb") as fh:
            for chunk in iter(lambda: fh.read(8192), b""):
                digest.update(chunk)
        return digest.hexdigest()
