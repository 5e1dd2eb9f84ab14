"""Blob storage path computation.

A stored file lives at ``root / <shard dirs> / <unique name>``. The shard
directories are taken from the leading characters of the name so that no
single directory grows unbounded: with the defaults (one level, two
characters) and hex names there are at most 256 shard directories.

Nothing in this module touches the filesystem.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from pathlib import Path, PurePosixPath

NameFactory = Callable[[], str]
ShardFunction = Callable[[str], Sequence[str]]


def random_name() -> str:
    """Return a fresh 128-bit random file name as 32 hex characters."""
    return uuid.uuid4().hex


class BlobLocator:
    """Maps unique file names to sharded storage paths."""

    def __init__(
        self,
        shard_depth: int = 1,
        shard_width: int = 2,
        shard_fn: ShardFunction | None = None,
    ) -> None:
        if shard_depth < 0:
            raise ValueError(f"shard_depth must be >= 0, got {shard_depth}")
        if shard_width < 1:
            raise ValueError(f"shard_width must be >= 1, got {shard_width}")
        self.shard_depth = shard_depth
        self.shard_width = shard_width
        self._shard_fn = shard_fn

    def shard(self, name: str) -> list[str]:
        """Return the directory segments for ``name``.

        Examples:
            shard("abcdef...") -> ["ab"]
            shard("abcdef...") with depth=2 -> ["ab", "cd"]
        """
        if self._shard_fn is not None:
            return [str(part) for part in self._shard_fn(name)]
        needed = self.shard_depth * self.shard_width
        if len(name) < needed:
            raise ValueError(
                f"Name too short for sharding: need at least {needed} chars, got {len(name)}"
            )
        return [
            name[i * self.shard_width : (i + 1) * self.shard_width]
            for i in range(self.shard_depth)
        ]

    def relative(self, name: str) -> str:
        """Return the persisted relative reference for ``name``."""
        return PurePosixPath(*self.shard(name), name).as_posix()

    def resolve(self, root: Path, name: str) -> Path:
        """Return the absolute storage path for a freshly named file."""
        return Path(root).joinpath(*self.shard(name), name)

    @staticmethod
    def resolve_stored(root: Path, stored: str) -> Path:
        """Resolve a persisted relative reference against ``root``.

        The shard directories are read from the stored value rather than
        recomputed, so files stay reachable if the sharding scheme changes.
        """
        rel = PurePosixPath(stored)
        if not stored or rel.is_absolute() or ".." in rel.parts:
            raise ValueError(f"Invalid stored file reference: {stored!r}")
        return Path(root).joinpath(*rel.parts)
