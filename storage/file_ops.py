"""Physical file operations used by the lifecycle hooks."""

from __future__ import annotations

import errno
import io
import logging
import os
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any

from core.errors import MissingStorageError, StorageIOError
from storage.file_ref import FileRef

logger = logging.getLogger("fsc.storage")

DEFAULT_CHUNK_SIZE = 64 * 1024


def is_byte_source(value: object) -> bool:
    """Return True if ``value`` can be copied into storage."""
    return isinstance(value, (FileRef, os.PathLike, bytes, bytearray, memoryview)) or callable(
        getattr(value, "read", None)
    )


@contextmanager
def open_source(value: Any) -> Iterator[IO[Any]]:
    """Yield a readable stream for a value about to be stored.

    Streams handed in by the caller are read from their current position and
    left open.
    """
    if isinstance(value, FileRef):
        with value.open("rb") as fh:
            yield fh
    elif isinstance(value, os.PathLike):
        path = Path(value)
        try:
            fh = path.open("rb")
        except OSError as exc:
            raise StorageIOError(exc.errno, f"Cannot read source file: {exc.strerror}", str(path)) from exc
        with fh:
            yield fh
    elif isinstance(value, (bytes, bytearray, memoryview)):
        yield io.BytesIO(bytes(value))
    elif callable(getattr(value, "read", None)):
        yield value
    else:
        raise TypeError(f"Unsupported file source: {type(value).__name__}")


def _copy_chunks(src: IO[Any], dst: IO[bytes], chunk_size: int) -> int:
    written = 0
    while True:
        chunk = src.read(chunk_size)
        if not chunk:
            break
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        dst.write(chunk)
        written += len(chunk)
    return written


def ensure_dir(path: Path) -> None:
    """Create ``path`` and its parents; safe to race."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StorageIOError(exc.errno, f"Cannot create directory: {exc.strerror}", str(path)) from exc


def write_stream(
    source: IO[Any],
    target: Path,
    *,
    atomic: bool = True,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Copy ``source`` completely into ``target`` and return the byte count.

    With ``atomic`` the bytes go to a temp file in the target directory which
    replaces the target only once fully written and synced. Otherwise the
    target is written in place and, if it did not exist before, removed again
    when the copy fails.
    """
    ensure_dir(target.parent)
    if atomic:
        temp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}.tmp")
        dest = temp_path
    else:
        temp_path = None
        dest = target
    existed = target.exists()
    try:
        with dest.open("wb") as fh:
            written = _copy_chunks(source, fh, chunk_size)
            fh.flush()
            os.fsync(fh.fileno())
        if temp_path is not None:
            os.replace(temp_path, target)
    except OSError as exc:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)
        elif not existed:
            target.unlink(missing_ok=True)
        raise StorageIOError(exc.errno, f"Cannot write file: {exc.strerror}", str(target)) from exc
    except Exception:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)
        elif not existed:
            target.unlink(missing_ok=True)
        raise
    logger.info("Wrote %d bytes to %s", written, target)
    return written


def remove_file(path: Path) -> None:
    """Remove a stored file; a missing file is an error."""
    try:
        path.unlink()
    except FileNotFoundError as exc:
        raise MissingStorageError(errno.ENOENT, "Backing file is missing", str(path)) from exc
    except OSError as exc:
        raise StorageIOError(exc.errno, f"Cannot remove file: {exc.strerror}", str(path)) from exc
    logger.info("Removed %s", path)
