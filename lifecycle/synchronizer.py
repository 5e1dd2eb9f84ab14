"""Keeps stored files in step with the rows that reference them.

Each file-backed column persists a relative path (``shard/unique-name``)
under the column's storage root. On create, update, copy and delete the
synchronizer writes, replaces, duplicates or removes the backing files.

Write order:

* new content is written before the row is flushed, so a failed copy never
  leaves the store pointing at it;
* files displaced by the change (nulled fields, previous locations under
  ``rename_on_update``) are removed only after the store accepts the row and
  before the transaction commits, so a failed removal rolls the row back;
* files freshly allocated by a mutation that then fails are removed again.

Without ``rename_on_update`` an update overwrites the existing location in
place, which cannot be undone if the store later rejects the row.
"""

from __future__ import annotations

import errno
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from weakref import WeakKeyDictionary

from core.errors import MissingStorageError, StorageIOError
from records.fields import FieldSpec, FieldTable
from records.record_store import RecordStore
from storage.file_ops import (
    DEFAULT_CHUNK_SIZE,
    is_byte_source,
    open_source,
    remove_file,
    write_stream,
)
from storage.file_ref import FileRef
from storage.journal import StorageJournal
from storage.locator import BlobLocator, NameFactory, random_name

logger = logging.getLogger("fsc.lifecycle")


@dataclass
class _Mutation:
    """File effects of one in-flight record mutation."""

    written: list[tuple[str, Path]] = field(default_factory=list)
    displaced: list[tuple[str, Path]] = field(default_factory=list)


class LifecycleSynchronizer:
    """Runs file operations around record create/update/copy/delete."""

    def __init__(
        self,
        model: type,
        fields: FieldTable,
        store: RecordStore,
        *,
        locator: BlobLocator | None = None,
        name_factory: NameFactory = random_name,
        journal: StorageJournal | None = None,
        atomic_writes: bool = True,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.model = model
        self.fields = fields
        self.store = store
        self.locator = locator
        self.name_factory = name_factory
        self.journal = journal
        self.atomic_writes = atomic_writes
        self.chunk_size = chunk_size
        self.table = store.table_name(model)
        self._inflated: WeakKeyDictionary[Any, dict[str, FileRef | None]] = WeakKeyDictionary()

    # -- field access -----------------------------------------------------

    def file_fields(self) -> list[FieldSpec]:
        return self.fields.file_fields()

    def locator_for(self, spec: FieldSpec) -> BlobLocator:
        return self.locator if self.locator is not None else spec.locator()

    def resolve(self, field_name: str, stored: str | None) -> FileRef | None:
        """Turn a persisted reference into a FileRef without touching disk."""
        spec = self.fields.require(field_name)
        if stored is None:
            return None
        if not isinstance(stored, str):
            raise ValueError(
                f"{self.table}.{field_name} holds an unsaved {type(stored).__name__}; "
                "store it with on_record_update before reading the file"
            )
        path = BlobLocator.resolve_stored(spec.storage_root, stored)
        return FileRef(spec.storage_root, stored, path)

    def inflate(self, record: Any, field_name: str) -> FileRef | None:
        """Return the resolved file of ``record.<field_name>``, cached until invalidated."""
        self.fields.require(field_name)
        cache = self._inflated.setdefault(record, {})
        if field_name not in cache:
            cache[field_name] = self.resolve(field_name, getattr(record, field_name))
        return cache[field_name]

    def invalidate(self, record: Any, field_names: list[str] | None = None) -> None:
        """Force re-inflation on next access."""
        cache = self._inflated.get(record)
        if cache is None:
            return
        if field_names is None:
            cache.clear()
            return
        for name in field_names:
            cache.pop(name, None)

    # -- deflate ------------------------------------------------------------

    def deflate(
        self,
        field_name: str,
        value: Any,
        current: str | None = None,
        *,
        _mutation: _Mutation | None = None,
    ) -> str | None:
        """Store ``value`` for a field and return the reference to persist.

        ``value`` may be None, an already persisted reference (returned as
        is), a FileRef, a path to a file to import, bytes, or a readable
        stream. ``current`` is the field's persisted reference, if any.

        Under ``rename_on_update`` a different persisted reference displaces
        the current location like new content does.
        """
        spec = self.fields.require(field_name)
        if value is None:
            return None
        if isinstance(value, str):
            if spec.rename_on_update and current is not None and value != current:
                self._displace(field_name, self.resolve(field_name, current).path, _mutation)
            return value
        if not is_byte_source(value):
            raise TypeError(
                f"Cannot store {type(value).__name__} in file-backed field {field_name}"
            )

        current_ref = self.resolve(field_name, current)
        if current_ref is not None and _source_path(value) == current_ref.path:
            logger.debug("%s.%s set to its own storage; nothing to write", self.table, field_name)
            return current

        if current_ref is not None and not spec.rename_on_update:
            target, stored, fresh = current_ref.path, current_ref.stored, False
        else:
            locator = self.locator_for(spec)
            name = self.name_factory()
            target = locator.resolve(spec.storage_root, name)
            stored = locator.relative(name)
            fresh = True

        with open_source(value) as src:
            try:
                write_stream(src, target, atomic=self.atomic_writes, chunk_size=self.chunk_size)
            except StorageIOError as exc:
                self._journal("write", field_name, target, outcome="failed", reason=str(exc))
                raise
        self._journal("write", field_name, target)

        if fresh:
            if _mutation is not None:
                _mutation.written.append((field_name, target))
            if current_ref is not None:
                self._displace(field_name, current_ref.path, _mutation)
        return stored

    # -- lifecycle hooks ----------------------------------------------------

    def get(self, pk: Any) -> Any | None:
        return self.store.get(self.model, pk)

    def on_record_create(self, values: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        """Insert a row, writing every supplied file-backed value first."""
        data = {**(values or {}), **kwargs}
        mutation = _Mutation()
        try:
            for spec in self.file_fields():
                if spec.name in data:
                    data[spec.name] = self.deflate(
                        spec.name, data[spec.name], None, _mutation=mutation
                    )
            with self.store.transaction() as sess:
                record = self.store.insert(sess, self.model(**data))
        except Exception:
            self._discard(mutation)
            raise
        return record

    def on_record_update(self, record: Any, changes: dict[str, Any] | None = None) -> Any:
        """Apply ``changes`` plus pending attribute edits to ``record``."""
        changes = dict(changes or {})
        touched = sorted(
            name
            for name in set(changes) | self.store.dirty_fields(record)
            if name in self.fields
        )
        # The in-memory value may already be overwritten; keep what is on disk.
        committed = {name: self.store.committed_value(record, name) for name in touched}
        mutation = _Mutation()
        try:
            values = dict(changes)
            for name in touched:
                new_value = changes[name] if name in changes else getattr(record, name)
                values[name] = self.deflate(
                    name, new_value, committed[name], _mutation=mutation
                )
            with self.store.transaction() as sess:
                self.store.update(sess, record, values)
                for name in touched:
                    if values[name] is None and committed[name] is not None:
                        old = self.resolve(name, committed[name])
                        mutation.displaced.append((name, old.path))
                self._remove_all(mutation.displaced)
        except Exception:
            self._discard(mutation)
            raise
        finally:
            self.invalidate(record, touched)
        return record

    def on_record_delete(self, record: Any) -> None:
        """Delete the row and the backing file of every non-null field."""
        doomed = []
        for spec in self.file_fields():
            ref = self.resolve(spec.name, self.store.committed_value(record, spec.name))
            if ref is not None:
                doomed.append((spec.name, ref.path))
        with self.store.transaction() as sess:
            self.store.delete(sess, record)
            self._remove_all(doomed)
        self.invalidate(record)

    def on_record_copy(self, record: Any, overrides: dict[str, Any] | None = None) -> Any:
        """Insert a duplicate of ``record`` with its own copies of every file."""
        overrides = dict(overrides or {})
        values = self.store.column_values(record)
        for key in self.store.primary_key_fields(self.model):
            values.pop(key, None)

        sources: dict[str, Any] = {}
        for spec in self.file_fields():
            source = values[spec.name]
            sources[spec.name] = (
                self.resolve(spec.name, source) if isinstance(source, str) else source
            )
            values[spec.name] = None
        values.update({k: v for k, v in overrides.items() if k not in self.fields})

        mutation = _Mutation()
        try:
            for spec in self.file_fields():
                source = overrides[spec.name] if spec.name in overrides else sources[spec.name]
                # A persisted reference still gets its own physical copy.
                if isinstance(source, str):
                    source = self.resolve(spec.name, source)
                values[spec.name] = self.deflate(spec.name, source, None, _mutation=mutation)
            with self.store.transaction() as sess:
                copy = self.store.duplicate(sess, self.model, values)
        except Exception:
            self._discard(mutation)
            raise
        return copy

    # -- bulk operations ------------------------------------------------------

    def delete_where(self, **filters: Any) -> int:
        """Delete every row matching ``filters`` through ``on_record_delete``.

        Rows are handled one at a time; a failure stops the run and leaves
        the rows already deleted deleted.
        """
        rows = self.store.find(self.model, **filters)
        for row in rows:
            self.on_record_delete(row)
        return len(rows)

    def update_where(self, changes: dict[str, Any], **filters: Any) -> int:
        """Apply ``changes`` to every row matching ``filters`` through ``on_record_update``.

        File-backed values in ``changes`` are written once per row, so each
        row gets its own storage location.
        """
        changes = dict(changes)
        for name, value in changes.items():
            if name not in self.fields:
                continue
            if isinstance(value, str):
                changes[name] = self.resolve(name, value)
            elif not isinstance(value, FileRef) and callable(getattr(value, "read", None)):
                # A live stream can only be read once.
                data = value.read()
                changes[name] = data.encode("utf-8") if isinstance(data, str) else data
        rows = self.store.find(self.model, **filters)
        for row in rows:
            self.on_record_update(row, dict(changes))
        return len(rows)

    # -- helpers ------------------------------------------------------------

    def _displace(self, field_name: str, path: Path, mutation: _Mutation | None) -> None:
        if mutation is not None:
            mutation.displaced.append((field_name, path))
        else:
            self._remove(field_name, path)

    def _remove_all(self, doomed: list[tuple[str, Path]]) -> None:
        """Remove files only once all of them are known to exist."""
        for field_name, path in doomed:
            if not path.is_file():
                self._journal("remove", field_name, path, outcome="failed", reason="missing")
                raise MissingStorageError(errno.ENOENT, "Backing file is missing", str(path))
        for field_name, path in doomed:
            self._remove(field_name, path)

    def _remove(self, field_name: str, path: Path) -> None:
        try:
            remove_file(path)
        except StorageIOError as exc:
            self._journal("remove", field_name, path, outcome="failed", reason=str(exc))
            raise
        self._journal("remove", field_name, path)

    def _discard(self, mutation: _Mutation) -> None:
        """Remove files written by a mutation that did not go through."""
        for field_name, path in mutation.written:
            try:
                remove_file(path)
            except StorageIOError as exc:
                logger.warning("Could not discard %s for %s.%s: %s", path, self.table, field_name, exc)
                continue
            logger.warning("Discarded %s after failed %s mutation", path, self.table)
            self._journal("discard", field_name, path)

    def _journal(self, op: str, field_name: str, path: Path, **kwargs: Any) -> None:
        if self.journal is not None:
            self.journal.log(op, path, table=self.table, field=field_name, **kwargs)


def _source_path(value: Any) -> Path | None:
    if isinstance(value, FileRef):
        return value.path
    if isinstance(value, Path):
        return value
    return None
