"""Record/file lifecycle tests."""

from __future__ import annotations

import errno
import io
from collections.abc import Callable
from pathlib import Path

import pytest

from core.errors import ConfigurationError, MissingStorageError, StorageIOError, StoreError
from lifecycle.synchronizer import LifecycleSynchronizer
from records.fields import FieldTable
from records.record_store import RecordStore
from records.schemas import DocumentRecord
from records.sql_store import SQLStore
from storage.journal import StorageJournal
from storage.locator import BlobLocator


class CountingNames:
    """Deterministic name factory that records how often it was called."""

    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        return f"{self.calls:02x}" + "f" * 30


class BrokenStream:
    def read(self, size: int = -1) -> bytes:
        raise OSError(errno.ENOSPC, "No space left on device")


def build_sync(
    tmp_path: Path,
    name_factory: Callable[[], str] | None = None,
    **kwargs: object,
) -> LifecycleSynchronizer:
    store = SQLStore(db_path=tmp_path / "records.db")
    store.create_all()
    fields = FieldTable.from_model(DocumentRecord, tmp_path / "files")
    extra = {"name_factory": name_factory} if name_factory is not None else {}
    return LifecycleSynchronizer(DocumentRecord, fields, RecordStore(store), **extra, **kwargs)


def stored_files(root: Path) -> list[Path]:
    return sorted(p for p in root.rglob("*") if p.is_file())


def test_create_stores_content_under_storage_root(tmp_path: Path) -> None:
    sync = build_sync(tmp_path, CountingNames())
    doc = sync.on_record_create({"slug": "a", "title": "A", "content": b"hello"})

    assert doc.content == "01/01" + "f" * 30
    ref = sync.inflate(doc, "content")
    assert ref is not None
    assert ref.read_bytes() == b"hello"
    assert ref.path.is_relative_to(tmp_path / "files" / "documents")
    assert sync.inflate(doc, "preview") is None

    reloaded = sync.get(doc.id)
    assert reloaded.content == doc.content
    assert sync.inflate(reloaded, "content").read_bytes() == b"hello"


def test_self_assignment_is_a_noop(tmp_path: Path) -> None:
    names = CountingNames()
    sync = build_sync(tmp_path, names)
    doc = sync.on_record_create(slug="a", content=b"same", preview=b"thumb")
    content_ref = sync.inflate(doc, "content")
    preview_ref = sync.inflate(doc, "preview")
    stamp = content_ref.path.stat().st_mtime_ns
    before = (doc.content, doc.preview)

    sync.on_record_update(doc, {"content": content_ref, "preview": preview_ref})

    assert (doc.content, doc.preview) == before
    assert names.calls == 2
    assert content_ref.path.stat().st_mtime_ns == stamp
    assert preview_ref.exists()


def test_update_overwrites_in_place(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", content=b"v1")
    stored = doc.content

    sync.on_record_update(doc, {"content": b"v2"})

    assert doc.content == stored
    assert sync.inflate(doc, "content").read_bytes() == b"v2"
    assert len(stored_files(tmp_path / "files")) == 1


def test_rename_on_update_allocates_new_location(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", preview=b"p1")
    old_ref = sync.inflate(doc, "preview")

    sync.on_record_update(doc, {"preview": b"p2"})

    new_ref = sync.inflate(doc, "preview")
    assert new_ref.stored != old_ref.stored
    assert new_ref.read_bytes() == b"p2"
    assert not old_ref.exists()
    assert sync.get(doc.id).preview == new_ref.stored


def test_delete_removes_backing_files(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", content=b"c", preview=b"p")
    paths = [sync.inflate(doc, "content").path, sync.inflate(doc, "preview").path]

    sync.on_record_delete(doc)

    assert all(not p.exists() for p in paths)
    assert sync.get(doc.id) is None


def test_delete_skips_null_fields(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", content=b"c")

    sync.on_record_delete(doc)

    assert stored_files(tmp_path / "files") == []


def test_delete_with_missing_file_is_surfaced(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", content=b"c")
    doc_id = doc.id
    sync.inflate(doc, "content").path.unlink()

    with pytest.raises(MissingStorageError):
        sync.on_record_delete(doc)

    # The row delete was rolled back with the failed removal.
    assert sync.get(doc_id) is not None


def test_same_content_gets_distinct_locations(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    first = sync.on_record_create(slug="a", content=b"dup")
    second = sync.on_record_create(slug="b", content=b"dup")
    first_ref = sync.inflate(first, "content")
    second_ref = sync.inflate(second, "content")

    assert first_ref.path != second_ref.path

    sync.on_record_delete(first)

    assert not first_ref.exists()
    assert second_ref.read_bytes() == b"dup"


def test_nulling_a_field_removes_its_file(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", content=b"c")
    ref = sync.inflate(doc, "content")
    assert ref.exists()

    sync.on_record_update(doc, {"content": None})

    assert not ref.exists()
    assert doc.content is None
    assert sync.inflate(doc, "content") is None
    assert sync.get(doc.id).content is None


def test_dirty_attribute_is_picked_up(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", content=b"c")
    ref = sync.inflate(doc, "content")

    doc.content = None
    sync.on_record_update(doc)

    assert not ref.exists()
    assert sync.get(doc.id).content is None


def test_setting_a_previously_null_field(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a")
    assert sync.inflate(doc, "content") is None

    sync.on_record_update(doc, {"content": b"late"})

    assert sync.inflate(doc, "content").read_bytes() == b"late"


def test_copy_materializes_independent_files(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    original = sync.on_record_create(slug="a", title="T", content=b"body")

    copy = sync.on_record_copy(original, {"slug": "a-copy"})

    assert copy.id != original.id
    assert copy.title == "T"
    assert copy.preview is None
    original_ref = sync.inflate(original, "content")
    copy_ref = sync.inflate(copy, "content")
    assert copy_ref.path != original_ref.path

    sync.on_record_delete(original)

    assert not original_ref.exists()
    assert copy_ref.read_bytes() == b"body"


def test_copy_uses_override_for_file_field(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    original = sync.on_record_create(slug="a", content=b"body", preview=b"p")

    copy = sync.on_record_copy(original, {"slug": "b", "content": b"other"})

    assert sync.inflate(copy, "content").read_bytes() == b"other"
    assert sync.inflate(copy, "preview").read_bytes() == b"p"
    assert sync.inflate(original, "content").read_bytes() == b"body"


def test_primary_key_change_keeps_file_reachable(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", content=b"keyed")
    old_id = doc.id

    sync.on_record_update(doc, {"id": old_id + 100})

    assert sync.get(old_id) is None
    reloaded = sync.get(old_id + 100)
    assert sync.inflate(reloaded, "content").read_bytes() == b"keyed"


def test_live_stream_is_copied_byte_for_byte(tmp_path: Path) -> None:
    sync = build_sync(tmp_path, chunk_size=1024)
    payload = bytes(range(256)) * 100
    doc = sync.on_record_create(slug="a", content=io.BytesIO(payload))

    assert sync.inflate(doc, "content").read_bytes() == payload


def test_external_file_is_imported(tmp_path: Path) -> None:
    external = tmp_path / "upload.bin"
    external.write_bytes(b"imported")
    sync = build_sync(tmp_path)

    doc = sync.on_record_create(slug="a", content=external)

    ref = sync.inflate(doc, "content")
    assert ref.path != external
    assert ref.read_bytes() == b"imported"
    assert external.exists()


def test_store_failure_discards_new_files(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    sync.on_record_create(slug="a", content=b"first")

    with pytest.raises(StoreError):
        sync.on_record_create(slug="a", content=b"second", preview=b"p")

    files = stored_files(tmp_path / "files")
    assert len(files) == 1
    assert files[0].read_bytes() == b"first"


def test_copy_rejected_by_store_leaves_no_files(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    original = sync.on_record_create(slug="a", content=b"body")

    with pytest.raises(StoreError):
        sync.on_record_copy(original)

    assert len(stored_files(tmp_path / "files")) == 1


def test_failed_write_keeps_previous_state(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", content=b"keep", preview=b"thumb")
    content_ref = sync.inflate(doc, "content")
    preview_ref = sync.inflate(doc, "preview")

    with pytest.raises(StorageIOError):
        sync.on_record_update(doc, {"preview": BrokenStream()})
    with pytest.raises(StorageIOError):
        sync.on_record_update(doc, {"content": BrokenStream()})

    reloaded = sync.get(doc.id)
    assert reloaded.preview == preview_ref.stored
    assert reloaded.content == content_ref.stored
    assert preview_ref.read_bytes() == b"thumb"
    assert content_ref.read_bytes() == b"keep"
    assert len(stored_files(tmp_path / "files")) == 2


def test_missing_file_only_fails_when_opened(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", content=b"c")
    sync.inflate(doc, "content").path.unlink()
    reloaded = sync.get(doc.id)

    ref = sync.inflate(reloaded, "content")

    assert ref is not None
    with pytest.raises(MissingStorageError):
        ref.open()


def test_hooks_reject_fields_that_are_not_file_backed(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a")

    with pytest.raises(ConfigurationError):
        sync.inflate(doc, "title")
    with pytest.raises(ConfigurationError):
        sync.deflate("slug", b"x")
    with pytest.raises(ConfigurationError):
        sync.deflate("missing", b"x")


def test_deflate_passes_stored_references_through(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    assert sync.deflate("content", "ab/abcdef") == "ab/abcdef"
    assert sync.deflate("content", None) is None
    with pytest.raises(TypeError):
        sync.deflate("content", 123)


def test_standalone_deflate_removes_displaced_file(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    first = sync.deflate("preview", b"one")
    old_path = sync.resolve("preview", first).path

    second = sync.deflate("preview", b"two", current=first)

    assert second != first
    assert not old_path.exists()
    assert sync.resolve("preview", second).read_bytes() == b"two"


def test_injected_locator_controls_layout(tmp_path: Path) -> None:
    sync = build_sync(tmp_path, CountingNames(), locator=BlobLocator(shard_depth=2, shard_width=1))
    doc = sync.on_record_create(slug="a", content=b"deep")

    assert doc.content == "0/1/01" + "f" * 30
    assert sync.inflate(sync.get(doc.id), "content").read_bytes() == b"deep"


def test_cached_reference_is_invalidated_by_update(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", preview=b"p1")
    first = sync.inflate(doc, "preview")
    assert sync.inflate(doc, "preview") is first

    sync.on_record_update(doc, {"preview": b"p2"})

    assert sync.inflate(doc, "preview") != first


def test_journal_records_file_operations(tmp_path: Path) -> None:
    journal = StorageJournal(tmp_path / "logs" / "storage.jsonl")
    sync = build_sync(tmp_path, journal=journal)
    doc = sync.on_record_create(slug="a", content=b"c")
    sync.on_record_delete(doc)

    events = journal.read()
    assert [e["op"] for e in events] == ["write", "remove"]
    assert {e["table"] for e in events} == {"documents"}
    assert all(e["outcome"] == "ok" for e in events)


def test_copy_with_stored_reference_override_gets_own_file(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    original = sync.on_record_create(slug="a", content=b"body")

    copy = sync.on_record_copy(original, {"slug": "b", "content": original.content})

    assert copy.content != original.content
    copy_ref = sync.inflate(copy, "content")
    sync.on_record_delete(original)
    assert copy_ref.read_bytes() == b"body"


def test_delete_checks_every_file_before_removing_any(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", content=b"c", preview=b"p")
    doc_id = doc.id
    content_ref = sync.inflate(doc, "content")
    sync.inflate(doc, "preview").path.unlink()

    with pytest.raises(MissingStorageError):
        sync.on_record_delete(doc)

    reloaded = sync.get(doc_id)
    assert reloaded is not None
    assert reloaded.content == content_ref.stored
    assert content_ref.read_bytes() == b"c"


def test_update_checks_every_file_before_removing_any(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", content=b"c", preview=b"p")
    doc_id = doc.id
    content_ref = sync.inflate(doc, "content")
    sync.inflate(doc, "preview").path.unlink()

    with pytest.raises(MissingStorageError):
        sync.on_record_update(doc, {"content": None, "preview": None})

    assert sync.get(doc_id).content == content_ref.stored
    assert content_ref.exists()


def test_delete_where_removes_files_of_each_row(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doomed = [
        sync.on_record_create(slug=f"old-{i}", title="old", content=b"x", preview=b"p")
        for i in range(3)
    ]
    kept = sync.on_record_create(slug="new", title="new", content=b"y")
    paths = [sync.inflate(d, f).path for d in doomed for f in ("content", "preview")]

    assert sync.delete_where(title="old") == 3

    assert all(not p.exists() for p in paths)
    assert all(sync.get(d.id) is None for d in doomed)
    assert sync.inflate(kept, "content").read_bytes() == b"y"
    assert sync.delete_where(title="old") == 0


def test_update_where_runs_file_hooks_per_row(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    rows = [sync.on_record_create(slug=f"r{i}", title="batch", content=b"v1") for i in range(2)]
    old_refs = [sync.inflate(r, "content") for r in rows]

    assert sync.update_where({"preview": io.BytesIO(b"shared")}, title="batch") == 2

    previews = [sync.inflate(sync.get(r.id), "preview") for r in rows]
    assert previews[0].path != previews[1].path
    assert [p.read_bytes() for p in previews] == [b"shared", b"shared"]

    assert sync.update_where({"content": None}, title="batch") == 2
    assert all(not ref.exists() for ref in old_refs)


def test_inflating_an_unsaved_value_is_reported(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", content=b"c")
    doc.content = b"pending"

    with pytest.raises(ValueError, match="unsaved"):
        sync.inflate(doc, "content")

    sync.on_record_update(doc)
    assert sync.inflate(doc, "content").read_bytes() == b"pending"


def test_stored_reference_under_rename_displaces_old_file(tmp_path: Path) -> None:
    sync = build_sync(tmp_path)
    doc = sync.on_record_create(slug="a", preview=b"p1")
    old_ref = sync.inflate(doc, "preview")
    replacement = sync.deflate("preview", b"p2")

    sync.on_record_update(doc, {"preview": replacement})

    assert doc.preview == replacement
    assert not old_ref.exists()
    assert sync.inflate(doc, "preview").read_bytes() == b"p2"
