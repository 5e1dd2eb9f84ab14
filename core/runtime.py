"""Wires the record store, journal and per-table synchronizers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from core.settings import StorageSettings, ensure_runtime_dirs, load_settings
from lifecycle.synchronizer import LifecycleSynchronizer
from records.fields import FieldTable
from records.record_store import RecordStore
from records.sql_store import SQLStore
from storage.journal import StorageJournal
from storage.locator import BlobLocator, NameFactory, random_name


@dataclass
class RuntimeBundle:
    """Holds initialized runtime components."""

    settings: StorageSettings
    sql_store: SQLStore
    record_store: RecordStore
    journal: StorageJournal | None

    def synchronizer(
        self,
        model: type,
        *,
        locator: BlobLocator | None = None,
        name_factory: NameFactory | None = None,
    ) -> LifecycleSynchronizer:
        """Build the synchronizer for one record type."""
        fields = FieldTable.from_model(
            model,
            self.settings.storage_root,
            shard_depth=self.settings.shard_depth,
            shard_width=self.settings.shard_width,
        )
        return LifecycleSynchronizer(
            model,
            fields,
            self.record_store,
            locator=locator,
            name_factory=name_factory or random_name,
            journal=self.journal,
            atomic_writes=self.settings.atomic_writes,
            chunk_size=self.settings.chunk_size,
        )


class Runtime:
    """Creates and wires runtime components."""

    def __init__(self, root: Path | None = None, overrides: dict[str, Any] | None = None) -> None:
        default_root = Path(__file__).resolve().parents[1]
        self.root = (root or default_root).resolve()
        self.overrides = overrides or {}

    def build(self) -> RuntimeBundle:
        settings = load_settings(self.root, self.overrides)
        ensure_runtime_dirs(settings)

        sql_store = SQLStore(settings.db_path)
        sql_store.create_all()
        journal = StorageJournal(settings.journal_path) if settings.journal_path else None

        return RuntimeBundle(
            settings=settings,
            sql_store=sql_store,
            record_store=RecordStore(sql_store),
            journal=journal,
        )
