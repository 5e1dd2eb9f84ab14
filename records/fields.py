"""Per-field descriptors for file-backed columns."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import Text, inspect
from sqlalchemy.orm import mapped_column

from core.errors import ConfigurationError
from storage.locator import BlobLocator

FS_COLUMN_KEY = "fs_column"


class FieldSpec(BaseModel):
    """File-backed configuration of a single record field."""

    name: str
    is_file_backed: bool = True
    storage_root: Path
    rename_on_update: bool = False
    shard_depth: int = Field(default=1, ge=0)
    shard_width: int = Field(default=2, ge=1)

    def locator(self) -> BlobLocator:
        return BlobLocator(shard_depth=self.shard_depth, shard_width=self.shard_width)


def fs_column(
    path: str | Path | None = None,
    *,
    rename_on_update: bool = False,
    shard_depth: int | None = None,
    shard_width: int | None = None,
    **kwargs: Any,
) -> Any:
    """Declare a nullable column holding a relative reference to a stored file.

    ``path`` is the storage directory for the column; a relative value is
    placed under the configured storage root. Unset shard parameters fall
    back to the configured defaults.
    """
    info = dict(kwargs.pop("info", {}) or {})
    info[FS_COLUMN_KEY] = {
        "path": str(path) if path is not None else None,
        "rename_on_update": rename_on_update,
        "shard_depth": shard_depth,
        "shard_width": shard_width,
    }
    return mapped_column(Text, nullable=True, info=info, **kwargs)


class FieldTable:
    """Lookup table of field descriptors keyed by field name."""

    def __init__(self, specs: dict[str, FieldSpec]) -> None:
        self._specs = dict(specs)

    @classmethod
    def from_model(
        cls,
        model: type,
        storage_root: Path,
        *,
        shard_depth: int = 1,
        shard_width: int = 2,
    ) -> FieldTable:
        """Build the table from the ``fs_column`` metadata of a mapped class."""
        mapper = inspect(model)
        table_name = mapper.local_table.name
        specs: dict[str, FieldSpec] = {}
        for attr in mapper.column_attrs:
            column = attr.columns[0]
            meta = column.info.get(FS_COLUMN_KEY)
            if meta is None:
                specs[attr.key] = FieldSpec(
                    name=attr.key, is_file_backed=False, storage_root=storage_root
                )
                continue
            raw_path = meta.get("path")
            root = Path(raw_path) if raw_path else Path(table_name)
            if not root.is_absolute():
                root = Path(storage_root) / root
            specs[attr.key] = FieldSpec(
                name=attr.key,
                storage_root=root,
                rename_on_update=bool(meta.get("rename_on_update", False)),
                shard_depth=_or_default(meta.get("shard_depth"), shard_depth),
                shard_width=_or_default(meta.get("shard_width"), shard_width),
            )
        return cls(specs)

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        spec = self._specs.get(name)
        return spec is not None and spec.is_file_backed

    def __iter__(self) -> Iterator[FieldSpec]:
        return iter(self.file_fields())

    def get(self, name: str) -> FieldSpec | None:
        return self._specs.get(name)

    def require(self, name: str) -> FieldSpec:
        """Return the descriptor for a file-backed field or fail."""
        spec = self._specs.get(name)
        if spec is None or not spec.is_file_backed:
            raise ConfigurationError(f"{name} is not a file-backed field")
        return spec

    def file_fields(self) -> list[FieldSpec]:
        return [spec for spec in self._specs.values() if spec.is_file_backed]


def _or_default(value: Any, default: int) -> int:
    return default if value is None else int(value)
