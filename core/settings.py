"""Configuration loading for file-backed storage."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class StorageSettings(BaseModel):
    """Effective storage configuration."""

    storage_root: Path = Path("var/files")
    db_path: Path = Path("var/records.db")
    journal_path: Path | None = None
    atomic_writes: bool = True
    chunk_size: int = Field(default=64 * 1024, gt=0)
    shard_depth: int = Field(default=1, ge=0)
    shard_width: int = Field(default=2, ge=1)


def load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML from file, returning empty mapping when missing."""
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return data


def merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries."""
    merged: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(root: Path, overrides: dict[str, Any] | None = None) -> StorageSettings:
    """Load ``config/default.yaml`` and ``config/local.yaml`` under ``root``.

    Relative paths in the result are resolved against ``root``.
    """
    config_dir = root / "config"
    merged = merge_dicts(load_yaml(config_dir / "default.yaml"), load_yaml(config_dir / "local.yaml"))
    merged = merge_dicts(merged, overrides or {})
    settings = StorageSettings(**merged.get("storage", {}))

    def _abs(path: Path) -> Path:
        return path if path.is_absolute() else (root / path).resolve()

    return settings.model_copy(
        update={
            "storage_root": _abs(settings.storage_root),
            "db_path": _abs(settings.db_path),
            "journal_path": _abs(settings.journal_path) if settings.journal_path else None,
        }
    )


def ensure_runtime_dirs(settings: StorageSettings) -> None:
    """Ensure the storage root and database/journal parents exist."""
    settings.storage_root.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    if settings.journal_path is not None:
        settings.journal_path.parent.mkdir(parents=True, exist_ok=True)
