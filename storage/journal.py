"""Structured JSONL journal of storage operations."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


class StorageJournal:
    """Writes file write/remove events as JSON lines."""

    def __init__(self, log_path: Path) -> None:
        self.log_path = log_path
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger = logging.getLogger("fsc.journal")

    def log(
        self,
        op: str,
        path: Path,
        *,
        table: str,
        field: str,
        outcome: str = "ok",
        reason: str = "",
    ) -> None:
        """Append one JSONL journal event."""
        event: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "op": op,
            "table": table,
            "field": field,
            "path": str(path),
            "outcome": outcome,
            "reason": reason,
        }
        with self.log_path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(event, ensure_ascii=True) + "\n")
        self.logger.debug(json.dumps(event, ensure_ascii=True))

    def read(self) -> list[dict[str, Any]]:
        """Return all journal events in write order."""
        if not self.log_path.exists():
            return []
        with self.log_path.open("r", encoding="utf-8") as fh:
            return [json.loads(line) for line in fh if line.strip()]
