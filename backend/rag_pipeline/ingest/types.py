"""Bookkeeping for batch ingestion runs."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any


class IngestStatus(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class IngestResult:
    """What happened to one file of a directory run."""

    source_id: str
    path: Path
    status: IngestStatus
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "source_id": self.source_id,
            "path": str(self.path),
            "status": self.status.value,
        }
        if self.detail:
            payload["detail"] = self.detail
        return payload


@dataclass(slots=True)
class IngestStats:
    """Per-status counters for a directory run."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.processed + self.skipped + self.failed

    def record(self, result: IngestResult) -> IngestResult:
        field_name = result.status.value
        setattr(self, field_name, getattr(self, field_name) + 1)
        return result

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
        }


__all__ = ["IngestResult", "IngestStats", "IngestStatus"]
