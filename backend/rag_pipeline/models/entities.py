"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class Source:
    source_id: str
    title: str
    origin_url: str
    mime_type: str | None
    schema: list[str] | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class ChunkInput:
    """Chunk text plus its vector, ready to be written."""

    content: str
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Chunk:
    id: int
    source_id: str
    chunk_index: int
    content: str
    embedding: list[float]
    metadata: dict[str, Any]
    created_at: datetime


@dataclass(slots=True)
class Row:
    source_id: str
    row_index: int
    row_data: dict[str, Any]


@dataclass(slots=True)
class Memory:
    memory_id: str
    user_id: str
    conversation_id: str | None
    content: str
    importance: float
    embedding: list[float]
    created_at: datetime
    expires_at: datetime | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.importance <= 1.0:
            raise ValueError(f"importance must be within [0, 1], got {self.importance}")
        if self.expires_at is not None and self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")


@dataclass(slots=True)
class SearchHit:
    chunk: Chunk
    similarity: float


@dataclass(slots=True)
class MemoryHit:
    memory: Memory
    similarity: float


__all__ = ["Source", "ChunkInput", "Chunk", "Row", "Memory", "SearchHit", "MemoryHit"]
