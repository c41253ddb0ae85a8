"""Chunking utilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator


@dataclass(slots=True)
class Segment:
    text: str
    start: int
    end: int


def chunk_text(text: str, size: int = 1000, overlap: int = 200) -> list[str]:
    """Split text into overlapping fixed-size character windows.

    Carriage returns are dropped first. The window advances by
    ``size - overlap`` characters and a window is kept only when it has
    non-whitespace content. Windows start at every multiple of the step
    below the text length, so the trailing windows may be shorter than
    ``size`` and fully contained in their predecessor.

    Raises:
        ValueError: if ``size < 1``, ``overlap < 0`` or ``overlap >= size``.
    """
    return [segment.text for segment in iter_segments(text, size, overlap)]


def iter_segments(text: str, size: int, overlap: int) -> Iterator[Segment]:
    """Yield the windows of :func:`chunk_text` with their offsets in the cleaned text."""
    validate_window(size, overlap)
    if not text:
        return
    cleaned = text.replace("\r", "")
    step = size - overlap
    length = len(cleaned)
    start = 0
    while start < length:
        end = min(start + size, length)
        window = cleaned[start:end]
        if window.strip():
            yield Segment(text=window, start=start, end=end)
        start += step


def validate_window(size: int, overlap: int) -> None:
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    if overlap < 0:
        raise ValueError(f"chunk overlap must be >= 0, got {overlap}")
    if overlap >= size:
        raise ValueError(f"chunk overlap ({overlap}) must be smaller than chunk size ({size})")


__all__ = ["Segment", "chunk_text", "iter_segments", "validate_window"]
