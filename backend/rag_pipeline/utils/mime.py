"""MIME type helpers for local files."""

from __future__ import annotations

from pathlib import Path

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MARKDOWN = "text/markdown"
CSV = "text/csv"
OCTET_STREAM = "application/octet-stream"

EXTENSION_MIME_TYPES: dict[str, str] = {
    ".pdf": PDF,
    ".txt": "text/plain",
    ".md": MARKDOWN,
    ".markdown": MARKDOWN,
    ".csv": CSV,
    ".tsv": "text/tab-separated-values",
    ".docx": DOCX,
    ".json": "application/json",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}

SUPPORTED_EXTENSIONS: tuple[str, ...] = tuple(EXTENSION_MIME_TYPES)


def guess_mime_type(path: Path | str) -> str:
    suffix = Path(path).suffix.lower()
    return EXTENSION_MIME_TYPES.get(suffix, OCTET_STREAM)


__all__ = [
    "PDF",
    "DOCX",
    "MARKDOWN",
    "CSV",
    "OCTET_STREAM",
    "EXTENSION_MIME_TYPES",
    "SUPPORTED_EXTENSIONS",
    "guess_mime_type",
]
