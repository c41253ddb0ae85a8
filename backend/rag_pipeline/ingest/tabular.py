"""Delimited tabular parsing: column schema and typed row records."""

from __future__ import annotations

import io
import re
from typing import Any

import pandas as pd

from rag_pipeline.core.logging import get_logger

logger = get_logger(__name__)

TABULAR_MIME_TYPES = (
    "text/csv",
    "text/tab-separated-values",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.google-apps.spreadsheet",
)

_DELIMITERS = ",;\t|"
_INT_RE = re.compile(r"[+-]?\d+")
_FLOAT_RE = re.compile(r"[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?")
_PARSE_ERRORS = (pd.errors.ParserError, UnicodeDecodeError, ValueError)


def is_tabular(mime_type: str | None) -> bool:
    kind = (mime_type or "").lower()
    return any(tabular in kind for tabular in TABULAR_MIME_TYPES)


def extract_schema(data: bytes) -> list[str]:
    """Return the header columns, or an empty list when the payload cannot be parsed."""
    try:
        frame = _read_frame(data)
    except _PARSE_ERRORS as exc:
        logger.error("Tabular schema extraction failed: %s", exc)
        return []
    if frame.empty:
        return []
    return [str(column).strip() for column in frame.iloc[0]]


def extract_rows(data: bytes) -> list[dict[str, Any]]:
    """Return one field-to-value mapping per data row; empty on parse failure.

    Short rows are padded with ``None``. A row with more fields than the
    header fails the whole payload.
    """
    try:
        frame = _read_frame(data)
    except _PARSE_ERRORS as exc:
        logger.error("Tabular row extraction failed: %s", exc)
        return []
    if frame.empty:
        return []
    header = [str(column).strip() for column in frame.iloc[0]]
    records = frame.iloc[1:].to_dict(orient="records")
    return [
        {column: coerce_cell(record[position]) for position, column in enumerate(header)}
        for record in records
    ]


def coerce_cell(value: str) -> Any:
    """Best-effort typing of one cell: int, float, bool, None or the stripped string."""
    stripped = value.strip()
    if not stripped:
        return None
    lowered = stripped.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if _INT_RE.fullmatch(stripped):
        return int(stripped)
    if _FLOAT_RE.fullmatch(stripped):
        return float(stripped)
    return stripped


def _read_frame(data: bytes) -> pd.DataFrame:
    """Every line, header included, as strings; missing trailing fields become ``""``."""
    text = data.decode("utf-8-sig")
    first_line = next((line for line in text.splitlines() if line.strip()), "")
    if not first_line:
        return pd.DataFrame()
    frame = pd.read_csv(
        io.StringIO(text),
        sep=_guess_delimiter(first_line),
        header=None,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
    )
    return frame.fillna("")


def _guess_delimiter(header_line: str) -> str:
    counts = {delimiter: header_line.count(delimiter) for delimiter in _DELIMITERS}
    best = max(counts, key=lambda delimiter: counts[delimiter])
    return best if counts[best] else ","


__all__ = ["TABULAR_MIME_TYPES", "is_tabular", "extract_schema", "extract_rows", "coerce_cell"]
