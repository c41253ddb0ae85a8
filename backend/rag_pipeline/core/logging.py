"""Structured logging for the ingestion and retrieval services.

Records are rendered as one JSON object per line. Any ``extra`` key prefixed
with ``ctx_`` is copied into the payload under a ``context`` object, so call
sites can attach source ids, mime types or counts without custom formatters.
Logs go to stderr; stdout is reserved for command output.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import IO, Any

import orjson

CONTEXT_PREFIX = "ctx_"
PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_DEFAULT_LEVEL = os.environ.get("RAGP_LOG_LEVEL", "INFO")


def resolve_level(level: str | int) -> int:
    """Turn ``"info"``/``"WARNING"``/``10`` into a numeric logging level."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def context_of(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key[len(CONTEXT_PREFIX):]: value
        for key, value in record.__dict__.items()
        if key.startswith(CONTEXT_PREFIX)
    }


class JsonFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "ts": stamp.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        context = context_of(record)
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


def configure_logging(
    level: str | int = _DEFAULT_LEVEL,
    use_json: bool = True,
    stream: IO[str] | None = None,
) -> logging.Handler:
    """Install a single stream handler on the root logger and return it."""
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if use_json else logging.Formatter(PLAIN_FORMAT))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(resolve_level(level))
    # watchdog and urllib3 are chatty at DEBUG
    for noisy in ("watchdog", "urllib3", "httpx"):
        logging.getLogger(noisy).setLevel(max(root.level, logging.INFO))
    logging.captureWarnings(True)
    return handler


def get_logger(name: str = "rag_pipeline") -> logging.Logger:
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "configure_logging", "context_of", "get_logger", "resolve_level"]
