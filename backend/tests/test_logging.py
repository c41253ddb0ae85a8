"""Tests for structured logging."""

import io
import json
import logging

import pytest

from rag_pipeline.core.config import Settings
from rag_pipeline.core.errors import ConfigurationError
from rag_pipeline.core.logging import configure_logging, get_logger, resolve_level


def test_json_lines_carry_context() -> None:
    stream = io.StringIO()
    configure_logging("debug", stream=stream)
    get_logger("rag_pipeline.test").info("Processing %s", "a.txt", extra={"ctx_source_id": "a.txt"})
    record = json.loads(stream.getvalue().splitlines()[-1])
    assert record["msg"] == "Processing a.txt"
    assert record["level"] == "INFO"
    assert record["context"] == {"source_id": "a.txt"}


def test_exceptions_are_rendered() -> None:
    stream = io.StringIO()
    configure_logging("INFO", stream=stream)
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        get_logger("rag_pipeline.test").exception("failed")
    record = json.loads(stream.getvalue().splitlines()[-1])
    assert "RuntimeError: boom" in record["error"]


def test_plain_format() -> None:
    stream = io.StringIO()
    configure_logging("WARNING", use_json=False, stream=stream)
    logger = get_logger("rag_pipeline.test")
    logger.info("hidden")
    logger.warning("shown")
    assert "hidden" not in stream.getvalue()
    assert "WARNING rag_pipeline.test: shown" in stream.getvalue()


def test_resolve_level() -> None:
    assert resolve_level("warning") == logging.WARNING
    assert resolve_level(10) == logging.DEBUG
    with pytest.raises(ValueError):
        resolve_level("loud")


def test_settings_reject_unknown_level() -> None:
    with pytest.raises(ConfigurationError):
        Settings.load(log_level="loud")
