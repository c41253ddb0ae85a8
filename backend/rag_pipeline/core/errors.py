"""Error taxonomy shared by every pipeline component."""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base class for failures raised by the ingestion and retrieval core."""

    code = "pipeline_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ExtractionError(PipelineError):
    """Raw bytes could not be turned into text."""

    code = "extraction_error"


class EmbeddingError(PipelineError):
    """The embedding provider call failed or returned unusable vectors."""

    code = "embedding_error"


class StoreError(PipelineError):
    """A datastore read or write failed."""

    code = "store_error"


class ConfigurationError(PipelineError):
    """A required setting is missing or invalid."""

    code = "configuration_error"


__all__ = [
    "PipelineError",
    "ExtractionError",
    "EmbeddingError",
    "StoreError",
    "ConfigurationError",
]
