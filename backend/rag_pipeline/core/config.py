"""Application configuration handling."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from rag_pipeline.core.errors import ConfigurationError
from rag_pipeline.core.logging import resolve_level

ENV_PREFIX = "RAGP_"
DEFAULT_CONFIG_PATH = Path("~/.config/rag-pipeline/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "timeout_seconds"): "store_timeout_seconds",
    ("storage", "insert_batch_size"): "insert_batch_size",
    ("storage", "row_batch_size"): "row_batch_size",
    ("embeddings", "provider"): "embedding_provider",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "api_key"): "embedding_api_key",
    ("embeddings", "base_url"): "embedding_base_url",
    ("embeddings", "batch_size"): "embedding_batch_size",
    ("embeddings", "timeout_seconds"): "request_timeout_seconds",
    ("chunking", "size"): "chunk_size",
    ("chunking", "overlap"): "chunk_overlap",
    ("retrieval", "top_k"): "retrieval_top_k",
    ("retrieval", "similarity_threshold"): "similarity_threshold",
    ("watch", "directory"): "watch_directory",
    ("watch", "extensions"): "watch_extensions",
    ("watch", "debounce_seconds"): "debounce_seconds",
    ("drive", "folder_id"): "drive_folder_id",
    ("drive", "client_id"): "google_client_id",
    ("drive", "client_secret"): "google_client_secret",
    ("drive", "refresh_token"): "google_refresh_token",
    ("drive", "poll_interval_seconds"): "poll_interval_seconds",
    ("memory", "retention_days"): "memory_retention_days",
    ("memory", "top_k"): "memory_top_k",
    ("logging", "level"): "log_level",
    ("logging", "json"): "log_json",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables.

    Constructed once at process start and handed to each component's
    constructor; library code never looks settings up on its own.
    """

    db_path: Path = Field(default=Path.home() / ".rag-pipeline" / "rag.db")
    store_timeout_seconds: float = 30.0
    insert_batch_size: int = Field(default=100, ge=1)
    row_batch_size: int = Field(default=500, ge=1)

    embedding_provider: Literal["openai", "hashed"] = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = Field(default=1536, ge=1)
    embedding_api_key: str | None = None
    embedding_base_url: str | None = None
    embedding_batch_size: int = Field(default=256, ge=1)
    request_timeout_seconds: float = 60.0

    chunk_size: int = Field(default=1000, ge=1)
    chunk_overlap: int = Field(default=200, ge=0)

    retrieval_top_k: int = Field(default=4, ge=1)
    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)

    watch_directory: Path = Path("./documents")
    watch_extensions: list[str] = Field(
        default_factory=lambda: [".pdf", ".txt", ".md", ".csv", ".docx", ".json"]
    )
    debounce_seconds: float = Field(default=2.0, ge=0.0)

    drive_folder_id: str | None = None
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_refresh_token: str | None = None
    poll_interval_seconds: float = Field(default=300.0, gt=0.0)

    memory_retention_days: int = Field(default=90, ge=0)
    memory_top_k: int = Field(default=5, ge=1)

    log_level: str = "INFO"
    log_json: bool = True

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", "watch_directory", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("path settings must be a path or string")

    @field_validator("watch_extensions", mode="before")
    @classmethod
    def _split_extensions(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, (list, tuple)):
            return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in value]
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        resolve_level(value)
        return value.upper()

    @model_validator(mode="after")
    def _check_chunk_window(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )
        return self

    @classmethod
    def load(cls, path: Path | None = None, **overrides: Any) -> "Settings":
        """Load YAML config, overlay env vars and explicit overrides."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        data.update({key: value for key, value in overrides.items() if value is not None})
        try:
            return cls(**data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        mapped_key = _YAML_KEY_MAP.get(next_prefix)
        if mapped_key:
            flat[mapped_key] = value
        elif isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        elif key in Settings.model_fields:
            flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with RAGP_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


__all__ = ["Settings", "ENV_PREFIX"]
