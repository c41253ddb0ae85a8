"""Test fixtures for the RAG pipeline."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

TEST_DIM = 64


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate environment and root logging between tests."""
    for key in list(os.environ):
        if key.startswith("RAGP_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture()
def settings(tmp_path: Path):
    from rag_pipeline.core.config import Settings

    return Settings(
        db_path=tmp_path / "rag.db",
        embedding_provider="hashed",
        embedding_dim=TEST_DIM,
        watch_directory=tmp_path / "docs",
        debounce_seconds=0.2,
        similarity_threshold=0.5,
        insert_batch_size=2,
        row_batch_size=2,
    )


@pytest.fixture()
def gateway(settings):
    from rag_pipeline.db.gateway import VectorStoreGateway

    store = VectorStoreGateway.open(settings)
    yield store
    store.close()


@pytest.fixture()
def embedder():
    from rag_pipeline.ingest.embeddings import HashedEmbedder

    return HashedEmbedder(dim=TEST_DIM)


@pytest.fixture()
def orchestrator(gateway, embedder, settings):
    from rag_pipeline.ingest.pipeline import IngestOrchestrator

    return IngestOrchestrator(gateway, embedder, settings)


def basis(*weights: float, dim: int = TEST_DIM) -> list[float]:
    """Vector whose leading components are ``weights`` and the rest zero."""
    return list(weights) + [0.0] * (dim - len(weights))
