"""Tests for embedding backends."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from rag_pipeline.core.config import Settings
from rag_pipeline.core.errors import ConfigurationError, EmbeddingError
from rag_pipeline.ingest.embeddings import HashedEmbedder, OpenAIEmbedder, build_embedder


def _openai_settings(**overrides) -> Settings:
    values = {"embedding_model": "test-model", "embedding_dim": 3, "embedding_batch_size": 2}
    values.update(overrides)
    return Settings(**values)


def _fake_create(model: str, input: list[str]) -> SimpleNamespace:
    # Reversed on purpose: callers must reorder by index.
    items = [SimpleNamespace(index=i, embedding=[float(len(text)), float(i), 1.0]) for i, text in enumerate(input)]
    return SimpleNamespace(data=list(reversed(items)))


def test_hashed_embedder_deterministic_and_normalized() -> None:
    embedder = HashedEmbedder(dim=32)
    first, second = embedder.embed(["hello world", "something else"])
    assert embedder.embed(["hello world"]) == [first]
    assert len(first) == 32
    assert abs(sum(value * value for value in first) - 1.0) < 1e-6
    assert first != second


def test_hashed_embedder_blank_text_is_zero_vector() -> None:
    assert HashedEmbedder(dim=8).embed_one("   ") == [0.0] * 8


def test_openai_embedder_batches_and_preserves_order() -> None:
    client = MagicMock()
    client.embeddings.create.side_effect = _fake_create
    embedder = OpenAIEmbedder(_openai_settings(), client=client)
    texts = ["a", "bb", "ccc", "dddd", "eeeee"]
    vectors = embedder.embed(texts)
    assert [vector[0] for vector in vectors] == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert client.embeddings.create.call_count == 3
    assert client.embeddings.create.call_args_list[0].kwargs == {"model": "test-model", "input": ["a", "bb"]}


def test_openai_embedder_empty_input_skips_provider() -> None:
    client = MagicMock()
    assert OpenAIEmbedder(_openai_settings(), client=client).embed([]) == []
    client.embeddings.create.assert_not_called()


def test_openai_embedder_wraps_provider_errors() -> None:
    client = MagicMock()
    client.embeddings.create.side_effect = RuntimeError("rate limited")
    with pytest.raises(EmbeddingError) as excinfo:
        OpenAIEmbedder(_openai_settings(), client=client).embed_one("hello")
    assert "rate limited" in excinfo.value.message
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_openai_embedder_rejects_wrong_dimension() -> None:
    client = MagicMock()
    client.embeddings.create.return_value = SimpleNamespace(data=[SimpleNamespace(index=0, embedding=[1.0, 2.0])])
    with pytest.raises(EmbeddingError):
        OpenAIEmbedder(_openai_settings(), client=client).embed(["hello"])


def test_openai_embedder_rejects_missing_vectors() -> None:
    client = MagicMock()
    client.embeddings.create.return_value = SimpleNamespace(data=[])
    with pytest.raises(EmbeddingError):
        OpenAIEmbedder(_openai_settings(), client=client).embed(["hello"])


def test_openai_embedder_requires_api_key() -> None:
    with pytest.raises(ConfigurationError):
        OpenAIEmbedder(_openai_settings(embedding_api_key=None))


def test_build_embedder_selects_provider() -> None:
    embedder = build_embedder(Settings(embedding_provider="hashed", embedding_dim=16))
    assert isinstance(embedder, HashedEmbedder)
    assert embedder.dim == 16
    assert isinstance(build_embedder(_openai_settings(embedding_api_key="sk-test")), OpenAIEmbedder)
