"""Embedding backends."""

from __future__ import annotations

import hashlib
import math
import re
from typing import Sequence

from openai import OpenAI

from rag_pipeline.core.config import Settings
from rag_pipeline.core.errors import ConfigurationError, EmbeddingError
from rag_pipeline.core.logging import get_logger

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class Embedder:
    """Maps text to fixed-dimension vectors, one per input, in input order."""

    model: str
    dim: int

    def embed(self, texts: Sequence[str]) -> list[list[float]]:  # pragma: no cover - interface
        raise NotImplementedError

    def embed_one(self, text: str) -> list[float]:
        vectors = self.embed([text])
        if len(vectors) != 1:
            raise EmbeddingError(f"Expected 1 embedding, received {len(vectors)}")
        return vectors[0]


class OpenAIEmbedder(Embedder):
    """Embedder backed by an OpenAI-compatible embeddings endpoint.

    Inputs are sent in batches of ``embedding_batch_size``; the returned
    vectors are reassembled by their response index so output order always
    matches input order. Any provider failure surfaces as
    :class:`EmbeddingError` and no partial result is returned.
    """

    def __init__(self, settings: Settings, client: OpenAI | None = None) -> None:
        self.model = settings.embedding_model
        self.dim = settings.embedding_dim
        self.batch_size = settings.embedding_batch_size
        if client is None:
            if not settings.embedding_api_key:
                raise ConfigurationError("embedding_api_key is required for the openai embedding provider")
            client = OpenAI(
                api_key=settings.embedding_api_key,
                base_url=settings.embedding_base_url,
                timeout=settings.request_timeout_seconds,
            )
        self._client = client

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors: list[list[float]] = []
        for offset in range(0, len(texts), self.batch_size):
            vectors.extend(self._embed_batch(list(texts[offset : offset + self.batch_size])))
        return vectors

    def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        try:
            response = self._client.embeddings.create(model=self.model, input=batch)
        except Exception as exc:
            logger.error(
                "Embedding generation failed: %s",
                exc,
                extra={"ctx_text_count": len(batch), "ctx_model": self.model},
            )
            raise EmbeddingError(f"Failed to create embeddings: {exc}", text_count=len(batch)) from exc
        items = sorted(response.data, key=lambda item: item.index)
        if len(items) != len(batch):
            raise EmbeddingError(
                f"Embedding count mismatch: sent {len(batch)} texts, received {len(items)} vectors",
                text_count=len(batch),
            )
        vectors = [list(item.embedding) for item in items]
        for vector in vectors:
            if len(vector) != self.dim:
                raise EmbeddingError(
                    f"Embedding dimension mismatch: expected {self.dim}, received {len(vector)}",
                    model=self.model,
                )
        return vectors


class HashedEmbedder(Embedder):
    """Lightweight hashed bag-of-words embedder with deterministic output.

    Needs no network access; used for offline runs and tests.
    """

    def __init__(self, dim: int, model: str = "hashed") -> None:
        if dim < 1:
            raise ConfigurationError(f"embedding dimension must be >= 1, got {dim}")
        self.model = model
        self.dim = dim

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for text in texts:
            vector = [0.0] * self.dim
            for token in _tokenize(text):
                vector[_hash_token(token, self.dim)] += 1.0
            _normalize(vector)
            vectors.append(vector)
        return vectors


def build_embedder(settings: Settings) -> Embedder:
    """Return the embedder selected by ``settings.embedding_provider``."""
    if settings.embedding_provider == "hashed":
        return HashedEmbedder(dim=settings.embedding_dim)
    return OpenAIEmbedder(settings)


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = ["Embedder", "OpenAIEmbedder", "HashedEmbedder", "build_embedder"]
