"""Vector index abstraction."""

from __future__ import annotations

import math
from array import array
from dataclasses import dataclass
from typing import Sequence


@dataclass(slots=True)
class SearchResult:
    key: int | str
    score: float


class VectorIndex:
    """Simple in-memory vector index using cosine similarity.

    Entries keep their insertion position, which breaks score ties so that
    equal scores come back in the order they were added.
    """

    def __init__(self, dim: int) -> None:
        self.dim = dim
        self._keys: list[int | str] = []
        self._vectors: list[Sequence[float]] = []
        self._norms: list[float] = []

    @property
    def size(self) -> int:
        return len(self._vectors)

    def add(self, keys: Sequence[int | str], vectors: Sequence[Sequence[float]]) -> None:
        if len(keys) != len(vectors):
            raise ValueError("keys and vectors must have the same length")
        for vector in vectors:
            if len(vector) != self.dim:
                raise ValueError("Vector dimension mismatch")
        self._keys.extend(keys)
        self._vectors.extend(vectors)
        self._norms.extend(_norm(vector) for vector in vectors)

    def search(
        self,
        vector: Sequence[float],
        top_k: int = 4,
        threshold: float | None = None,
    ) -> list[SearchResult]:
        if not self._vectors or top_k <= 0:
            return []
        if len(vector) != self.dim:
            raise ValueError("Query vector dimension mismatch")
        query_norm = _norm(vector)
        scores: list[tuple[int, float]] = []
        for idx, candidate in enumerate(self._vectors):
            score = _cosine(candidate, self._norms[idx], vector, query_norm)
            if threshold is not None and score < threshold:
                continue
            scores.append((idx, score))
        scores.sort(key=lambda item: (-item[1], item[0]))
        return [SearchResult(key=self._keys[idx], score=score) for idx, score in scores[:top_k]]


def pack_vector(vector: Sequence[float]) -> bytes:
    """Serialize a vector as float32 bytes for BLOB storage."""
    return array("f", vector).tobytes()


def unpack_vector(blob: bytes) -> list[float]:
    floats = array("f")
    floats.frombytes(blob)
    return list(floats)


def _norm(vector: Sequence[float]) -> float:
    return math.sqrt(sum(value * value for value in vector))


def _cosine(a: Sequence[float], a_norm: float, b: Sequence[float], b_norm: float) -> float:
    if a_norm == 0 or b_norm == 0:
        return 0.0
    return sum(x * y for x, y in zip(a, b)) / (a_norm * b_norm)


__all__ = ["VectorIndex", "SearchResult", "pack_vector", "unpack_vector"]
