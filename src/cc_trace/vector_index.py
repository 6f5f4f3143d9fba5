"""In-memory vector index with cosine-similarity search."""

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np


class DimensionMismatchError(ValueError):
    """Two vectors of different lengths were compared or stored together."""


@dataclass
class VectorResult:
    block_id: str
    score: float


def _as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    return np.asarray(values, dtype=np.float32).reshape(-1)


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero magnitude. Raises
    DimensionMismatchError if the lengths differ.
    """
    va = _as_vector(a)
    vb = _as_vector(b)
    if va.shape != vb.shape:
        raise DimensionMismatchError(f"Vector dimension mismatch: {va.shape[0]} vs {vb.shape[0]}")

    denom = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb)) / denom


class VectorIndex:
    """Block id -> embedding map searched by linear scan.

    If ``dims`` is not given, the length of the first stored vector fixes it.
    """

    def __init__(self, dims: int | None = None):
        self.dims = dims
        self._embeddings: dict[str, np.ndarray] = {}

    def set(self, block_id: str, embedding: Sequence[float] | np.ndarray) -> None:
        """Add or replace the embedding for a block."""
        vector = _as_vector(embedding)
        if self.dims is None:
            self.dims = vector.shape[0]
        elif vector.shape[0] != self.dims:
            raise DimensionMismatchError(
                f"Embedding for {block_id} has {vector.shape[0]} dims, index expects {self.dims}"
            )
        self._embeddings[block_id] = vector

    upsert = set

    def get(self, block_id: str) -> np.ndarray | None:
        return self._embeddings.get(block_id)

    def remove(self, block_id: str) -> None:
        self._embeddings.pop(block_id, None)

    def search(self, query: Sequence[float] | np.ndarray, k: int) -> list[VectorResult]:
        """Top-k stored vectors by cosine similarity to ``query``."""
        query_vector = _as_vector(query)
        results = [
            VectorResult(block_id=block_id, score=cosine_similarity(query_vector, embedding))
            for block_id, embedding in self._embeddings.items()
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        return results[: max(k, 0)]

    def clear(self) -> None:
        self._embeddings.clear()

    def __len__(self) -> int:
        return len(self._embeddings)

    def __contains__(self, block_id: object) -> bool:
        return block_id in self._embeddings
