"""Embeddings generation using sentence-transformers."""

import asyncio
import logging
from functools import lru_cache
from typing import TYPE_CHECKING, Protocol

import numpy as np

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)

MODEL_NAME = "all-MiniLM-L6-v2"
EMBEDDING_DIM = 384


class EmbeddingNotReadyError(RuntimeError):
    """An embedding was requested before the model finished loading."""


class EmbeddingProvider(Protocol):
    """Text -> fixed-length vector capability used by the search engine."""

    dims: int

    def is_ready(self) -> bool: ...

    async def embed(self, text: str) -> np.ndarray: ...

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]: ...


@lru_cache(maxsize=1)
def get_model(model_name: str = MODEL_NAME) -> "SentenceTransformer":
    """Get the sentence transformer model (cached)."""
    # Lazy import to avoid loading torch for commands that never embed
    from sentence_transformers import SentenceTransformer

    return SentenceTransformer(model_name)


class SentenceTransformerEmbedder:
    """EmbeddingProvider backed by a local sentence-transformers model.

    Call ``init()`` once before embedding; encoding runs in a worker thread so
    the event loop stays responsive.
    """

    def __init__(self, model_name: str = MODEL_NAME, dims: int = EMBEDDING_DIM):
        self.model_name = model_name
        self.dims = dims
        self._model: "SentenceTransformer | None" = None

    async def init(self) -> None:
        """Load the model."""
        logger.info("Loading embedding model %s", self.model_name)
        self._model = await asyncio.to_thread(get_model, self.model_name)

    def is_ready(self) -> bool:
        return self._model is not None

    def _require_model(self) -> "SentenceTransformer":
        if self._model is None:
            raise EmbeddingNotReadyError("Embedding model not loaded. Call init() first.")
        return self._model

    async def embed(self, text: str) -> np.ndarray:
        """Encode a single text string to a normalized embedding."""
        model = self._require_model()
        embedding = await asyncio.to_thread(
            model.encode, text, convert_to_numpy=True, normalize_embeddings=True
        )
        return np.asarray(embedding, dtype=np.float32)

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Encode multiple texts to embeddings efficiently."""
        if not texts:
            return []
        model = self._require_model()
        embeddings = await asyncio.to_thread(
            model.encode, texts, convert_to_numpy=True, normalize_embeddings=True
        )
        return [np.asarray(e, dtype=np.float32) for e in embeddings]
