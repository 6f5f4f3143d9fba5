"""Hybrid search combining FTS5 keyword matches and vector similarity."""

import logging
from collections.abc import Callable, Iterable

from cc_trace.embeddings import EmbeddingProvider
from cc_trace.lexical import BlockSearch, extract_text
from cc_trace.models import Block, SearchMode, SearchResult
from cc_trace.vector_index import VectorIndex, VectorResult

logger = logging.getLogger(__name__)

# Weights for combining search scores
KEYWORD_WEIGHT = 0.3
VECTOR_WEIGHT = 0.7
DEFAULT_LIMIT = 20
BATCH_SIZE = 32

ProgressCallback = Callable[[int, int], None]


def normalize_scores(scores: dict[str, float]) -> dict[str, float]:
    """Scale scores into [0, 1] by the list maximum.

    A non-positive maximum leaves the divisor at 1. Negative scores clamp to 0.
    """
    if not scores:
        return {}
    max_score = max(scores.values())
    divisor = max_score if max_score > 0 else 1.0
    return {k: min(1.0, max(0.0, v / divisor)) for k, v in scores.items()}


def merge_results(
    keyword_results: list[SearchResult],
    vector_results: list[VectorResult],
    limit: int,
) -> list[SearchResult]:
    """Fuse keyword and vector hits with fixed weights."""
    keyword_scores = normalize_scores({r.block_id: r.score for r in keyword_results})
    vector_scores = normalize_scores({r.block_id: r.score for r in vector_results})
    keyword_by_id = {r.block_id: r for r in keyword_results}

    # Keyword hits first, then vector-only hits, so ties keep a stable order
    all_ids = list(dict.fromkeys([r.block_id for r in keyword_results] + [r.block_id for r in vector_results]))

    combined: list[SearchResult] = []
    for block_id in all_ids:
        score = (
            keyword_scores.get(block_id, 0.0) * KEYWORD_WEIGHT
            + vector_scores.get(block_id, 0.0) * VECTOR_WEIGHT
        )
        keyword_hit = keyword_by_id.get(block_id)
        combined.append(
            SearchResult(
                block_id=block_id,
                score=score,
                matches=keyword_hit.matches if keyword_hit else None,
            )
        )

    combined.sort(key=lambda r: r.score, reverse=True)
    return combined[:limit]


class HybridSearchEngine:
    """Keyword and vector indexes over one block stream.

    Keyword indexing is immediate. Vector indexing needs the embedding
    provider to be ready; until a full ``index_all`` pass completes with it
    ready, smart searches fall back to keyword-only scoring.

    Index rebuilds must not overlap on the same instance.
    """

    def __init__(self, embedder: EmbeddingProvider):
        self.embedder = embedder
        self.keyword_index = BlockSearch()
        self.vector_index = VectorIndex(dims=embedder.dims)
        # Ids of blocks with searchable text; embedded ids are those in vector_index
        self._searchable_ids: set[str] = set()
        self._vector_ready = False

    async def index_all(
        self,
        blocks: Iterable[Block],
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Rebuild both indexes from a full block snapshot."""
        blocks = list(blocks)
        self.keyword_index.clear()
        self.keyword_index.index(blocks)

        self.vector_index.clear()
        self._vector_ready = False
        pending: dict[str, str] = {}
        for block in blocks:
            text = extract_text(block)
            if text.strip():
                pending[block.id] = text
        self._searchable_ids = set(pending)

        if not self.embedder.is_ready():
            logger.info("Embedding model not ready; indexed %d blocks for keyword search only", len(blocks))
            return

        items = list(pending.items())
        total = len(items)
        for start in range(0, total, BATCH_SIZE):
            batch = items[start : start + BATCH_SIZE]
            embeddings = await self.embedder.embed_batch([text for _, text in batch])
            for (block_id, _), embedding in zip(batch, embeddings, strict=True):
                self.vector_index.set(block_id, embedding)
            logger.debug("Embedded %d/%d blocks", len(self.vector_index), total)
            if on_progress is not None:
                on_progress(len(self.vector_index), total)

        self._vector_ready = True
        logger.info("Indexed %d blocks (%d embedded)", len(blocks), len(self.vector_index))

    async def index_one(self, block: Block) -> None:
        """Add or replace a single block in both indexes."""
        self.keyword_index.add_block(block)
        self.vector_index.remove(block.id)

        text = extract_text(block)
        if not text.strip():
            self._searchable_ids.discard(block.id)
            return
        self._searchable_ids.add(block.id)
        if self.embedder.is_ready():
            embedding = await self.embedder.embed(text)
            self.vector_index.set(block.id, embedding)

    async def search(
        self,
        query: str,
        mode: SearchMode = "smart",
        limit: int = DEFAULT_LIMIT,
    ) -> list[SearchResult]:
        """Search indexed blocks.

        ``keyword`` returns raw lexical scores; ``smart`` returns fused
        scores in [0, 1].
        """
        if not query.strip():
            return []

        if mode == "keyword":
            return self.keyword_index.search(query, limit=limit)
        if mode != "smart":
            raise ValueError(f"Unknown search mode: {mode}")

        keyword_results = self.keyword_index.search(query, limit=limit * 2)
        vector_results: list[VectorResult] = []
        if self._vector_ready and self.embedder.is_ready():
            query_embedding = await self.embedder.embed(query)
            vector_results = self.vector_index.search(query_embedding, limit * 2)
        else:
            logger.debug("Vector index not ready; smart search uses keyword scores only")

        return merge_results(keyword_results, vector_results, limit)

    def embedding_progress(self) -> int:
        """Share of searchable blocks embedded so far, 0-100."""
        if not self._searchable_ids:
            return 0
        return round(len(self.vector_index) / len(self._searchable_ids) * 100)

    def is_vector_ready(self) -> bool:
        return self._vector_ready
