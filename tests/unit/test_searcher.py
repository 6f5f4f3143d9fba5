"""Tests for the hybrid search engine."""

import asyncio

import numpy as np
import pytest

from cc_trace.models import AgentBlock, SearchResult, SystemBlock, UserBlock
from cc_trace.searcher import HybridSearchEngine, merge_results, normalize_scores
from cc_trace.vector_index import VectorResult


def user(id, content, timestamp=0):
    return UserBlock(id=id, timestamp=timestamp, content=content)


def sample_blocks():
    return [
        user("u1", "How do I implement authentication?"),
        AgentBlock(id="a1", timestamp=1, content="Use JWT tokens for authentication."),
        user("u2", "Now let's style the login page"),
        AgentBlock(id="a2", timestamp=3, content="Added CSS for the login form."),
        SystemBlock(id="s1", timestamp=4, subtype="info"),
    ]


def indexed_engine(embedder, blocks=None):
    engine = HybridSearchEngine(embedder)
    asyncio.run(engine.index_all(blocks if blocks is not None else sample_blocks()))
    return engine


class TestNormalizeScores:
    def test_scales_by_max(self):
        assert normalize_scores({"a": 10.0, "b": 5.0}) == {"a": 1.0, "b": 0.5}

    def test_empty(self):
        assert normalize_scores({}) == {}

    def test_non_positive_max_uses_unit_divisor(self):
        assert normalize_scores({"a": 0.0, "b": -0.5}) == {"a": 0.0, "b": 0.0}

    def test_negative_scores_clamp_to_zero(self):
        assert normalize_scores({"a": 0.8, "b": -0.4}) == {"a": 1.0, "b": 0.0}


class TestMergeResults:
    def test_weighted_fusion(self):
        keyword = [SearchResult(block_id="a", score=10.0), SearchResult(block_id="b", score=5.0)]
        vector = [VectorResult(block_id="b", score=0.8), VectorResult(block_id="c", score=0.4)]

        merged = merge_results(keyword, vector, limit=10)

        assert [r.block_id for r in merged] == ["b", "c", "a"]
        assert merged[0].score == pytest.approx(0.85)
        assert merged[1].score == pytest.approx(0.35)
        assert merged[2].score == pytest.approx(0.3)

    def test_keyword_matches_carried_over(self):
        keyword = [SearchResult(block_id="a", score=2.0, matches=[])]
        merged = merge_results(keyword, [VectorResult(block_id="c", score=0.5)], limit=10)

        by_id = {r.block_id: r for r in merged}
        assert by_id["a"].matches == []
        assert by_id["c"].matches is None

    def test_limit(self):
        vector = [VectorResult(block_id=str(i), score=1.0 - i / 10) for i in range(5)]

        assert len(merge_results([], vector, limit=2)) == 2


class TestSearch:
    def test_empty_query(self, stub_embedder):
        engine = indexed_engine(stub_embedder)

        assert asyncio.run(engine.search("")) == []
        assert asyncio.run(engine.search("   ", mode="keyword")) == []

    def test_search_before_indexing(self, stub_embedder):
        engine = HybridSearchEngine(stub_embedder)

        assert asyncio.run(engine.search("authentication")) == []
        assert asyncio.run(engine.search("authentication", mode="keyword")) == []

    def test_unknown_mode(self, stub_embedder):
        engine = indexed_engine(stub_embedder)

        with pytest.raises(ValueError):
            asyncio.run(engine.search("login", mode="semantic"))

    def test_keyword_mode_returns_raw_scores(self, stub_embedder):
        engine = indexed_engine(stub_embedder)

        results = asyncio.run(engine.search("authentication", mode="keyword"))
        direct = engine.keyword_index.search("authentication")

        assert {r.block_id for r in results} == {"u1", "a1"}
        assert [r.score for r in results] == [r.score for r in direct]

    def test_smart_scores_are_fused(self, stub_embedder):
        engine = indexed_engine(stub_embedder)

        results = asyncio.run(engine.search("login page", mode="smart"))

        assert results
        assert results[0].block_id == "u2"
        assert all(0.0 <= r.score <= 1.0 for r in results)
        assert results == sorted(results, key=lambda r: r.score, reverse=True)

    def test_vector_only_hit(self, stub_embedder_factory):
        axis = np.eye(32, dtype=np.float32)
        embedder = stub_embedder_factory(
            overrides={
                "feline": axis[0],
                "The cat sat on the mat": axis[0],
                "Dogs bark loudly": axis[1],
            }
        )
        engine = indexed_engine(
            embedder, [user("u1", "The cat sat on the mat"), user("u2", "Dogs bark loudly")]
        )

        results = asyncio.run(engine.search("feline", mode="smart"))

        assert results[0].block_id == "u1"
        assert results[0].score == pytest.approx(0.7)
        assert results[0].matches is None

    def test_smart_search_without_ready_embedder(self, stub_embedder_factory):
        embedder = stub_embedder_factory(ready=False)
        engine = indexed_engine(embedder)

        results = asyncio.run(engine.search("authentication", mode="smart"))

        assert not engine.is_vector_ready()
        assert embedder.embedded_texts == []
        assert results[0].score == pytest.approx(0.3)
        assert {r.block_id for r in results} == {"u1", "a1"}

    def test_limit(self, stub_embedder):
        blocks = [user(f"u{i}", f"login attempt number {i}") for i in range(10)]
        engine = indexed_engine(stub_embedder, blocks)

        assert len(asyncio.run(engine.search("login", mode="smart", limit=3))) == 3
        assert len(asyncio.run(engine.search("login", mode="keyword", limit=3))) == 3


class TestIndexing:
    def test_batches_and_progress(self, stub_embedder):
        blocks = [user(f"u{i}", f"message {i}", timestamp=i) for i in range(70)]
        calls = []
        engine = HybridSearchEngine(stub_embedder)

        asyncio.run(engine.index_all(blocks, on_progress=lambda done, total: calls.append((done, total))))

        assert stub_embedder.batch_sizes == [32, 32, 6]
        assert calls == [(32, 70), (64, 70), (70, 70)]
        assert engine.embedding_progress() == 100
        assert engine.is_vector_ready()

    def test_blocks_without_text_are_not_embedded(self, stub_embedder):
        engine = indexed_engine(stub_embedder)

        assert len(engine.vector_index) == 4
        assert "s1" not in engine.vector_index
        assert len(engine.keyword_index) == 5

    def test_progress_before_indexing(self, stub_embedder):
        engine = HybridSearchEngine(stub_embedder)

        assert engine.embedding_progress() == 0
        assert not engine.is_vector_ready()

    def test_reindex_replaces_everything(self, stub_embedder):
        engine = indexed_engine(stub_embedder)
        asyncio.run(engine.index_all([user("n1", "fresh content")]))

        assert len(engine.vector_index) == 1
        assert len(engine.keyword_index) == 1
        assert asyncio.run(engine.search("authentication", mode="keyword")) == []

    def test_index_one(self, stub_embedder):
        engine = indexed_engine(stub_embedder)

        asyncio.run(engine.index_one(user("u3", "Deploy to production")))

        assert "u3" in engine.vector_index
        assert engine.embedding_progress() == 100
        results = asyncio.run(engine.search("deploy", mode="smart"))
        assert results[0].block_id == "u3"

    def test_index_one_replaces_existing(self, stub_embedder):
        engine = indexed_engine(stub_embedder)

        asyncio.run(engine.index_one(user("u1", "Completely different words")))

        assert len(engine.keyword_index) == 5
        assert asyncio.run(engine.search("implement", mode="keyword")) == []

    def test_index_one_without_ready_embedder(self, stub_embedder_factory):
        embedder = stub_embedder_factory(ready=False)
        engine = indexed_engine(embedder)

        asyncio.run(engine.index_one(user("u3", "Deploy to production")))

        assert "u3" not in engine.vector_index
        assert engine.embedding_progress() == 0
        assert [r.block_id for r in asyncio.run(engine.search("deploy", mode="keyword"))] == ["u3"]

    def test_index_one_after_embedder_becomes_ready(self, stub_embedder_factory):
        embedder = stub_embedder_factory(ready=False)
        engine = indexed_engine(embedder, [user("u1", "Deploy to production")])
        assert engine.embedding_progress() == 0

        embedder.ready = True
        asyncio.run(engine.index_one(user("u1", "Deploy to production")))

        assert engine.embedding_progress() == 100

    def test_repeated_index_one_counts_block_once(self, stub_embedder_factory):
        embedder = stub_embedder_factory(ready=False)
        engine = indexed_engine(embedder, [user("u1", "Deploy"), user("u2", "Rollback")])

        asyncio.run(engine.index_one(user("u1", "Deploy again")))
        asyncio.run(engine.index_one(user("u1", "Deploy once more")))
        embedder.ready = True
        asyncio.run(engine.index_one(user("u1", "Deploy for real")))

        assert engine.embedding_progress() == 50

    def test_index_one_with_empty_text_drops_block_from_progress(self, stub_embedder):
        engine = indexed_engine(stub_embedder, [user("u1", "Deploy"), user("u2", "Rollback")])

        asyncio.run(engine.index_one(user("u2", "   ")))

        assert "u2" not in engine.vector_index
        assert engine.embedding_progress() == 100
