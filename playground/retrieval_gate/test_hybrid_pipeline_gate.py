# playground/retrieval_gate/test_hybrid_pipeline_gate.py

"""
[职责] hybrid pipeline gate：验证 bm25 + dense 并发召回 -> RRF -> 精排 -> citations/context 的端到端行为与统计。
[边界] embedding/rerank 使用内存 stub；不访问外部 API。
[上游关系] backend/pipelines/retrieval/pipeline.py, citations.py。
[下游关系] retrieval_service.answer_context。
"""

from __future__ import annotations

from typing import List, Sequence

import pytest

from paper_rag.backend.pipelines.base.context import PipelineContext
from paper_rag.backend.pipelines.retrieval.citations import (
    build_citations,
    build_context,
    papers_to_chunks,
    truncate_quote,
)
from paper_rag.backend.pipelines.retrieval.embedding import EmbeddingBatch
from paper_rag.backend.pipelines.retrieval.fusion import fuse_ranked_lists
from paper_rag.backend.pipelines.retrieval.keyword import apply_academic_boosts, bm25_search, build_bm25_index
from paper_rag.backend.pipelines.retrieval.pipeline import hybrid_retrieve
from paper_rag.backend.pipelines.retrieval.rerank import simple_rerank
from paper_rag.backend.pipelines.retrieval.types import RetrievalResult
from paper_rag.backend.pipelines.retrieval.vector import dense_search
from paper_rag.backend.schemas.rag import PaperContent, RetrievalConfig
from paper_rag.backend.utils.errors import EmbeddingProviderError


pytestmark = pytest.mark.retrieval_gate

_AXES = (
    ("protein", "folding", "molecular", "structures"),  # docstring: biology 轴
    ("transformer", "attention", "neural"),  # docstring: ML 轴
    ("coral", "reef", "ocean"),  # docstring: 海洋轴
)

QUERY = "Transformer attention mechanisms improve protein folding prediction."


class _TopicEmbedder:
    """Keyword-count embedder: one axis per topic; counts calls."""  # docstring: deterministic vectors

    batch_size = 100

    def __init__(self) -> None:
        self.calls: List[List[str]] = []

    async def embed(self, texts: Sequence[str]) -> EmbeddingBatch:
        self.calls.append(list(texts))
        vectors = [[float(sum(1 for kw in axis if kw in t.lower())) for axis in _AXES] for t in texts]
        return EmbeddingBatch(vectors=vectors, tokens=len(texts))


class _FailingEmbedder:
    batch_size = 100

    async def embed(self, texts: Sequence[str]) -> EmbeddingBatch:
        raise EmbeddingProviderError(message="embedding API returned 503", status_code=503, retryable=True)


class _NoCredentialReranker:
    configured = False

    async def rerank(self, query, documents, top_n):  # pragma: no cover - never called
        raise AssertionError("reranker must not be called without credentials")


def _three_chunks(chunk_factory):
    return [
        chunk_factory("exact", QUERY, paper_id="p1", section="Abstract", page_number=1),
        chunk_factory(
            "related",
            "Neural networks estimate three-dimensional molecular structures.",
            paper_id="p2",
            section="Results",
        ),
        chunk_factory("unrelated", "Coral reef ecosystems suffer from ocean warming.", paper_id="p3"),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("bm25_weight,dense_weight", [(0.4, 0.6), (0.05, 0.95), (0.95, 0.05)])
async def test_exact_match_first_unrelated_dropped(chunk_factory, bm25_weight: float, dense_weight: float) -> None:
    """Exact-text chunk is top-1 for any weights; unrelated chunk misses the top-2."""
    chunks = _three_chunks(chunk_factory)
    config = RetrievalConfig(
        use_bm25=True,
        use_dense_retrieval=True,
        use_reranking=True,
        bm25_weight=bm25_weight,
        dense_weight=dense_weight,
        rerank_top_k=2,
    )

    result = await hybrid_retrieve(
        QUERY,
        chunks,
        config,
        embedding_client=_TopicEmbedder(),
        rerank_client=_NoCredentialReranker(),
    )

    ids = [r.chunk.id for r in result.results]
    assert ids[0] == "exact"
    assert "unrelated" not in ids
    assert len(result.results) == 2
    assert [c.paper_id for c in result.citations] == [r.chunk.paper_id for r in result.results]
    assert result.stats.rerank_strategy == "simple"


@pytest.mark.asyncio
async def test_no_rerank_credential_orders_by_simple_rerank(chunk_factory) -> None:
    """Without a rerank key the final list is simple_rerank over fused[:top_k], scored by relevance."""
    chunks = _three_chunks(chunk_factory)
    embedder = _TopicEmbedder()
    config = RetrievalConfig(top_k=20, rerank_top_k=2)

    result = await hybrid_retrieve(
        QUERY, chunks, config, embedding_client=embedder, rerank_client=_NoCredentialReranker()
    )

    bm25 = apply_academic_boosts(bm25_search(QUERY, build_bm25_index(chunks), config.top_k))
    dense, _ = await dense_search(QUERY, chunks, config.top_k, client=embedder)  # docstring: chunk 向量已写回
    fused = fuse_ranked_lists([bm25, dense], [config.bm25_weight, config.dense_weight])
    expected = simple_rerank(QUERY, [r.chunk for r in fused[: config.top_k]], config.rerank_top_k)

    assert result.stats.rerank_strategy == "simple"
    assert [r.chunk.id for r in result.results] == [r.chunk.id for r in expected]
    assert [r.score for r in result.results] == pytest.approx([r.relevance_score for r in expected])
    assert result.stats.fused_count == len(fused)


@pytest.mark.asyncio
async def test_stats_counts_tokens_and_timing(chunk_factory) -> None:
    chunks = _three_chunks(chunk_factory)
    embedder = _TopicEmbedder()
    ctx = PipelineContext.from_trace(user_id="u-1")

    result = await hybrid_retrieve(
        QUERY,
        chunks,
        {"rerank_top_k": 2},
        embedding_client=embedder,
        rerank_client=_NoCredentialReranker(),
        ctx=ctx,
    )

    stats = result.stats
    assert stats.bm25_count == 1  # docstring: 仅 exact 与 query 有词面重叠
    assert stats.dense_count == 3
    assert stats.fused_count == 3
    assert stats.reranked_count == 2
    assert stats.embedding_tokens == 4  # docstring: 3 个 chunk + 1 个 query
    for stage in ("bm25", "embed", "dense", "fusion", "rerank", "citations", "total"):
        assert stage in stats.timing_ms
    assert len(embedder.calls) == 2


@pytest.mark.asyncio
async def test_chunk_embeddings_reused_across_calls(chunk_factory) -> None:
    chunks = _three_chunks(chunk_factory)
    embedder = _TopicEmbedder()

    await hybrid_retrieve(QUERY, chunks, embedding_client=embedder, rerank_client=_NoCredentialReranker())
    await hybrid_retrieve(QUERY, chunks, embedding_client=embedder, rerank_client=_NoCredentialReranker())

    assert [len(c) for c in embedder.calls] == [3, 1, 1]  # docstring: 第二次只嵌入 query


@pytest.mark.asyncio
async def test_bm25_only_passthrough_without_rerank(chunk_factory) -> None:
    chunks = _three_chunks(chunk_factory)

    result = await hybrid_retrieve(
        QUERY,
        chunks,
        {"use_dense_retrieval": False, "use_reranking": False},
    )

    assert [r.chunk.id for r in result.results] == ["exact"]
    assert result.results[0].source == "bm25"
    assert result.stats.rerank_strategy == "none"
    assert result.stats.embedding_tokens == 0


@pytest.mark.asyncio
async def test_embedding_failure_propagates(chunk_factory) -> None:
    with pytest.raises(EmbeddingProviderError):
        await hybrid_retrieve(
            QUERY,
            _three_chunks(chunk_factory),
            embedding_client=_FailingEmbedder(),
            rerank_client=_NoCredentialReranker(),
        )


def test_truncate_quote_prefers_sentence_end() -> None:
    text = ("A" * 199) + ". " + ("b" * 200)
    assert truncate_quote(text) == ("A" * 199) + "."
    assert truncate_quote("short.") == "short."


def test_truncate_quote_hard_cut_when_sentence_end_too_early() -> None:
    text = "Early. " + ("x" * 400)
    quote = truncate_quote(text)
    assert quote.endswith("...")
    assert len(quote) == 303


def test_build_context_format(chunk_factory) -> None:
    results = [
        RetrievalResult(
            chunk=chunk_factory("c1", "First text", section="Intro", page_number=3, paper_title="Paper One"),
            score=0.9,
            source="hybrid",
        ),
        RetrievalResult(chunk=chunk_factory("c2", "Second text", paper_title="Paper Two"), score=0.5, source="hybrid"),
    ]

    context = build_context(results)

    assert context == (
        '[1] From "Paper One" (Intro), p.3:\nFirst text\n'
        "\n---\n\n"
        '[2] From "Paper Two":\nSecond text\n'
    )
    citations = build_citations(results)
    assert [c.relevance_score for c in citations] == [0.9, 0.5]
    assert citations[0].quote == "First text"


def test_papers_to_chunks_running_index() -> None:
    papers = [
        PaperContent.model_validate(
            {
                "paper": {"id": "p1", "title": "One", "authors": ["Ada", "Bob"], "year": 2020},
                "content": {"paragraphs": [{"text": "a", "section": "Abstract"}, {"text": "b", "page_number": 2}]},
            }
        ),
        PaperContent.model_validate(
            {"paper": {"id": "p2", "title": "Two"}, "content": {"paragraphs": [{"text": "c"}]}}
        ),
    ]

    chunks = papers_to_chunks(papers)

    assert [c.id for c in chunks] == ["p1-0", "p1-1", "p2-2"]
    assert [c.chunk_index for c in chunks] == [0, 1, 2]
    assert chunks[0].authors == "Ada, Bob"
    assert chunks[2].authors is None
    assert chunks[1].page_number == 2
