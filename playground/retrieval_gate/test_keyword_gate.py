# playground/retrieval_gate/test_keyword_gate.py

"""
[职责] keyword gate：验证 tokenizer/stemmer、BM25 索引与检索、章节加权。
[边界] 纯 CPU 逻辑；不涉及 provider 与数据库。
[上游关系] backend/pipelines/retrieval/tokenize.py, keyword.py。
[下游关系] hybrid_retrieve 的 bm25 分支依赖这些行为。
"""

from __future__ import annotations

import math

import pytest

from paper_rag.backend.pipelines.retrieval.keyword import (
    apply_academic_boosts,
    bm25_search,
    build_bm25_index,
    section_boost,
)
from paper_rag.backend.pipelines.retrieval.tokenize import stem, tokenize
from paper_rag.backend.pipelines.retrieval.types import RetrievalResult


pytestmark = pytest.mark.retrieval_gate


def test_tokenize_lowercases_strips_punctuation_and_short_terms() -> None:
    """Punctuation becomes whitespace; terms shorter than 3 chars are dropped."""
    assert tokenize("Hello, World! An AI is here.") == ["hello", "world", "here"]


def test_tokenize_keeps_hyphenated_terms_and_duplicates() -> None:
    assert tokenize("state-of-the-art models, state-of-the-art results") == [
        "state-of-the-art",
        "model",
        "state-of-the-art",
        "result",
    ]


@pytest.mark.parametrize(
    "term,expected",
    [
        ("running", "runn"),  # docstring: ing
        ("classification", "classifica"),  # docstring: tion
        ("quickly", "quick"),  # docstring: ly
        ("tested", "test"),  # docstring: ed (len > 4)
        ("used", "used"),  # docstring: ed 但长度不足
        ("cats", "cat"),  # docstring: s (len > 3)
        ("bus", "bus"),  # docstring: s 但长度不足
        ("protein", "protein"),
    ],
)
def test_stem_first_matching_rule_only(term: str, expected: str) -> None:
    assert stem(term) == expected


def test_tokenize_filters_before_stemming() -> None:
    """'ing' survives the length filter and stems to the empty string."""
    assert tokenize("ing") == [""]


def test_build_index_counts_document_frequency_once_per_chunk(chunk_factory) -> None:
    chunks = [
        chunk_factory("c1", "protein protein folding"),
        chunk_factory("c2", "protein structure"),
    ]
    index = build_bm25_index(chunks)

    assert index.total_docs == 2
    assert index.doc_freq["protein"] == 2  # docstring: 同一 chunk 内重复只计一次
    assert index.doc_freq["fold"] == 1  # docstring: folding -> fold
    assert index.avg_doc_length == pytest.approx((len(chunks[0].text) + len(chunks[1].text)) / 2)


def test_bm25_exact_text_ranks_first(chunk_factory) -> None:
    chunks = [
        chunk_factory("c1", "Graph neural networks for molecule property prediction"),
        chunk_factory("c2", "Transformer attention improves protein folding accuracy"),
        chunk_factory("c3", "Coral reef ecosystems under ocean warming"),
    ]
    index = build_bm25_index(chunks)

    results = bm25_search(chunks[1].text, index)

    assert results[0].chunk.id == "c2"
    assert all(r.source == "bm25" for r in results)
    assert all(r.score > 0 for r in results)
    assert "c3" not in {r.chunk.id for r in results}  # docstring: 0 分条目被排除


def test_bm25_score_matches_formula(chunk_factory) -> None:
    """Single-term query on a two-doc corpus reproduces k1=1.5, b=0.75 scoring."""
    chunks = [chunk_factory("c1", "alpha beta"), chunk_factory("c2", "gamma delta epsilon")]
    index = build_bm25_index(chunks)

    results = bm25_search("alpha", index)

    avg = (len("alpha beta") + len("gamma delta epsilon")) / 2
    idf = math.log((2 - 1 + 0.5) / (1 + 0.5) + 1)
    tf_norm = (1 * 2.5) / (1 + 1.5 * (1 - 0.75 + 0.75 * len("alpha beta") / avg))
    assert len(results) == 1
    assert results[0].score == pytest.approx(idf * tf_norm)


def test_bm25_empty_inputs(chunk_factory) -> None:
    assert bm25_search("anything", build_bm25_index([])) == []
    index = build_bm25_index([chunk_factory("c1", "some text here")])
    assert bm25_search("a b", index) == []  # docstring: query 全部被过滤
    assert bm25_search("text", index, top_k=0) == []


def test_bm25_top_k_truncates(chunk_factory) -> None:
    chunks = [chunk_factory(f"c{i}", f"shared term number{i}") for i in range(5)]
    results = bm25_search("shared", build_bm25_index(chunks), top_k=3)
    assert [r.chunk.id for r in results] == ["c0", "c1", "c2"]  # docstring: 同分保持语料顺序


@pytest.mark.parametrize(
    "section,boost",
    [
        ("Abstract", 1.5),
        ("1. Introduction", 1.3),
        ("Conclusions", 1.3),
        ("Results and Discussion", 1.2),
        ("Materials and Methods", 1.0),
        ("References", 0.5),
        ("Acknowledgements", 0.3),
        ("Appendix", 1.0),
        (None, 1.0),
    ],
)
def test_section_boost(section, boost: float) -> None:
    assert section_boost(section) == pytest.approx(boost)


def test_apply_academic_boosts_preserves_order(chunk_factory) -> None:
    results = [
        RetrievalResult(chunk=chunk_factory("c1", "x", section="References"), score=2.0, source="bm25"),
        RetrievalResult(chunk=chunk_factory("c2", "y", section="Abstract"), score=1.0, source="bm25"),
    ]
    boosted = apply_academic_boosts(results)

    assert [r.chunk.id for r in boosted] == ["c1", "c2"]
    assert boosted[0].score == pytest.approx(1.0)
    assert boosted[1].score == pytest.approx(1.5)
