# src/paper_rag/backend/pipelines/retrieval/keyword.py

"""
[职责] keyword：Okapi BM25 稀疏检索（建索引、打分、学术章节加权），输出 source="bm25" 的 RetrievalResult。
[边界] 纯 CPU、内存内计算；不落库；不做查询改写；文档长度按原始字符数计算。
[上游关系] pipeline.hybrid_retrieve 传入 chunks 与 query。
[下游关系] fusion.reciprocal_rank_fusion 消费 bm25 结果列表。
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from paper_rag.backend.schemas.rag import TextChunk
from paper_rag.backend.utils.constants import BM25_B, BM25_K1, DEFAULT_TOP_K

from .tokenize import tokenize
from .types import RetrievalResult


SECTION_BOOSTS: Tuple[Tuple[str, float], ...] = (
    ("abstract", 1.5),
    ("introduction", 1.3),
    ("conclusion", 1.3),
    ("results", 1.2),
    ("discussion", 1.2),
    ("methods", 1.0),
    ("methodology", 1.0),
    ("materials and methods", 1.0),
    ("references", 0.5),
    ("acknowledgments", 0.3),
    ("acknowledgements", 0.3),
)  # docstring: 有序表，section 子串首个匹配生效


@dataclass(frozen=True)
class BM25Index:
    """
    [职责] BM25Index：chunk 集合的文档频率与长度统计。
    [边界] 构建后只读；doc_freq 按“每个 chunk 内去重后的词”计数。
    [上游关系] build_bm25_index 产出。
    [下游关系] bm25_search 读取。
    """

    documents: List[TextChunk]
    doc_freq: Dict[str, int]
    avg_doc_length: float
    total_docs: int
    term_freqs: List[Counter]  # docstring: 与 documents 同序的词频缓存


def build_bm25_index(chunks: Sequence[TextChunk]) -> BM25Index:
    """
    [职责] 统计 doc_freq 与平均文档长度（字符数）。
    [边界] 空语料返回 avg_doc_length=0、total_docs=0，检索时直接返回空列表。
    """
    documents = list(chunks)
    doc_freq: Dict[str, int] = {}
    term_freqs: List[Counter] = []
    total_length = 0

    for chunk in documents:
        counts = Counter(tokenize(chunk.text))
        term_freqs.append(counts)
        total_length += len(chunk.text)  # docstring: 原始字符长度
        for term in counts:
            doc_freq[term] = doc_freq.get(term, 0) + 1  # docstring: 集合语义计数

    total_docs = len(documents)
    avg_doc_length = (total_length / total_docs) if total_docs else 0.0

    return BM25Index(
        documents=documents,
        doc_freq=doc_freq,
        avg_doc_length=float(avg_doc_length),
        total_docs=total_docs,
        term_freqs=term_freqs,
    )


def _idf(index: BM25Index, df: int) -> float:
    return math.log((index.total_docs - df + 0.5) / (df + 0.5) + 1.0)  # docstring: 恒为正的 idf 变体


def _score_document(
    query_terms: Sequence[str],
    term_freq: Counter,
    doc_length: int,
    index: BM25Index,
) -> float:
    """
    [职责] 计算单个 chunk 的 BM25 分数。
    [边界] query 中重复出现的词逐次累加；tf=0 或 df=0 的词不贡献分数。
    """
    if index.avg_doc_length <= 0:
        return 0.0  # docstring: 全部文档为空文本

    length_ratio = doc_length / index.avg_doc_length
    score = 0.0
    for term in query_terms:
        tf = term_freq.get(term, 0)
        if tf == 0:
            continue
        df = index.doc_freq.get(term, 0)
        if df == 0:
            continue
        tf_norm = (tf * (BM25_K1 + 1)) / (tf + BM25_K1 * (1 - BM25_B + BM25_B * length_ratio))
        score += _idf(index, df) * tf_norm
    return score


def bm25_search(query: str, index: BM25Index, top_k: int = DEFAULT_TOP_K) -> List[RetrievalResult]:
    """
    [职责] BM25 检索：对全部 chunk 打分，排除 0 分，按分数降序截断 top_k。
    [边界] 排序稳定（同分保持语料顺序）；空语料或空 query 返回空列表。
    [上游关系] hybrid_retrieve 调用（在线程中执行）。
    [下游关系] apply_academic_boosts → fusion。
    """
    if int(top_k) <= 0 or index.total_docs == 0:
        return []

    query_terms = tokenize(query)
    if not query_terms:
        return []

    results: List[RetrievalResult] = []
    for chunk, term_freq in zip(index.documents, index.term_freqs):
        score = _score_document(query_terms, term_freq, len(chunk.text), index)
        if score > 0:
            results.append(RetrievalResult(chunk=chunk, score=score, source="bm25"))

    results.sort(key=lambda r: r.score, reverse=True)  # docstring: list.sort 稳定
    return results[: int(top_k)]


def section_boost(section: str | None) -> float:
    """Multiplier for a section heading (1.0 when nothing matches)."""
    lowered = str(section or "").lower()
    if not lowered:
        return 1.0
    for name, boost in SECTION_BOOSTS:
        if name in lowered:
            return boost
    return 1.0


def apply_academic_boosts(results: Sequence[RetrievalResult]) -> List[RetrievalResult]:
    """
    [职责] 按章节重要性缩放 BM25 分数（abstract 上调，references/致谢下调）。
    [边界] 保持输入顺序，不重新排序。
    """
    return [
        RetrievalResult(chunk=r.chunk, score=r.score * section_boost(r.chunk.section), source=r.source)
        for r in results
    ]
