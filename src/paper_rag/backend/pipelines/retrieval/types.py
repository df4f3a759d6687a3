# src/paper_rag/backend/pipelines/retrieval/types.py
"""
[职责] Retrieval types：提供 retrieval 各阶段共享的最小公共类型（无 DB/外部依赖）。
[边界] 仅定义数据结构与类型；不包含任何检索逻辑。
[上游关系] keyword/vector/fusion/rerank/pipeline 等模块 import 使用。
[下游关系] 统一 RetrievalResult / source 语义，确保 citations 与 stats 结构一致。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal

from paper_rag.backend.schemas.rag import Citation, RetrievalStats, TextChunk


ResultSource = Literal["bm25", "dense", "hybrid"]  # docstring: 结果来源枚举


@dataclass(frozen=True)
class RetrievalResult:
    """
    [职责] RetrievalResult：检索阶段统一结果结构（bm25/dense/fusion 共享）。
    [边界] score 在融合前为各方法局部分数，不可跨方法比较。
    [上游关系] bm25_search / dense_search / reciprocal_rank_fusion 产出。
    [下游关系] rerank 与 citations 消费。
    """

    chunk: TextChunk
    score: float
    source: ResultSource


@dataclass(frozen=True)
class RerankResult:
    """RetrievalResult plus a relevance score in [0, 1]."""

    chunk: TextChunk
    score: float
    relevance_score: float


@dataclass(frozen=True)
class HybridRetrievalResult:
    """
    [职责] hybrid_retrieve 的输出：最终结果、引用与统计。
    [边界] results 与 citations 一一对应、同序。
    """

    results: List[RetrievalResult] = field(default_factory=list)
    citations: List[Citation] = field(default_factory=list)
    stats: RetrievalStats = field(default_factory=RetrievalStats)
