# src/paper_rag/backend/pipelines/retrieval/fusion.py

"""
[职责] fusion：Reciprocal Rank Fusion（加权），融合 bm25/dense 排名列表，按 chunk.id 去重并稳定排序。
[边界] 仅依赖列表内 rank（不比较跨方法 raw score）；不截断；不落库。
[上游关系] keyword.bm25_search / vector.dense_search 输出有序列表；pipeline 传入权重。
[下游关系] rerank 消费融合结果；输出 source="hybrid"。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from paper_rag.backend.utils.constants import DEFAULT_RRF_K

from .types import RetrievalResult


@dataclass
class _FusedEntry:
    """Accumulator keyed by chunk id."""  # docstring: 内部使用的累加结构

    result: RetrievalResult
    score: float
    first_seen: int


def _rrf_score(rank: int, rrf_k: int) -> float:
    """
    [职责] RRF 分数（rank 从 0 开始）。
    [边界] 1 / (k + rank + 1)，rank=0 映射为 1/(k+1)。
    """
    return 1.0 / (float(rrf_k) + float(rank) + 1.0)


def _resolve_weight(weights: Optional[Sequence[float]], idx: int) -> float:
    """Missing or zero weight falls back to 1."""
    if not weights or idx >= len(weights):
        return 1.0
    w = float(weights[idx] or 0.0)
    return w if w else 1.0  # docstring: 0 视为未设置


def reciprocal_rank_fusion(
    ranked_lists: Sequence[Sequence[RetrievalResult]],
    weights: Optional[Sequence[float]] = None,
    k: int = DEFAULT_RRF_K,
) -> List[RetrievalResult]:
    """
    [职责] 加权 RRF：列表 i 中 rank r 的条目贡献 weights[i] / (k + r + 1)，按 chunk.id 累加。
    [边界] 输出全部出现过的 chunk，按累加分数降序；同分按首次出现顺序。
    [上游关系] fuse_ranked_lists 或调用方直接调用。
    [下游关系] rerank / citations。
    """
    fused: Dict[str, _FusedEntry] = {}
    seen = 0
    for list_idx, ranked in enumerate(ranked_lists):
        weight = _resolve_weight(weights, list_idx)
        for rank, result in enumerate(ranked):
            chunk_id = str(result.chunk.id)
            contribution = weight * _rrf_score(rank, k)
            entry = fused.get(chunk_id)
            if entry is None:
                fused[chunk_id] = _FusedEntry(result=result, score=contribution, first_seen=seen)
                seen += 1
            else:
                entry.score += contribution  # docstring: 多路命中累加

    ordered = sorted(fused.values(), key=lambda e: (-e.score, e.first_seen))  # docstring: 分数降序，首次出现兜底
    return [RetrievalResult(chunk=e.result.chunk, score=e.score, source="hybrid") for e in ordered]


def fuse_ranked_lists(
    ranked_lists: Sequence[Sequence[RetrievalResult]],
    weights: Optional[Sequence[float]] = None,
    k: int = DEFAULT_RRF_K,
) -> List[RetrievalResult]:
    """
    [职责] 融合入口：0 路返回空；1 路原样透传；>=2 路执行 RRF。
    [边界] 透传时保留原 source 与分数（不改写为 hybrid）。
    """
    if not ranked_lists:
        return []
    if len(ranked_lists) == 1:
        return list(ranked_lists[0])
    return reciprocal_rank_fusion(ranked_lists, weights, k)
