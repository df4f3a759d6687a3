# src/paper_rag/backend/pipelines/retrieval/vector.py

"""
[职责] vector：dense 语义检索（query 向量 vs chunk 向量的余弦相似度），输出 source="dense" 的 RetrievalResult。
[边界] 不负责 chunk 向量计算（由 embedding.embed_chunks 完成）；无 embedding 的 chunk 跳过。
[上游关系] pipeline.hybrid_retrieve 在 embed_chunks 之后调用。
[下游关系] fusion.reciprocal_rank_fusion 消费 dense 结果列表。
"""

from __future__ import annotations

import asyncio
from typing import List, Sequence, Tuple

import numpy as np

from paper_rag.backend.schemas.rag import TextChunk
from paper_rag.backend.utils.constants import DEFAULT_TOP_K

from .embedding import EmbeddingClient, cosine_scores, get_embedding
from .types import RetrievalResult


def _rank_by_cosine(query_vector: Sequence[float], chunks: Sequence[TextChunk], top_k: int) -> List[RetrievalResult]:
    """CPU-bound scoring pass; runs in a worker thread."""
    embedded = [c for c in chunks if c.embedding is not None]  # docstring: 未嵌入的 chunk 不参与 dense 检索
    scores = cosine_scores(query_vector, [c.embedding for c in embedded])
    order = np.argsort(-scores, kind="stable")[:top_k]  # docstring: 同分保持原 chunk 顺序
    # docstring: 排序用原始余弦值，输出分数截到 >= 0
    return [
        RetrievalResult(chunk=embedded[i], score=max(0.0, float(scores[i])), source="dense")
        for i in order
    ]


async def dense_search(
    query: str,
    chunks: Sequence[TextChunk],
    top_k: int = DEFAULT_TOP_K,
    *,
    client: EmbeddingClient,
) -> Tuple[List[RetrievalResult], int]:
    """
    [职责] 计算 query 向量并对所有已有 embedding 的 chunk 打分，按相似度降序截断。
    [边界] 返回 (results, tokens_used)；tokens_used 仅包含 query embedding；维度不一致直接抛错。
    """
    query_vector, tokens = await get_embedding(query, client=client)
    if int(top_k) <= 0:
        return [], tokens
    results = await asyncio.to_thread(_rank_by_cosine, query_vector, list(chunks), int(top_k))
    return results, tokens
