# src/paper_rag/backend/services/retrieval_service.py

"""
[职责] retrieval_service：缓存感知的检索入口（cache lookup -> hybrid_retrieve -> build_context -> select_model）。
[边界] 不调用生成模型；答案由调用方生成后通过 store_answer 回写缓存。
[上游关系] API /retrieval/search 与 /retrieval/cache 路由。
[下游关系] RetrievalServiceResult 供 HTTP 层序列化；生成阶段按 model_selection 选择模型。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence

from paper_rag.backend.pipelines.base.context import PipelineContext
from paper_rag.backend.pipelines.retrieval.citations import build_context
from paper_rag.backend.pipelines.retrieval.embedding import EmbeddingClient
from paper_rag.backend.pipelines.retrieval.pipeline import hybrid_retrieve
from paper_rag.backend.pipelines.retrieval.rerank import RerankClient
from paper_rag.backend.pipelines.retrieval.types import RetrievalResult
from paper_rag.backend.pipelines.routing.model_router import ModelSelection, select_model
from paper_rag.backend.schemas.rag import Citation, RetrievalConfig, RetrievalStats, TextChunk
from paper_rag.backend.utils.logging_ import get_logger, log_event

from .cache_service import ResponseCache

__all__ = [
    "RetrievalServiceResult",
    "answer_context",
    "store_answer",
]

logger = get_logger("services.retrieval")


@dataclass(frozen=True)
class RetrievalServiceResult:
    """
    [职责] RetrievalServiceResult：一次检索请求的输出汇总。
    [边界] cached=True 时 response 为缓存答案，results/stats 为空，model_selection 为 None。
    [上游关系] answer_context 返回。
    [下游关系] API router 序列化；调用方据 cached 决定是否生成。
    """

    cached: bool
    context: str = ""
    response: Optional[str] = None
    citations: List[Citation] = field(default_factory=list)
    results: List[RetrievalResult] = field(default_factory=list)
    stats: Optional[RetrievalStats] = None
    model_selection: Optional[ModelSelection] = None


def _paper_scope(chunks: Sequence[TextChunk], paper_ids: Optional[Sequence[str]]) -> List[str]:
    if paper_ids:
        return [str(p) for p in paper_ids]
    return sorted({c.paper_id for c in chunks})  # docstring: 未显式给出时以 chunks 覆盖的论文为范围


async def answer_context(
    *,
    user_id: str,
    query: str,
    chunks: Sequence[TextChunk],
    cache: Optional[ResponseCache] = None,
    paper_ids: Optional[Sequence[str]] = None,
    config: RetrievalConfig | Mapping[str, Any] | None = None,
    preferred_tier: Optional[str] = None,
    embedding_client: Optional[EmbeddingClient] = None,
    rerank_client: Optional[RerankClient] = None,
    ctx: Optional[PipelineContext] = None,
) -> RetrievalServiceResult:
    """
    [职责] 缓存命中直接返回；未命中执行混合检索并构造上下文与模型选择。
    [边界] 缓存故障由 ResponseCache 内部降级；embedding 故障向上传播。
    """
    ctx = ctx or PipelineContext.from_trace(user_id=user_id)
    scope = _paper_scope(chunks, paper_ids)

    if cache is not None:
        hit = await cache.get_cached_response(user_id, query, scope)
        if hit is not None:
            log_event(logger, logging.INFO, "retrieval.cache_hit", context=ctx, fields={"papers": len(scope)})
            return RetrievalServiceResult(cached=True, response=hit.response, citations=list(hit.citations))

    retrieved = await hybrid_retrieve(
        query,
        chunks,
        config,
        embedding_client=embedding_client,
        rerank_client=rerank_client,
        ctx=ctx,
    )
    context = build_context(retrieved.results)
    selection = select_model(query, len(context), preferred_tier)
    log_event(
        logger,
        logging.INFO,
        "retrieval.context_ready",
        context=ctx,
        fields={"context_chars": len(context), "model": selection.model.id},
    )
    return RetrievalServiceResult(
        cached=False,
        context=context,
        citations=list(retrieved.citations),
        results=list(retrieved.results),
        stats=retrieved.stats,
        model_selection=selection,
    )


async def store_answer(
    *,
    cache: ResponseCache,
    user_id: str,
    query: str,
    paper_ids: Sequence[str],
    response: str,
    citations: Sequence[Citation],
) -> None:
    """Write a generated answer back into the response cache (never raises)."""
    await cache.set_cached_response(user_id, query, paper_ids, response, citations)
