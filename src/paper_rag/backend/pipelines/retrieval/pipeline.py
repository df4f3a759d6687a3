# src/paper_rag/backend/pipelines/retrieval/pipeline.py

"""
[职责] retrieval pipeline：编排 bm25/dense/fusion/rerank/citations 全链路混合检索，产出 HybridRetrievalResult。
[边界] 不读写缓存；不选择生成模型；不调用 LLM；embedding 失败与维度不一致向上传播，rerank 失败内部降级。
[上游关系] services/retrieval_service 或调用方直接调用；输入 query、chunks 与 RetrievalConfig。
[下游关系] build_context / select_model / 缓存写入消费 results 与 citations。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

from paper_rag.backend.pipelines.base.context import PipelineContext
from paper_rag.backend.schemas.rag import RerankStrategy, RetrievalConfig, RetrievalStats, TextChunk
from paper_rag.backend.utils.constants import PROVIDER_SNAPSHOT_KEY, TIMING_MS_KEY
from paper_rag.backend.utils.logging_ import get_logger, hash_text, log_event

from . import embedding as embedding_mod
from . import fusion as fusion_mod
from . import keyword as keyword_mod
from . import rerank as rerank_mod
from . import vector as vector_mod
from .citations import build_citations
from .types import HybridRetrievalResult, RetrievalResult


logger = get_logger("pipelines.retrieval")

ConfigLike = Union[RetrievalConfig, Mapping[str, Any], None]


def _normalize_config(config: ConfigLike) -> RetrievalConfig:
    """
    [职责] 归一化检索配置（部分字段覆盖默认值）。
    [边界] 仅处理缺省与类型；非法字段由 pydantic 校验报错。
    """
    if isinstance(config, RetrievalConfig):
        return config
    cfg = {k: v for k, v in dict(config or {}).items() if v is not None}  # docstring: None 视为未设置
    return RetrievalConfig.model_validate(cfg)


def _run_bm25(query: str, chunks: Sequence[TextChunk], cfg: RetrievalConfig, ctx: PipelineContext) -> List[RetrievalResult]:
    """BM25 stage (CPU bound, executed in a worker thread)."""
    with ctx.timing.stage("bm25"):
        index = keyword_mod.build_bm25_index(chunks)
        results = keyword_mod.bm25_search(query, index, cfg.top_k)
        return keyword_mod.apply_academic_boosts(results)


async def _run_dense(
    query: str,
    chunks: Sequence[TextChunk],
    cfg: RetrievalConfig,
    ctx: PipelineContext,
    client: embedding_mod.EmbeddingClient,
) -> Tuple[List[RetrievalResult], int]:
    """
    [职责] dense 阶段：补齐 chunk 向量后执行 dense_search。
    [边界] 返回 (results, chunk_tokens + query_tokens)。
    """
    with ctx.timing.stage("embed"):
        embedded, chunk_tokens = await embedding_mod.embed_chunks(chunks, client=client)
    with ctx.timing.stage("dense"):
        results, query_tokens = await vector_mod.dense_search(query, embedded, cfg.top_k, client=client)
    return results, int(chunk_tokens) + int(query_tokens)


def _client_snapshot(client: Any) -> Optional[dict]:
    fn = getattr(client, "snapshot", None)
    return fn() if callable(fn) else None


async def hybrid_retrieve(
    query: str,
    chunks: Sequence[TextChunk],
    config: ConfigLike = None,
    *,
    embedding_client: Optional[embedding_mod.EmbeddingClient] = None,
    rerank_client: Optional[rerank_mod.RerankClient] = None,
    ctx: Optional[PipelineContext] = None,
) -> HybridRetrievalResult:
    """
    [职责] 混合检索主入口：bm25 与 dense 并发召回 -> RRF 融合 -> 精排 -> citations + stats。
    [边界] 未传入 client 时按 Settings 构造默认 OpenAI/Cohere 客户端；rerank 永不失败。
    [上游关系] retrieval_service.answer_context / API router / 调用方。
    [下游关系] HybridRetrievalResult（results/citations/stats）。
    """
    cfg = _normalize_config(config)
    ctx = ctx or PipelineContext()
    items = list(chunks)

    log_event(
        logger,
        logging.INFO,
        "retrieval.start",
        context=ctx,
        fields={
            "query_hash": hash_text(query),
            "chunks": len(items),
            "use_bm25": cfg.use_bm25,
            "use_dense": cfg.use_dense_retrieval,
            "use_reranking": cfg.use_reranking,
        },
    )

    ranked_lists: List[List[RetrievalResult]] = []
    weights: List[float] = []
    bm25_results: List[RetrievalResult] = []
    dense_results: List[RetrievalResult] = []
    embedding_tokens = 0

    # --- 1/2. bm25 + dense（并发） ---
    jobs: List[Any] = []
    if cfg.use_bm25:
        jobs.append(asyncio.to_thread(_run_bm25, query, items, cfg, ctx))
    if cfg.use_dense_retrieval:
        client = embedding_client or embedding_mod.OpenAIEmbeddingClient()
        snap = _client_snapshot(client)
        if snap:
            ctx.with_provider("embedder", snap)
        jobs.append(_run_dense(query, items, cfg, ctx, client))

    outputs = await asyncio.gather(*jobs)  # docstring: 按提交顺序返回，与完成顺序无关
    pos = 0
    if cfg.use_bm25:
        bm25_results = outputs[pos]
        pos += 1
        ranked_lists.append(bm25_results)
        weights.append(cfg.bm25_weight)
    if cfg.use_dense_retrieval:
        dense_results, embedding_tokens = outputs[pos]
        ranked_lists.append(dense_results)
        weights.append(cfg.dense_weight)

    # --- 3. fusion ---
    with ctx.timing.stage("fusion"):
        fused = fusion_mod.fuse_ranked_lists(ranked_lists, weights)

    # --- 4. rerank ---
    strategy: RerankStrategy = "none"
    with ctx.timing.stage("rerank"):
        if cfg.use_reranking and fused:
            rr_client = rerank_client if rerank_client is not None else rerank_mod.CohereRerankClient()
            snap = _client_snapshot(rr_client)
            if snap:
                ctx.with_provider("reranker", snap)
            reranked, strategy = await rerank_mod.run_rerank(
                query,
                [r.chunk for r in fused[: cfg.top_k]],
                cfg.rerank_top_k,
                client=rr_client,
                context=ctx,
            )
            final = [RetrievalResult(chunk=r.chunk, score=r.relevance_score, source="hybrid") for r in reranked]
        else:
            final = list(fused[: cfg.rerank_top_k])

    # --- 5. citations ---
    with ctx.timing.stage("citations"):
        citations = build_citations(final)

    stats = RetrievalStats(
        bm25_count=len(bm25_results),
        dense_count=len(dense_results),
        fused_count=len(fused),
        reranked_count=len(final),
        embedding_tokens=embedding_tokens,
        rerank_strategy=strategy,
        timing_ms=ctx.timing_ms(),
        provider_snapshot=dict(ctx.provider_snapshot),
    )

    log_event(
        logger,
        logging.INFO,
        "retrieval.done",
        context=ctx,
        fields={
            **stats.model_dump(exclude={TIMING_MS_KEY, PROVIDER_SNAPSHOT_KEY}),
            TIMING_MS_KEY: stats.timing_ms,
        },
    )
    return HybridRetrievalResult(results=final, citations=citations, stats=stats)
