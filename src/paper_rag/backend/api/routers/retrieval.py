# src/paper_rag/backend/api/routers/retrieval.py

"""
[职责] Retrieval Router：暴露缓存感知检索、模型选择与缓存管理接口（/retrieval）。
[边界] 不直接编排 pipeline 细节；仅进行 HTTP 输入/输出映射与异常转换。
[上游关系] 前端/外部调用方。
[下游关系] retrieval_service / ResponseCache / model_router。
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from paper_rag.backend.api.deps import (
    get_embedding_client,
    get_rerank_client,
    get_response_cache,
    get_trace_context,
)
from paper_rag.backend.api.errors import to_json_response
from paper_rag.backend.api.schemas_http._common import RequestId, TraceId
from paper_rag.backend.api.schemas_http.retrieval import (
    CacheInvalidateResponse,
    CacheStatsResponse,
    CacheWriteRequest,
    CacheWriteResponse,
    ModelRequest,
    ModelSelectionView,
    RetrievalResultView,
    SearchRequest,
    SearchResponse,
)
from paper_rag.backend.pipelines.base.context import PipelineContext
from paper_rag.backend.pipelines.retrieval.citations import papers_to_chunks
from paper_rag.backend.pipelines.retrieval.embedding import EmbeddingClient
from paper_rag.backend.pipelines.retrieval.rerank import RerankClient
from paper_rag.backend.pipelines.routing.model_router import ModelSelection, select_model
from paper_rag.backend.schemas.audit import TraceContext
from paper_rag.backend.schemas.rag import TextChunk
from paper_rag.backend.services.cache_service import ResponseCache, generate_cache_key
from paper_rag.backend.services.retrieval_service import answer_context, store_answer
from paper_rag.backend.utils.errors import BadRequestError


router = APIRouter(prefix="/retrieval", tags=["retrieval"])  # docstring: retrieval 路由前缀


def _require_user_id(trace_context: TraceContext) -> str:
    user_id = str(trace_context.user_id or "").strip()
    if not user_id:
        raise BadRequestError(message="x-user-id header is required", detail={"header": "x-user-id"})
    return user_id


def _selection_view(selection: ModelSelection) -> ModelSelectionView:
    return ModelSelectionView(
        model=selection.model.id,
        provider=selection.model.provider,
        tier=selection.model.tier,
        reason=selection.reason,
        estimated_cost=selection.estimated_cost,
        input_tokens=selection.input_tokens,
        output_tokens=selection.output_tokens,
    )


@router.post("/search", response_model=SearchResponse)
async def search_endpoint(
    request: SearchRequest,
    trace_context: TraceContext = Depends(get_trace_context),
    cache: ResponseCache = Depends(get_response_cache),
    embedding_client: EmbeddingClient = Depends(get_embedding_client),
    rerank_client: RerankClient = Depends(get_rerank_client),
) -> SearchResponse:
    """
    [职责] 缓存命中直接返回答案；否则执行混合检索并返回 context/citations/模型选择。
    [边界] 缓存需要 x-user-id；use_cache=false 或无 user_id 时跳过缓存。
    """
    trace_id = str(trace_context.trace_id)
    request_id = str(trace_context.request_id)
    try:
        user_id = str(trace_context.user_id or "").strip()
        chunks: List[TextChunk] = list(request.chunks) + papers_to_chunks(request.papers)
        ctx = PipelineContext.from_trace(trace_id=trace_id, request_id=request_id, user_id=user_id or None)
        result = await answer_context(
            user_id=user_id,
            query=request.query,
            chunks=chunks,
            cache=cache if (request.use_cache and user_id) else None,
            paper_ids=request.paper_ids,
            config=request.config,
            preferred_tier=request.preferred_tier,
            embedding_client=embedding_client,
            rerank_client=rerank_client,
            ctx=ctx,
        )
    except Exception as exc:
        return to_json_response(exc, trace_id=trace_id, request_id=request_id)  # type: ignore[return-value]

    results = [
        RetrievalResultView(
            chunk_id=r.chunk.id,
            paper_id=r.chunk.paper_id,
            paper_title=r.chunk.paper_title,
            section=r.chunk.section,
            page_number=r.chunk.page_number,
            score=r.score,
            source=r.source,
        )
        for r in result.results
    ]
    return SearchResponse(
        cached=result.cached,
        response=result.response,
        context=result.context,
        citations=list(result.citations),
        results=results,
        stats=result.stats,
        model=_selection_view(result.model_selection) if result.model_selection is not None else None,
        trace_id=TraceId(trace_id),
        request_id=RequestId(request_id),
    )


@router.post("/model", response_model=ModelSelectionView)
async def model_endpoint(request: ModelRequest) -> ModelSelectionView:
    """Pick a generation model for a query and context size."""
    selection = select_model(request.query, request.context_length, request.preferred_tier)
    return _selection_view(selection)


@router.post("/cache", response_model=CacheWriteResponse)
async def store_answer_endpoint(
    request: CacheWriteRequest,
    trace_context: TraceContext = Depends(get_trace_context),
    cache: ResponseCache = Depends(get_response_cache),
) -> CacheWriteResponse:
    """Cache a generated answer; store failures are logged and still answer 200."""
    try:
        user_id = _require_user_id(trace_context)
        await store_answer(
            cache=cache,
            user_id=user_id,
            query=request.query,
            paper_ids=request.paper_ids,
            response=request.response,
            citations=request.citations,
        )
    except Exception as exc:
        return to_json_response(  # type: ignore[return-value]
            exc,
            trace_id=str(trace_context.trace_id),
            request_id=str(trace_context.request_id),
        )
    return CacheWriteResponse(stored=True, cache_key=generate_cache_key(request.query, request.paper_ids))


@router.delete("/cache", response_model=CacheInvalidateResponse)
async def invalidate_cache_endpoint(
    paper_id: Optional[List[str]] = Query(default=None),
    trace_context: TraceContext = Depends(get_trace_context),
    cache: ResponseCache = Depends(get_response_cache),
) -> CacheInvalidateResponse:
    """
    [职责] 按论文失效缓存（?paper_id=a&paper_id=b）；未给出 paper_id 时清空该用户全部缓存。
    """
    try:
        user_id = _require_user_id(trace_context)
        if paper_id:
            deleted = await cache.invalidate_paper_cache(user_id, paper_id)
            scope = "papers"
        else:
            deleted = await cache.clear_user_cache(user_id)
            scope = "user"
    except Exception as exc:
        return to_json_response(  # type: ignore[return-value]
            exc,
            trace_id=str(trace_context.trace_id),
            request_id=str(trace_context.request_id),
        )
    return CacheInvalidateResponse(deleted=deleted, scope=scope)  # type: ignore[arg-type]


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats_endpoint(
    trace_context: TraceContext = Depends(get_trace_context),
    cache: ResponseCache = Depends(get_response_cache),
) -> CacheStatsResponse:
    try:
        user_id = _require_user_id(trace_context)
        stats = await cache.get_cache_stats(user_id)
    except Exception as exc:
        return to_json_response(  # type: ignore[return-value]
            exc,
            trace_id=str(trace_context.trace_id),
            request_id=str(trace_context.request_id),
        )
    return CacheStatsResponse(user_id=user_id, **stats.model_dump())
