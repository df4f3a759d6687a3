# src/paper_rag/backend/api/deps.py

"""
[职责] API 依赖装配：提供 session、trace_context、缓存与 provider 客户端注入。
[边界] 不做业务逻辑；不提交事务。
[上游关系] FastAPI 路由层调用依赖注入。
[下游关系] routers 通过本模块获取依赖实例；测试通过 dependency_overrides 替换。
"""

from __future__ import annotations

from typing import AsyncIterator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from paper_rag.backend.db.engine import SessionLocal
from paper_rag.backend.db.repo import CacheStore, SqlCacheRepo
from paper_rag.backend.pipelines.retrieval.embedding import EmbeddingClient, OpenAIEmbeddingClient
from paper_rag.backend.pipelines.retrieval.rerank import CohereRerankClient, RerankClient
from paper_rag.backend.schemas.audit import TraceContext
from paper_rag.backend.schemas.ids import UUIDStr, new_uuid
from paper_rag.backend.services.cache_service import ResponseCache

_response_cache: Optional[ResponseCache] = None  # docstring: 进程级单例（持有后台任务）


async def get_session() -> AsyncIterator[AsyncSession]:
    """
    [职责] 获取数据库会话（每个 request 一个 session）。
    [边界] 不提交/回滚事务；仅负责创建与关闭。
    """
    async with SessionLocal() as session:
        yield session


def get_trace_context(request: Request) -> TraceContext:
    """
    [职责] 获取或创建 TraceContext（优先使用 middleware 注入）。
    [边界] 不写入日志；不校验 UUID 格式。
    """
    existing = getattr(request.state, "trace_context", None)
    if isinstance(existing, TraceContext):
        return existing  # docstring: 复用 middleware 注入的 TraceContext

    trace_id = str(getattr(request.state, "trace_id", "") or "").strip() or str(new_uuid())
    request_id = str(getattr(request.state, "request_id", "") or "").strip() or str(new_uuid())
    user_id = str(request.headers.get("x-user-id", "") or "").strip() or None

    ctx = TraceContext(
        trace_id=UUIDStr(trace_id),
        request_id=UUIDStr(request_id),
        user_id=user_id,
    )  # docstring: 兜底构造 TraceContext（未注册 middleware 时）
    request.state.trace_context = ctx
    request.state.trace_id = trace_id
    request.state.request_id = request_id
    return ctx


def get_cache_store() -> CacheStore:
    """SQL-backed cache store on the global session factory."""
    return SqlCacheRepo(SessionLocal)


def get_response_cache(request: Request) -> ResponseCache:
    """
    [职责] 获取进程级 ResponseCache（优先 app.state.response_cache）。
    [边界] 首次调用时惰性构造；后台任务随实例存活。
    """
    global _response_cache
    existing = getattr(request.app.state, "response_cache", None)
    if isinstance(existing, ResponseCache):
        return existing
    if _response_cache is None:
        _response_cache = ResponseCache(get_cache_store())
    return _response_cache


def get_embedding_client() -> EmbeddingClient:
    return OpenAIEmbeddingClient()  # docstring: 读取 Settings 中的 OpenAI 配置


def get_rerank_client() -> RerankClient:
    return CohereRerankClient()  # docstring: 未配置 key 时 rerank 自动降级
