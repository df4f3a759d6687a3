# src/paper_rag/backend/api/app.py

"""
[职责] FastAPI 应用装配：日志初始化、建表、注册 middleware 与 routers，关闭时等待缓存后台任务。
[边界] 不包含路由实现；不持有业务状态（ResponseCache 挂在 app.state 上）。
[上游关系] uvicorn / 测试调用 create_app()。
[下游关系] routers/health、routers/retrieval。
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from paper_rag.backend.api.deps import get_cache_store
from paper_rag.backend.api.middleware import TraceContextMiddleware
from paper_rag.backend.api.routers.health import router as health_router
from paper_rag.backend.api.routers.retrieval import router as retrieval_router
from paper_rag.backend.db.engine import init_db
from paper_rag.backend.services.cache_service import ResponseCache
from paper_rag.backend.utils.logging_ import configure_logging, level_from_name
from paper_rag.config import get_settings


def create_app(*, cache: Optional[ResponseCache] = None, create_tables: bool = True) -> FastAPI:
    """
    Build the HTTP app.
    ``cache`` overrides the SQL-backed response cache (tests pass one over InMemoryCacheStore).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        cfg = get_settings()
        configure_logging(level=level_from_name(cfg.PAPER_RAG_LOG_LEVEL))
        if create_tables:
            await init_db()  # docstring: 本地 sqlite 首次启动建表
        app.state.response_cache = cache or ResponseCache(get_cache_store())
        try:
            yield
        finally:
            await app.state.response_cache.drain()  # docstring: 等待 hit_count/cleanup 后台任务

    app = FastAPI(title="paper_rag", version="0.1.0", lifespan=lifespan)
    app.add_middleware(TraceContextMiddleware)
    app.include_router(health_router)
    app.include_router(retrieval_router)
    return app
