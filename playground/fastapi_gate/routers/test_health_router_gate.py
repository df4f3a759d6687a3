# playground/fastapi_gate/routers/test_health_router_gate.py

"""
[职责] Health router gate：验证 /health 输出结构、缓存存储探测与降级标记。
[边界] 使用临时 sqlite 会话与内存缓存存储；不触发真实外部连接。
[上游关系] backend/api/routers/health.py。
[下游关系] 确保健康检查契约稳定。
"""

from __future__ import annotations

from typing import AsyncIterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from paper_rag.backend.api.deps import get_response_cache, get_session
from paper_rag.backend.api.middleware import TraceContextMiddleware
from paper_rag.backend.api.routers.health import router as health_router
from paper_rag.backend.db.repo import InMemoryCacheStore
from paper_rag.backend.schemas.ids import new_uuid
from paper_rag.backend.services.cache_service import ResponseCache
from paper_rag.backend.utils.errors import CacheError


pytestmark = pytest.mark.fastapi_gate


class _UnreachableStore(InMemoryCacheStore):
    """Cache store whose ping fails."""  # docstring: 模拟缓存库不可达

    async def ping(self) -> bool:
        raise CacheError(message="cache store unavailable")


def _build_app(session: AsyncSession, cache: ResponseCache) -> FastAPI:
    async def _override_session() -> AsyncIterator[AsyncSession]:
        yield session  # docstring: reuse test session

    app = FastAPI()
    app.add_middleware(TraceContextMiddleware)  # docstring: inject trace/request headers
    app.include_router(health_router)  # docstring: mount health router
    app.dependency_overrides[get_session] = _override_session  # docstring: override session dep
    app.dependency_overrides[get_response_cache] = lambda: cache  # docstring: override cache dep
    return app


@pytest.mark.asyncio
async def test_health_router_gate(session: AsyncSession) -> None:
    """
    [职责] 验证 health router 输出结构与 header 透传。
    [边界] 仅验证 HTTP 输出。
    """
    trace_id = new_uuid()
    request_id = new_uuid()
    app = _build_app(session, ResponseCache(InMemoryCacheStore()))

    transport = ASGITransport(app=app)  # docstring: ASGI transport for httpx
    headers = {
        "x-trace-id": str(trace_id),
        "x-request-id": str(request_id),
    }  # docstring: explicit trace/request headers
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/health", headers=headers)  # docstring: invoke health endpoint

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["db"]["ok"] is True
    assert data["cache"] == {"ok": True, "store": "InMemoryCacheStore"}
    assert data["pending_cache_tasks"] == 0
    assert data["version"]["api"] == "v1"
    assert resp.headers["x-trace-id"] == str(trace_id)  # docstring: trace_id must propagate
    assert resp.headers["x-request-id"] == str(request_id)  # docstring: request_id must propagate


@pytest.mark.asyncio
async def test_health_router_degraded_when_cache_store_down(session: AsyncSession) -> None:
    app = _build_app(session, ResponseCache(_UnreachableStore()))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        resp = await client.get("/health")

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["db"]["ok"] is True
    assert data["cache"]["ok"] is False
    assert "CacheError" in data["cache"]["error"]
    assert resp.headers["x-trace-id"]  # docstring: middleware 生成兜底 trace_id
