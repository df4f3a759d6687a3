# playground/fastapi_gate/test_app_gate.py

"""
[职责] app gate：验证 create_app 的装配（lifespan 挂载 ResponseCache、路由注册、关闭时等待后台任务）。
[边界] 不建表（create_tables=False）；DB 会话替换为临时 sqlite。
[上游关系] backend/api/app.py。
[下游关系] uvicorn 启动入口。
"""

from __future__ import annotations

from typing import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from paper_rag.backend.api.app import create_app
from paper_rag.backend.api.deps import get_session
from paper_rag.backend.db.repo import InMemoryCacheStore
from paper_rag.backend.services.cache_service import ResponseCache


pytestmark = pytest.mark.fastapi_gate


@pytest.mark.asyncio
async def test_create_app_wires_cache_and_routes(session: AsyncSession) -> None:
    cache = ResponseCache(InMemoryCacheStore())
    app = create_app(cache=cache, create_tables=False)

    async def _override_session() -> AsyncIterator[AsyncSession]:
        yield session

    app.dependency_overrides[get_session] = _override_session
    paths = {getattr(r, "path", "") for r in app.routes}
    assert {"/health", "/retrieval/search", "/retrieval/model", "/retrieval/cache", "/retrieval/cache/stats"} <= paths

    async with app.router.lifespan_context(app):  # docstring: httpx 不发送 lifespan 事件
        assert app.state.response_cache is cache
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            health = await client.get("/health")
            stored = await client.post(
                "/retrieval/cache",
                json={"query": "q", "paper_ids": ["p1"], "response": "answer"},
                headers={"x-user-id": "u1"},
            )

        assert health.status_code == 200
        assert health.json()["cache"]["store"] == "InMemoryCacheStore"
        assert stored.status_code == 200

    assert cache.pending_tasks == 0  # docstring: 关闭时已 drain
    assert (await cache.get_cache_stats("u1")).total_entries == 1
