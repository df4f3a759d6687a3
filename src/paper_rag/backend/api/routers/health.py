# src/paper_rag/backend/api/routers/health.py

"""
[职责] Health Router：提供服务健康检查（DB 与缓存存储）与版本摘要。
[边界] 不执行业务逻辑；不触发 pipeline；仅探测依赖健康状态。
[上游关系] 运维/监控系统调用健康检查接口。
[下游关系] DB session 与 ResponseCache.store 执行轻量检查。
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from paper_rag.backend.api.deps import get_response_cache, get_session
from paper_rag.backend.services.cache_service import ResponseCache


router = APIRouter(prefix="/health", tags=["health"])  # docstring: health 路由前缀


@router.get("")
async def health_check(
    session: AsyncSession = Depends(get_session),
    cache: ResponseCache = Depends(get_response_cache),
) -> Dict[str, Any]:
    """
    [职责] 检测 DB/缓存存储可用性并返回健康摘要。
    [边界] 缓存存储不可用时仅降级（缓存读写本身会退化为 miss）。
    """
    status = "ok"
    db_status: Dict[str, Any] = {"ok": True}
    cache_status: Dict[str, Any] = {"ok": True, "store": cache.store.__class__.__name__}

    try:
        await session.execute(text("SELECT 1"))  # docstring: DB ping（最小读）
    except Exception as exc:
        db_status["ok"] = False
        db_status["error"] = f"{exc.__class__.__name__}: {exc}"

    try:
        ping = getattr(cache.store, "ping", None)
        if ping is not None:
            await ping()  # docstring: 缓存存储 ping
    except Exception as exc:
        cache_status["ok"] = False
        cache_status["error"] = f"{exc.__class__.__name__}: {exc}"

    if not db_status.get("ok") or not cache_status.get("ok"):
        status = "degraded"  # docstring: 任一依赖异常则降级

    return {
        "status": status,
        "db": db_status,
        "cache": cache_status,
        "pending_cache_tasks": cache.pending_tasks,
        "version": {"api": "v1"},
    }
