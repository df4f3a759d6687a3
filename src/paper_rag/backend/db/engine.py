# src/paper_rag/backend/db/engine.py

"""
[职责] 缓存库的 AsyncEngine / async_sessionmaker 与建表/删表入口。
[边界] 无迁移：rag_cache 只有一张表，create_all 即可；事务由 SqlCacheRepo 自行开启。
[上游关系] config.Settings（PAPER_RAG_DATABASE_URL）与 DATABASE_URL / SQL_ECHO 环境变量。
[下游关系] api/deps.get_cache_store（SessionLocal）、api.app lifespan（init_db）、scripts/init_db、gate tests。
"""

from __future__ import annotations

import os
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from paper_rag.config import settings

from .base import Base


def resolve_db_url(override: str | None = None) -> str:
    """
    First non-empty of: override, PAPER_RAG_DATABASE_URL, DATABASE_URL,
    then <repo>/.Local/paper_rag.db (directory created on demand).
    """
    for candidate in (override, settings.PAPER_RAG_DATABASE_URL, os.getenv("DATABASE_URL")):
        url = (candidate or "").strip()
        if url:
            return url

    url = settings.default_database_url
    Path(url.split(":///", 1)[1]).parent.mkdir(parents=True, exist_ok=True)
    return url


def create_engine(*, url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    if echo is None:
        echo = os.getenv("SQL_ECHO", "0") == "1"
    return create_async_engine(resolve_db_url(url), echo=echo, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # docstring: expire_on_commit=False，commit 后仍可读取 ORM 属性再转 CacheEntry
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


ENGINE: AsyncEngine = create_engine()
SessionLocal: async_sessionmaker[AsyncSession] = create_sessionmaker(ENGINE)


async def _run_ddl(engine: AsyncEngine | None, *, drop: bool) -> None:
    from . import models  # noqa: F401  # docstring: 注册 rag_cache 到 Base.metadata

    ddl = Base.metadata.drop_all if drop else Base.metadata.create_all
    async with (engine or ENGINE).begin() as conn:
        await conn.run_sync(ddl)


async def init_db(*, engine: AsyncEngine | None = None) -> None:
    """Create rag_cache and its indexes if missing."""
    await _run_ddl(engine, drop=False)


async def drop_db(*, engine: AsyncEngine | None = None) -> None:
    """Drop all tables (tests / `paper-rag-init-db --drop`)."""
    await _run_ddl(engine, drop=True)
