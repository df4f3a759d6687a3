# src/paper_rag/backend/db/repo/cache_repo.py

"""
[职责] SqlCacheRepo：rag_cache 表的数据访问层，实现 CacheStore 协议。
[边界] 每个操作独立会话/事务（后台任务与请求并发运行）；SQLAlchemyError 统一包装为 CacheError。
[上游关系] ResponseCache 调用；api/deps 以全局 sessionmaker 构造。
[下游关系] RagCacheModel <-> CacheEntry 双向转换；时间统一按 UTC 处理。
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paper_rag.backend.schemas.rag import CacheEntry, Citation
from paper_rag.backend.utils.constants import CACHE_KEY_KEY, USER_ID_KEY
from paper_rag.backend.utils.errors import CacheError

from ..base import as_utc, utcnow
from ..models.cache import RagCacheModel

# docstring: 两种方言的 insert 都提供 on_conflict_do_update
_DIALECT_INSERT = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


def _to_entry(row: RagCacheModel) -> CacheEntry:
    """ORM row -> CacheEntry."""  # docstring: sqlite 读回的 naive 时间按 UTC 处理
    return CacheEntry(
        id=row.id,
        user_id=row.user_id,
        key=row.cache_key,
        query=row.query or "",
        paper_ids=list(row.paper_ids or []),
        response=row.response or "",
        citations=[Citation.model_validate(c) for c in (row.citations or [])],
        created_at=as_utc(row.created_at),
        expires_at=as_utc(row.expires_at),
        hit_count=int(row.hit_count or 0),
    )


def _citations_payload(entry: CacheEntry) -> List[Dict[str, Any]]:
    return [c.model_dump(mode="json") for c in entry.citations]


class SqlCacheRepo:
    """Response cache repository (async SQLAlchemy)."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker  # docstring: 每次操作开新会话

    async def ping(self) -> bool:
        try:
            async with self._sessionmaker() as session:
                await session.execute(text("SELECT 1"))  # docstring: 最小读
        except SQLAlchemyError as exc:
            raise CacheError(cause=exc) from exc
        return True

    async def get(self, user_id: str, key: str) -> Optional[CacheEntry]:
        """Fetch entry by (user_id, cache_key)."""
        stmt = select(RagCacheModel).where(
            RagCacheModel.user_id == user_id,
            RagCacheModel.cache_key == key,
        )
        try:
            async with self._sessionmaker() as session:
                row = (await session.scalars(stmt)).first()
                return _to_entry(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise CacheError(message="cache read failed", cause=exc) from exc

    async def upsert(self, entry: CacheEntry) -> CacheEntry:
        """
        Insert or overwrite by (user_id, cache_key) in one INSERT .. ON CONFLICT DO UPDATE.
        Overwrite keeps the row id and resets content, timestamps and hit_count from the entry.
        """
        fields: Dict[str, Any] = {
            "query": entry.query,
            "paper_ids": list(entry.paper_ids),  # docstring: 已排序
            "response": entry.response,
            "citations": _citations_payload(entry),
            "hit_count": entry.hit_count,
            "created_at": as_utc(entry.created_at),
            "expires_at": as_utc(entry.expires_at),
            "updated_at": utcnow(),
        }
        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    insert = _DIALECT_INSERT[session.get_bind().dialect.name]
                    stmt = (
                        insert(RagCacheModel)
                        .values(id=entry.id, user_id=entry.user_id, cache_key=entry.key, **fields)
                        .on_conflict_do_update(index_elements=[USER_ID_KEY, CACHE_KEY_KEY], set_=fields)
                    )
                    await session.execute(stmt)
                    row = (
                        await session.scalars(
                            select(RagCacheModel)
                            .where(RagCacheModel.user_id == entry.user_id, RagCacheModel.cache_key == entry.key)
                            .execution_options(populate_existing=True)
                        )
                    ).one()
                    return _to_entry(row)
        except SQLAlchemyError as exc:
            raise CacheError(message="cache write failed", cause=exc) from exc

    async def delete_by_id(self, entry_id: str) -> bool:
        return (await self._delete(delete(RagCacheModel).where(RagCacheModel.id == entry_id))) > 0

    async def delete_by_ids(self, entry_ids: Iterable[str]) -> int:
        ids = list(entry_ids)
        if not ids:
            return 0
        return await self._delete(delete(RagCacheModel).where(RagCacheModel.id.in_(ids)))

    async def delete_by_owner(self, user_id: str) -> int:
        return await self._delete(delete(RagCacheModel).where(RagCacheModel.user_id == user_id))

    async def delete_expired(self, now: datetime) -> int:
        """Remove entries with expires_at < now across all users."""
        return await self._delete(delete(RagCacheModel).where(RagCacheModel.expires_at < as_utc(now)))

    async def list_by_owner(self, user_id: str) -> List[CacheEntry]:
        """All entries of a user, oldest first."""
        stmt = (
            select(RagCacheModel)
            .where(RagCacheModel.user_id == user_id)
            .order_by(RagCacheModel.created_at.asc())
        )
        try:
            async with self._sessionmaker() as session:
                rows = (await session.scalars(stmt)).all()
                return [_to_entry(r) for r in rows]
        except SQLAlchemyError as exc:
            raise CacheError(message="cache list failed", cause=exc) from exc

    async def increment_hit_count(self, entry_id: str) -> bool:
        """Atomic hit_count + 1 (single UPDATE, no read-modify-write)."""
        stmt = (
            update(RagCacheModel)
            .where(RagCacheModel.id == entry_id)
            .values(hit_count=RagCacheModel.hit_count + 1)
        )
        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    res = await session.execute(stmt)
                    return bool(res.rowcount)
        except SQLAlchemyError as exc:
            raise CacheError(message="cache hit update failed", cause=exc) from exc

    async def _delete(self, stmt: Any) -> int:
        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    res = await session.execute(stmt)
                    return int(res.rowcount or 0)
        except SQLAlchemyError as exc:
            raise CacheError(message="cache delete failed", cause=exc) from exc
