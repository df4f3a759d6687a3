# src/paper_rag/backend/services/cache_service.py

"""
[职责] cache_service：按 (user_id, query, paper_ids) 缓存最终答案与引用，提供 TTL 过期、每用户容量淘汰与按论文失效。
[边界] 缓存故障永不向调用方抛出（读降级为 miss，写/清理仅记录日志）；不执行检索/生成。
[上游关系] retrieval_service.answer_context / store_answer；API /retrieval/cache 路由。
[下游关系] CacheStore 实现（SqlCacheRepo / InMemoryCacheStore）。
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, Set

from paper_rag.backend.db.base import as_utc, utcnow
from paper_rag.backend.db.repo.cache_store import CacheStore
from paper_rag.backend.schemas.rag import CachedResponse, CacheEntry, CacheStats, Citation
from paper_rag.backend.utils.constants import CACHE_KEY_KEY, CACHE_KEY_PREFIX, USER_ID_KEY
from paper_rag.backend.utils.logging_ import get_logger, log_event
from paper_rag.config import get_settings

__all__ = [
    "ResponseCache",
    "generate_cache_key",
]

logger = get_logger("services.cache")

_FNV_OFFSET_BASIS = 0x811C9DC5
_FNV_PRIME = 0x01000193
_U32_MASK = 0xFFFFFFFF


def _fnv1a_32(data: bytes) -> int:
    h = _FNV_OFFSET_BASIS
    for byte in data:
        h ^= byte
        h = (h * _FNV_PRIME) & _U32_MASK
    return h


def generate_cache_key(query: str, paper_ids: Iterable[str]) -> str:
    """
    [职责] 确定性缓存 key：FNV-1a 32 位哈希，输出 "cache_" + 8 位小写十六进制。
    [边界] query 大小写/首尾空白不敏感；paper_ids 顺序不敏感。
    """
    normalized = f"{str(query or '').lower().strip()}:{','.join(sorted(str(p) for p in paper_ids))}"
    return f"{CACHE_KEY_PREFIX}{format(_fnv1a_32(normalized.encode('utf-8')), '08x')}"


class ResponseCache:
    """
    [职责] 响应缓存门面：get/set/invalidate/clear/stats。
    [边界] hit_count 递增与容量清理在后台 asyncio task 中执行；drain() 等待全部后台任务完成。
    [上游关系] retrieval_service 与 API 路由注入使用。
    [下游关系] CacheStore。
    """

    def __init__(
        self,
        store: CacheStore,
        *,
        ttl_hours: Optional[float] = None,
        max_entries_per_user: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        cfg = get_settings()
        self._store = store
        self._ttl = timedelta(hours=float(ttl_hours if ttl_hours is not None else cfg.PAPER_RAG_CACHE_TTL_HOURS))
        self._max_entries = int(
            max_entries_per_user if max_entries_per_user is not None else cfg.PAPER_RAG_CACHE_MAX_ENTRIES_PER_USER
        )
        self._clock = clock or utcnow  # docstring: 测试注入假时钟
        self._tasks: Set[asyncio.Task[Any]] = set()  # docstring: 持有后台任务引用，防止被 GC

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def _now(self) -> datetime:
        return as_utc(self._clock())

    def _spawn(self, coro: Awaitable[Any], *, name: str) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        log_event(logger, logging.DEBUG, "cache.task_scheduled", fields={"task": name})

    async def drain(self) -> None:
        """Wait for all outstanding background tasks (tests / shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def get_cached_response(
        self,
        user_id: str,
        query: str,
        paper_ids: Sequence[str],
    ) -> Optional[CachedResponse]:
        """
        [职责] 读缓存：命中返回 CachedResponse，并在后台递增 hit_count。
        [边界] 过期条目（expires_at < now）删除后按 miss 处理；存储异常记录日志并返回 None。
        """
        key = generate_cache_key(query, paper_ids)
        fields = {USER_ID_KEY: user_id, CACHE_KEY_KEY: key}
        try:
            entry = await self._store.get(user_id, key)
        except Exception as exc:  # docstring: 任意存储异常降级为 miss
            log_event(logger, logging.ERROR, "cache.read_failed", fields={**fields, "error": str(exc)})
            return None

        if entry is None:
            log_event(logger, logging.DEBUG, "cache.miss", fields=fields)
            return None

        if as_utc(entry.expires_at) < self._now():
            log_event(logger, logging.INFO, "cache.expired", fields=fields)
            try:
                await self._store.delete_by_id(entry.id)
            except Exception as exc:
                log_event(logger, logging.ERROR, "cache.delete_failed", fields={**fields, "error": str(exc)})
            return None

        self._spawn(self._increment_hits(entry.id, fields), name="increment_hits")
        log_event(logger, logging.INFO, "cache.hit", fields={**fields, "hit_count": entry.hit_count + 1})
        return CachedResponse(response=entry.response, citations=list(entry.citations))

    async def set_cached_response(
        self,
        user_id: str,
        query: str,
        paper_ids: Sequence[str],
        response: str,
        citations: Sequence[Citation],
    ) -> None:
        """
        [职责] 写缓存：按 (user_id, key) 覆盖写，TTL 从当前时刻计；写后后台执行容量清理。
        [边界] 写失败只记录日志；写失败时不触发清理。
        """
        key = generate_cache_key(query, paper_ids)
        fields = {USER_ID_KEY: user_id, CACHE_KEY_KEY: key}
        now = self._now()
        entry = CacheEntry(
            user_id=user_id,
            key=key,
            query=str(query or ""),
            paper_ids=sorted(str(p) for p in paper_ids),
            response=str(response or ""),
            citations=list(citations),
            created_at=now,
            expires_at=now + self._ttl,
            hit_count=0,
        )
        try:
            await self._store.upsert(entry)
        except Exception as exc:
            log_event(logger, logging.ERROR, "cache.write_failed", fields={**fields, "error": str(exc)})
            return

        log_event(logger, logging.DEBUG, "cache.write", fields=fields)
        self._spawn(self._cleanup(user_id), name="cleanup")

    async def invalidate_paper_cache(self, user_id: str, paper_ids: Iterable[str]) -> int:
        """
        Delete the user's entries whose paper scope intersects ``paper_ids``.
        Returns the number of deleted entries (0 on failure).
        """
        targets = {str(p) for p in paper_ids}
        if not targets:
            return 0
        try:
            entries = await self._store.list_by_owner(user_id)
            doomed = [e.id for e in entries if targets.intersection(e.paper_ids)]
            deleted = await self._store.delete_by_ids(doomed) if doomed else 0
        except Exception as exc:
            log_event(
                logger,
                logging.ERROR,
                "cache.invalidate_failed",
                fields={USER_ID_KEY: user_id, "error": str(exc)},
            )
            return 0
        log_event(
            logger,
            logging.INFO,
            "cache.invalidated",
            fields={USER_ID_KEY: user_id, "paper_ids": sorted(targets), "deleted": deleted},
        )
        return deleted

    async def clear_user_cache(self, user_id: str) -> int:
        try:
            deleted = await self._store.delete_by_owner(user_id)
        except Exception as exc:
            log_event(logger, logging.ERROR, "cache.clear_failed", fields={USER_ID_KEY: user_id, "error": str(exc)})
            return 0
        log_event(logger, logging.INFO, "cache.cleared", fields={USER_ID_KEY: user_id, "deleted": deleted})
        return deleted

    async def get_cache_stats(self, user_id: str) -> CacheStats:
        """Entry/hit totals and created_at range for one user (empty stats on failure)."""
        try:
            entries = await self._store.list_by_owner(user_id)
        except Exception as exc:
            log_event(logger, logging.ERROR, "cache.stats_failed", fields={USER_ID_KEY: user_id, "error": str(exc)})
            return CacheStats()
        if not entries:
            return CacheStats()
        created = [as_utc(e.created_at) for e in entries]
        return CacheStats(
            total_entries=len(entries),
            total_hits=sum(e.hit_count for e in entries),
            oldest_entry=min(created),
            newest_entry=max(created),
        )

    async def _increment_hits(self, entry_id: str, fields: dict) -> None:
        try:
            await self._store.increment_hit_count(entry_id)
        except Exception as exc:
            log_event(logger, logging.WARNING, "cache.hit_update_failed", fields={**fields, "error": str(exc)})

    async def _cleanup(self, user_id: str) -> None:
        """
        [职责] 容量清理：超过上限时按 (expires_at 升序, hit_count 升序) 从前往后删除。
        """
        try:
            entries = await self._store.list_by_owner(user_id)
            excess = len(entries) - self._max_entries
            if excess <= 0:
                return
            ordered = sorted(entries, key=lambda e: (as_utc(e.expires_at), e.hit_count))
            deleted = await self._store.delete_by_ids([e.id for e in ordered[:excess]])
        except Exception as exc:
            log_event(logger, logging.ERROR, "cache.cleanup_failed", fields={USER_ID_KEY: user_id, "error": str(exc)})
            return
        log_event(
            logger,
            logging.INFO,
            "cache.cleanup",
            fields={USER_ID_KEY: user_id, "deleted": deleted, "limit": self._max_entries},
        )
