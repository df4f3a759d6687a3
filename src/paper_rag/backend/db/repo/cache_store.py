# src/paper_rag/backend/db/repo/cache_store.py

"""
[职责] CacheStore 协议：响应缓存所需的最小存储操作集合；附带进程内实现 InMemoryCacheStore。
[边界] 不做 TTL/淘汰判断（由 ResponseCache 负责）；仅按 (user_id, key) 读写条目。
[上游关系] ResponseCache 通过协议调用；api/deps 选择具体实现。
[下游关系] SqlCacheRepo（SQLAlchemy）与 InMemoryCacheStore（测试/单进程）。
"""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from paper_rag.backend.schemas.rag import CacheEntry


class CacheStore(Protocol):
    """Storage operations the response cache relies on."""

    async def get(self, user_id: str, key: str) -> Optional[CacheEntry]: ...

    async def upsert(self, entry: CacheEntry) -> CacheEntry: ...

    async def delete_by_id(self, entry_id: str) -> bool: ...

    async def delete_by_ids(self, entry_ids: Iterable[str]) -> int: ...

    async def list_by_owner(self, user_id: str) -> List[CacheEntry]: ...

    async def increment_hit_count(self, entry_id: str) -> bool: ...

    async def delete_by_owner(self, user_id: str) -> int: ...


class InMemoryCacheStore:
    """
    [职责] 进程内 CacheStore：dict 存储，asyncio.Lock 串行化写操作。
    [边界] 不跨进程共享；返回副本，调用方修改不会影响已存条目。
    """

    def __init__(self) -> None:
        self._entries: Dict[Tuple[str, str], CacheEntry] = {}  # docstring: (user_id, key) -> entry
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def ping(self) -> bool:
        return True

    async def get(self, user_id: str, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get((user_id, key))
        return entry.model_copy(deep=True) if entry is not None else None

    async def upsert(self, entry: CacheEntry) -> CacheEntry:
        async with self._lock:
            existing = self._entries.get((entry.user_id, entry.key))
            stored = entry.model_copy(deep=True)
            if existing is not None:
                stored.id = existing.id  # docstring: 覆盖写保持条目 ID 稳定
            self._entries[(entry.user_id, entry.key)] = stored
            return stored.model_copy(deep=True)

    async def delete_by_id(self, entry_id: str) -> bool:
        async with self._lock:
            for slot, entry in list(self._entries.items()):
                if entry.id == entry_id:
                    del self._entries[slot]
                    return True
            return False

    async def delete_by_ids(self, entry_ids: Iterable[str]) -> int:
        ids = set(entry_ids)
        if not ids:
            return 0
        async with self._lock:
            doomed = [slot for slot, entry in self._entries.items() if entry.id in ids]
            for slot in doomed:
                del self._entries[slot]
            return len(doomed)

    async def list_by_owner(self, user_id: str) -> List[CacheEntry]:
        return [e.model_copy(deep=True) for (owner, _), e in self._entries.items() if owner == user_id]

    async def increment_hit_count(self, entry_id: str) -> bool:
        async with self._lock:
            for entry in self._entries.values():
                if entry.id == entry_id:
                    entry.hit_count += 1
                    return True
            return False

    async def delete_by_owner(self, user_id: str) -> int:
        async with self._lock:
            doomed = [slot for slot in self._entries if slot[0] == user_id]
            for slot in doomed:
                del self._entries[slot]
            return len(doomed)
