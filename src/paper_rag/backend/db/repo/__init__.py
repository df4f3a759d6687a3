# src/paper_rag/backend/db/repo/__init__.py

"""
[职责] db.repo 聚合导出：集中暴露缓存存储协议与实现，供 service 层调用。
[边界] 仅做导入与 __all__ 暴露；不包含业务编排。
"""

from __future__ import annotations

from .cache_repo import SqlCacheRepo
from .cache_store import CacheStore, InMemoryCacheStore

__all__ = [
    "CacheStore",
    "InMemoryCacheStore",
    "SqlCacheRepo",
]
