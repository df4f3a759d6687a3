# src/paper_rag/backend/db/models/cache.py

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import DateTime, Index, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from paper_rag.backend.utils.constants import CACHE_KEY_KEY, USER_ID_KEY

from ..base import Base, TimestampMixin


class RagCacheModel(Base, TimestampMixin):
    """
    [职责] 响应缓存：同一用户在同一论文范围内重复提问时直接复用答案与引用。
    [边界] 不存检索中间结果；仅存最终答案与 citations 快照；过期/淘汰由 cache_service 负责。
    [上游关系] ResponseCache.set_cached_response 经 SqlCacheRepo.upsert 写入。
    [下游关系] ResponseCache.get_cached_response 读取；hit_count 用于淘汰排序。
    """

    __tablename__ = "rag_cache"
    __table_args__ = (
        UniqueConstraint(USER_ID_KEY, CACHE_KEY_KEY, name="uq_rag_cache_user_key"),
        Index("ix_rag_cache_user_expires", USER_ID_KEY, "expires_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="缓存条目ID（UUID字符串）",  # docstring: 条目唯一标识
    )

    user_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
        comment="归属用户ID",  # docstring: 缓存按用户隔离
    )

    cache_key: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="确定性缓存 key（cache_<fnv1a hex>）",  # docstring: query + paper_ids 的哈希
    )

    query: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        comment="原始查询文本",  # docstring: 便于排障，不参与查找
    )

    paper_ids: Mapped[List[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="排序后的论文ID列表",  # docstring: 失效时按交集匹配
    )

    response: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        comment="缓存的答案文本",
    )

    citations: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Citation 快照（JSON）",
    )

    hit_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="命中次数",  # docstring: 淘汰时次级排序键
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="过期时间（UTC）",  # docstring: created_at + TTL
    )
