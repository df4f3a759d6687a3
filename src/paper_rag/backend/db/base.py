# src/paper_rag/backend/db/base.py

"""
[职责] ORM 基座：DeclarativeBase 与通用时间戳 mixin。
[边界] 不定义业务表；不创建 engine。
[上游关系] 无。
[下游关系] db/models/* 继承 Base/TimestampMixin；engine.init_db 通过 Base.metadata 建表。
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Timezone-aware UTC now."""  # docstring: 统一使用 UTC 存储
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.
    SQLite drops tzinfo on round-trip, so naive values read back are treated as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class TimestampMixin:
    """
    [职责] 通用时间戳字段（created_at/updated_at）。
    [边界] 默认值在 Python 侧生成（便于注入时钟的测试覆盖 created_at）。
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="创建时间（UTC）",  # docstring: 记录创建时间
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="更新时间（UTC）",  # docstring: 记录最近更新时间
    )
