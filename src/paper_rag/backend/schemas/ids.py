# src/paper_rag/backend/schemas/ids.py

"""
[职责] trace_id / request_id / rag_cache.id 的类型别名与生成（UUID v4 字符串）。
[边界] user_id、paper_id、chunk id 由上游系统给出，不在此约束格式。
"""

from __future__ import annotations

from typing import NewType
from uuid import uuid4


UUIDStr = NewType("UUIDStr", str)  # docstring: 运行时仍为 str


def new_uuid() -> UUIDStr:
    return UUIDStr(str(uuid4()))
