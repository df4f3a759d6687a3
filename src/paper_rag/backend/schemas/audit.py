# src/paper_rag/backend/schemas/audit.py

"""
[职责] TraceContext：一次 HTTP 请求的追踪标识（trace/request/parent request/user）。
[边界] 仅标识；不含 span 或耗时。
[上游关系] api.middleware 按请求头创建并挂到 request.state；deps.get_trace_context 读取。
[下游关系] retrieval 路由据此构造 PipelineContext；log_event(context=...) 读取同名字段。
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .ids import UUIDStr, new_uuid


class TraceContext(BaseModel):
    model_config = ConfigDict(extra="forbid")

    trace_id: UUIDStr = Field(default_factory=new_uuid)
    request_id: UUIDStr = Field(default_factory=new_uuid)
    parent_request_id: Optional[UUIDStr] = None  # docstring: x-parent-request-id 透传
    user_id: Optional[str] = None  # docstring: x-user-id；匿名请求为 None
