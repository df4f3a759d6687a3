# src/paper_rag/backend/api/schemas_http/_common.py

"""
[职责] HTTP 契约公共部分：trace/request id 别名与统一错误包裹 ErrorResponse。
[边界] 只描述结构；status code 与 search_status 由 api/errors.py 决定。
[下游关系] schemas_http/retrieval.py 与 api/errors.py。
"""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field

from paper_rag.backend.schemas.ids import UUIDStr


TraceId = UUIDStr
RequestId = UUIDStr


class ErrorInfo(BaseModel):
    """
    {"code": "embedding.provider_error", "message": "...", "trace_id": "...",
     "detail": {"provider": "openai", "status_code": 503, "search_status": "search temporarily degraded"},
     "retryable": true}
    """

    model_config = ConfigDict(extra="forbid")

    code: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    trace_id: TraceId
    detail: Dict[str, Any] = Field(default_factory=dict)
    retryable: bool = False


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: ErrorInfo
