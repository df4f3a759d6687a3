# src/paper_rag/backend/api/errors.py

"""
[职责] 异常 -> (HTTP status, ErrorResponse)；外部依赖故障额外标注 detail.search_status。
[边界] 不记日志（由 router/middleware 负责）；trace_id 缺失时生成兜底值。
[上游关系] routers/retrieval.py 捕获 DomainError 后调用 to_json_response。
[下游关系] 客户端按 search_status 区分 "search temporarily degraded" 与 "search unavailable"。
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from fastapi.responses import JSONResponse

from paper_rag.backend.api.schemas_http._common import ErrorResponse
from paper_rag.backend.schemas.ids import new_uuid
from paper_rag.backend.utils.errors import ExternalDependencyError, is_degraded_error, to_http_error

SEARCH_DEGRADED = "search temporarily degraded"
SEARCH_UNAVAILABLE = "search unavailable"


def to_error_response(error: Exception, *, trace_id: Optional[str] = None) -> Tuple[int, ErrorResponse]:
    status_code, payload = to_http_error(error, trace_id=(trace_id or "").strip() or str(new_uuid()))
    body = payload["error"]
    if isinstance(error, ExternalDependencyError):
        body["detail"] = {
            **body.get("detail", {}),
            "search_status": SEARCH_DEGRADED if is_degraded_error(error) else SEARCH_UNAVAILABLE,
        }
    return status_code, ErrorResponse.model_validate(payload)


def to_json_response(
    error: Exception,
    *,
    trace_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> JSONResponse:
    """ErrorResponse as JSONResponse; echoes x-trace-id / x-request-id when known."""
    status_code, response = to_error_response(error, trace_id=trace_id)
    headers: Dict[str, str] = {}
    if trace_id:
        headers["x-trace-id"] = str(trace_id)
    if request_id:
        headers["x-request-id"] = str(request_id)
    return JSONResponse(status_code=status_code, content=response.model_dump(), headers=headers)
