# src/paper_rag/backend/pipelines/base/context.py

"""
[职责] PipelineContext：一次 hybrid_retrieve 的运行上下文（trace/request/user 标识、阶段计时、provider 快照）。
[边界] 不持有 DB session / HTTP client；跨请求不复用。
[上游关系] retrieval_service 从请求头构造；测试直接 from_trace(...)。
[下游关系] log_event(context=ctx) 读取 trace 字段；RetrievalStats.timing_ms / provider_snapshot。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from paper_rag.backend.schemas.ids import UUIDStr, new_uuid
from paper_rag.backend.utils.constants import TIMING_TOTAL_KEY

from .timing import TimingCollector


@dataclass
class PipelineContext:
    trace_id: UUIDStr = field(default_factory=new_uuid)
    request_id: UUIDStr = field(default_factory=new_uuid)
    user_id: Optional[str] = None  # docstring: 仅用于日志字段，不参与检索

    timing: TimingCollector = field(default_factory=TimingCollector)
    provider_snapshot: Dict[str, Any] = field(default_factory=dict)  # docstring: embedder/reranker 的 model/dim 等

    @classmethod
    def from_trace(
        cls,
        *,
        trace_id: Optional[str] = None,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> "PipelineContext":
        """Blank ids are replaced by fresh uuids."""
        return cls(
            trace_id=UUIDStr(trace_id) if trace_id else new_uuid(),
            request_id=UUIDStr(request_id) if request_id else new_uuid(),
            user_id=str(user_id) if user_id else None,
        )

    def timing_ms(self, *, include_total: bool = True, total_key: str = TIMING_TOTAL_KEY) -> Dict[str, float]:
        return self.timing.to_dict(include_total=include_total, total_key=total_key)

    def with_provider(self, kind: str, snapshot: Dict[str, Any]) -> None:
        if kind:
            self.provider_snapshot[kind] = snapshot
