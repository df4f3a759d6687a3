# src/paper_rag/backend/pipelines/base/timing.py

"""
[职责] 单次检索的阶段计时：bm25/embed/dense/fusion/rerank/citations 各自耗时（ms）+ 总耗时。
[边界] 只做相对耗时（perf_counter）；不做 tracing span。
[上游关系] PipelineContext.timing；hybrid_retrieve 用 `with ctx.timing.stage(...)` 包裹每个阶段。
[下游关系] RetrievalStats.timing_ms。
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator

from paper_rag.backend.utils.constants import TIMING_TOTAL_KEY


def _clock_ms() -> float:
    return time.perf_counter() * 1000.0


@dataclass
class TimingCollector:
    """Stage name -> elapsed ms. bm25 and dense run concurrently but write distinct keys."""

    _stages_ms: Dict[str, float] = field(default_factory=dict)
    _started_ms: float = field(default_factory=_clock_ms)

    @contextmanager
    def stage(self, key: str, *, accumulate: bool = False) -> Iterator[None]:
        # docstring: 阶段抛异常时同样记录耗时
        t0 = _clock_ms()
        try:
            yield
        finally:
            elapsed = max(0.0, _clock_ms() - t0)
            self._stages_ms[key] = self._stages_ms.get(key, 0.0) + elapsed if accumulate else elapsed

    def to_dict(self, *, include_total: bool = True, total_key: str = TIMING_TOTAL_KEY) -> Dict[str, float]:
        out = dict(self._stages_ms)
        if include_total:
            out[total_key] = _clock_ms() - self._started_ms
        return out
