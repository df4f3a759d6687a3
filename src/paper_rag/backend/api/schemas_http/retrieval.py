# src/paper_rag/backend/api/schemas_http/retrieval.py

"""
[职责] Retrieval HTTP 契约：检索、模型选择、缓存写入/失效/统计的请求与响应结构。
[边界] 仅描述 HTTP 结构；转换逻辑在 routers/retrieval.py。
[上游关系] 调用方提交 chunks（或 papers）与 query。
[下游关系] routers/retrieval 调用 retrieval_service / cache_service / model_router。
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from paper_rag.backend.schemas.rag import (
    CacheStats,
    Citation,
    PaperContent,
    RetrievalConfig,
    RetrievalSource,
    RetrievalStats,
    TextChunk,
)

from ._common import RequestId, TraceId

TierName = Literal["economy", "standard", "premium"]


class SearchRequest(BaseModel):
    """
    [职责] SearchRequest：一次缓存感知检索的输入。
    [边界] chunks 与 papers 至少提供其一；papers 会被切为段落级 chunks 后与 chunks 合并。
    """

    model_config = ConfigDict(extra="forbid")

    query: str = Field(..., min_length=1)
    chunks: List[TextChunk] = Field(default_factory=list)
    papers: List[PaperContent] = Field(default_factory=list)
    paper_ids: Optional[List[str]] = Field(default=None)  # docstring: 缓存范围；缺省为 chunks 覆盖的论文
    config: Optional[RetrievalConfig] = Field(default=None)
    preferred_tier: Optional[TierName] = Field(default=None)
    use_cache: bool = Field(default=True)

    @model_validator(mode="after")
    def _require_corpus(self) -> "SearchRequest":
        if not self.chunks and not self.papers:
            raise ValueError("either chunks or papers must be provided")
        return self


class RetrievalResultView(BaseModel):
    model_config = ConfigDict(extra="forbid")

    chunk_id: str
    paper_id: str
    paper_title: str = ""
    section: Optional[str] = None
    page_number: Optional[int] = None
    score: float
    source: RetrievalSource


class ModelSelectionView(BaseModel):
    model_config = ConfigDict(extra="forbid")

    model: str
    provider: str
    tier: str
    reason: str
    estimated_cost: float
    input_tokens: int
    output_tokens: int


class SearchResponse(BaseModel):
    """
    [职责] SearchResponse：命中缓存时携带 response；未命中时携带 context/results/stats/model。
    """

    model_config = ConfigDict(extra="forbid")

    cached: bool
    response: Optional[str] = None
    context: str = ""
    citations: List[Citation] = Field(default_factory=list)
    results: List[RetrievalResultView] = Field(default_factory=list)
    stats: Optional[RetrievalStats] = None
    model: Optional[ModelSelectionView] = None
    trace_id: TraceId
    request_id: RequestId


class ModelRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str = Field(..., min_length=1)
    context_length: int = Field(default=0, ge=0)  # docstring: 上下文字符数
    preferred_tier: Optional[TierName] = Field(default=None)


class CacheWriteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str = Field(..., min_length=1)
    paper_ids: List[str] = Field(default_factory=list)
    response: str = Field(..., min_length=1)
    citations: List[Citation] = Field(default_factory=list)


class CacheWriteResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stored: bool
    cache_key: str


class CacheInvalidateResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    deleted: int
    scope: Literal["papers", "user"]


class CacheStatsResponse(CacheStats):
    model_config = ConfigDict(extra="forbid")

    user_id: str
