# src/paper_rag/backend/schemas/rag.py

"""
[职责] RAG 契约层：定义 chunk、citation、检索配置、检索统计与缓存条目的结构化合同。
[边界] 不包含检索实现（bm25/dense/fusion/rerank）；不依赖 ORM；仅表达可序列化的输入/输出。
[上游关系] ingest 系统产出 TextChunk；调用方传入 RetrievalConfig。
[下游关系] pipelines/retrieval 消费 TextChunk 并产出 Citation/RetrievalStats；cache_service 读写 CacheEntry。
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from paper_rag.backend.utils.constants import (
    DEFAULT_BM25_WEIGHT,
    DEFAULT_DENSE_WEIGHT,
    DEFAULT_RERANK_TOP_K,
    DEFAULT_TOP_K,
)

from .ids import new_uuid


RetrievalSource = Literal["bm25", "dense", "hybrid"]  # docstring: 结果来源
RerankStrategy = Literal["cohere", "simple", "none"]  # docstring: 实际使用的 rerank 策略


class TextChunk(BaseModel):
    """
    [职责] TextChunk：论文中可独立检索的文本片段（含论文元数据与可选 embedding）。
    [边界] 除 embedding 外只读；embedding 一旦写入即视为本进程内缓存，不重复计算。
    [上游关系] ingest 系统或 papers_to_chunks 产出。
    [下游关系] bm25/dense/rerank 读取 text/section；citations 读取论文元数据。
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)  # docstring: 全局唯一 chunk ID
    paper_id: str = Field(..., min_length=1)  # docstring: 所属论文
    paper_title: str = Field(default="")  # docstring: 论文标题快照
    authors: Optional[str] = Field(default=None)  # docstring: 作者（逗号拼接）
    year: Optional[int] = Field(default=None)  # docstring: 出版年份
    text: str = Field(default="")  # docstring: chunk 正文
    section: Optional[str] = Field(default=None)  # docstring: 章节名（abstract/methods/...）
    page_number: Optional[int] = Field(default=None)  # docstring: 页码
    chunk_index: int = Field(default=0, ge=0)  # docstring: 论文内顺序号
    embedding: Optional[List[float]] = Field(default=None)  # docstring: 懒加载向量缓存


class Citation(BaseModel):
    """
    [职责] Citation：最终结果对应的引用记录（按最终排名顺序）。
    [边界] quote 最长 300 字符（可附加 "..."）；不包含全文。
    [上游关系] citations.build_citations 产出。
    [下游关系] 生成阶段 prompt/前端展示/缓存持久化。
    """

    model_config = ConfigDict(extra="forbid")

    paper_id: str = Field(...)
    paper_title: str = Field(default="")
    authors: Optional[str] = Field(default=None)
    year: Optional[int] = Field(default=None)
    section: Optional[str] = Field(default=None)
    quote: str = Field(default="")  # docstring: 截断后的引用片段
    page_number: Optional[int] = Field(default=None)
    relevance_score: Optional[float] = Field(default=None)  # docstring: 最终排序分数


class RetrievalConfig(BaseModel):
    """
    [职责] RetrievalConfig：混合检索开关与参数。
    [边界] bm25_weight/dense_weight 为融合乘子，不要求和为 1。
    [上游关系] service/api 调用方传入；缺省字段使用默认值。
    [下游关系] hybrid_retrieve 读取。
    """

    model_config = ConfigDict(extra="forbid")

    top_k: int = Field(default=DEFAULT_TOP_K, ge=1)  # docstring: 每路召回与 rerank 输入条数
    use_bm25: bool = Field(default=True)
    use_dense_retrieval: bool = Field(default=True)
    use_reranking: bool = Field(default=True)
    bm25_weight: float = Field(default=DEFAULT_BM25_WEIGHT, ge=0.0)
    dense_weight: float = Field(default=DEFAULT_DENSE_WEIGHT, ge=0.0)
    rerank_top_k: int = Field(default=DEFAULT_RERANK_TOP_K, ge=1)  # docstring: 最终返回条数


class RetrievalStats(BaseModel):
    """Per-request retrieval counters and timings."""

    model_config = ConfigDict(extra="allow")

    bm25_count: int = Field(default=0, ge=0)
    dense_count: int = Field(default=0, ge=0)
    fused_count: int = Field(default=0, ge=0)
    reranked_count: int = Field(default=0, ge=0)
    embedding_tokens: int = Field(default=0, ge=0)
    rerank_strategy: RerankStrategy = Field(default="none")  # docstring: 实际 rerank 路径
    timing_ms: Dict[str, float] = Field(default_factory=dict)  # docstring: 分阶段耗时
    provider_snapshot: Dict[str, Any] = Field(default_factory=dict)  # docstring: provider 快照


class CachedResponse(BaseModel):
    """Payload returned on a cache hit."""

    model_config = ConfigDict(extra="forbid")

    response: str = Field(...)
    citations: List[Citation] = Field(default_factory=list)


class CacheEntry(BaseModel):
    """
    [职责] CacheEntry：一条持久化的缓存答案（按 user_id + key 唯一）。
    [边界] paper_ids 总是排序后存储；expires_at = created_at + TTL。
    [上游关系] cache_service.set_cached_response 构造。
    [下游关系] CacheStore 实现（SQL/内存）读写。
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_uuid)  # docstring: 条目唯一 ID
    user_id: str = Field(..., min_length=1)  # docstring: 归属用户
    key: str = Field(..., min_length=1)  # docstring: 确定性缓存 key
    query: str = Field(default="")  # docstring: 原始 query（调试用）
    paper_ids: List[str] = Field(default_factory=list)  # docstring: 排序后的论文范围
    response: str = Field(default="")  # docstring: 缓存答案
    citations: List[Citation] = Field(default_factory=list)  # docstring: 缓存引用
    created_at: datetime = Field(...)
    expires_at: datetime = Field(...)
    hit_count: int = Field(default=0, ge=0)


class CacheStats(BaseModel):
    """Per-user cache summary."""

    model_config = ConfigDict(extra="forbid")

    total_entries: int = Field(default=0, ge=0)
    total_hits: int = Field(default=0, ge=0)
    oldest_entry: Optional[datetime] = Field(default=None)
    newest_entry: Optional[datetime] = Field(default=None)


class PaperRef(BaseModel):
    """Bibliographic metadata of an ingested paper."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    title: str = Field(default="")
    authors: List[str] = Field(default_factory=list)
    year: Optional[int] = Field(default=None)


class PaperParagraph(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str = Field(default="")
    section: Optional[str] = Field(default=None)
    page_number: Optional[int] = Field(default=None)


class PaperBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    paragraphs: List[PaperParagraph] = Field(default_factory=list)


class PaperContent(BaseModel):
    """
    [职责] PaperContent：ingest 系统提供的“论文元数据 + 段落列表”。
    [边界] 不包含 PDF 解析细节；仅保留切分所需字段。
    [上游关系] 调用方从文档存储读取。
    [下游关系] citations.papers_to_chunks 转换为 TextChunk。
    """

    model_config = ConfigDict(extra="ignore")

    paper: PaperRef = Field(...)
    content: PaperBody = Field(default_factory=PaperBody)
