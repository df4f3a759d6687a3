# src/paper_rag/backend/pipelines/retrieval/rerank.py

"""
[职责] rerank：调用 Cohere cross-encoder 相关性接口精排；凭证缺失或调用失败时降级为本地 simple_rerank。
[边界] 对调用方永不抛错（降级路径记录 warning/error 日志）；不做重试；不修改 chunk。
[上游关系] pipeline.hybrid_retrieve 传入融合后的 top_k chunk。
[下游关系] 最终结果排序与 relevance_score（Citation.relevance_score）。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import httpx

from paper_rag.backend.schemas.rag import RerankStrategy, TextChunk
from paper_rag.backend.utils.constants import DEFAULT_RERANK_TOP_K
from paper_rag.backend.utils.errors import RerankProviderError
from paper_rag.backend.utils.logging_ import get_logger, log_event, truncate_text
from paper_rag.config import get_settings

from .types import RerankResult


logger = get_logger("pipelines.rerank")

_SIMPLE_SECTION_BOOSTS: Tuple[Tuple[Tuple[str, ...], float], ...] = (
    (("abstract", "conclusion"), 1.3),
    (("result", "discussion"), 1.2),
)  # docstring: simple_rerank 章节乘子（首个匹配生效）


class RerankClient(Protocol):
    """
    Relevance API contract: returns (document index, relevance score) pairs, best first.
    Raises RerankProviderError on any failure.
    """

    @property
    def configured(self) -> bool: ...

    async def rerank(self, query: str, documents: Sequence[str], top_n: int) -> List[Tuple[int, float]]: ...


class CohereRerankClient:
    """
    [职责] Cohere rerank HTTP 客户端（rerank-english-v3.0）。
    [边界] 不回传文档内容（return_documents=false）；响应不合法视为 provider 失败。
    [上游关系] retrieval_service 构造（默认读取 Settings）；测试可注入 httpx transport。
    [下游关系] rerank() 消费 (index, relevance_score) 列表。
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        s = get_settings()
        self._api_key = str(api_key if api_key is not None else (s.COHERE_API_KEY or "")).strip()
        self._base_url = str(base_url or s.COHERE_API_BASE).rstrip("/")
        self.model = str(model or s.PAPER_RAG_RERANK_MODEL)
        self._timeout_s = float(timeout_s or s.PAPER_RAG_HTTP_TIMEOUT_S)
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "kind": "reranker",
            "provider": "cohere",
            "name": self.model,
            "endpoint": f"{self._base_url}/rerank",
        }

    async def rerank(self, query: str, documents: Sequence[str], top_n: int) -> List[Tuple[int, float]]:
        payload = {
            "model": self.model,
            "query": query,
            "documents": list(documents),
            "top_n": int(top_n),
            "return_documents": False,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout_s) as client:
                resp = await client.post(f"{self._base_url}/rerank", headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise RerankProviderError(message=f"rerank request failed: {exc.__class__.__name__}", cause=exc)

        if resp.status_code < 200 or resp.status_code >= 300:
            raise RerankProviderError(
                message=f"rerank API returned {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            rows = resp.json()["results"]
            pairs = [(int(row["index"]), float(row["relevance_score"])) for row in rows]
        except (ValueError, KeyError, TypeError) as exc:
            raise RerankProviderError(message="rerank API returned a malformed payload", cause=exc)

        for idx, _ in pairs:
            if idx < 0 or idx >= len(documents):
                raise RerankProviderError(message=f"rerank API returned out-of-range index {idx}")
        return pairs


def simple_rerank(query: str, chunks: Sequence[TextChunk], top_k: int = DEFAULT_RERANK_TOP_K) -> List[RerankResult]:
    """
    [职责] 本地相关性打分：query 词覆盖率 + 整句命中奖励 + 章节乘子。
    [边界] 词表 = 小写空白切分、长度 > 2、去重；0 个词时所有分数为 0；relevance_score 截断到 [0, 1]。
    [上游关系] rerank 降级路径或调用方直接使用。
    [下游关系] 最终排序。
    """
    lowered_query = str(query or "").lower()
    terms = {t for t in lowered_query.split() if len(t) > 2}

    scored: List[RerankResult] = []
    for chunk in chunks:
        text = chunk.text.lower()
        score = 0.0
        if terms:
            score = float(sum(1 for t in terms if t in text))
            if lowered_query and lowered_query in text:
                score += 2.0  # docstring: 整句命中奖励（仅一次）
            score = score / len(terms)

        section = str(chunk.section or "").lower()
        for names, boost in _SIMPLE_SECTION_BOOSTS:
            if any(name in section for name in names):
                score *= boost
                break

        scored.append(
            RerankResult(chunk=chunk, score=score, relevance_score=max(0.0, min(score, 1.0)))
        )

    scored.sort(key=lambda r: r.score, reverse=True)
    return scored[: max(0, int(top_k))]


async def run_rerank(
    query: str,
    chunks: Sequence[TextChunk],
    top_k: int = DEFAULT_RERANK_TOP_K,
    *,
    client: Optional[RerankClient] = None,
    context: Optional[Any] = None,
) -> Tuple[List[RerankResult], RerankStrategy]:
    """
    [职责] 精排并返回实际使用的策略（cohere/simple）。
    [边界] 永不抛错：无凭证记录 warning，调用失败记录 error，均降级到 simple_rerank。
    """
    items = list(chunks)
    if not items or int(top_k) <= 0:
        return [], "none"

    if client is None or not client.configured:
        log_event(
            logger,
            logging.WARNING,
            "rerank.fallback",
            context=context,
            fields={"reason": "missing_credential", "setting": "COHERE_API_KEY"},
        )
        return simple_rerank(query, items, top_k), "simple"

    try:
        pairs = await client.rerank(query, [c.text for c in items], int(top_k))
    except Exception as exc:  # docstring: 任意客户端异常均降级到本地打分
        detail = exc.detail if isinstance(exc, RerankProviderError) else {}
        log_event(
            logger,
            logging.ERROR,
            "rerank.fallback",
            context=context,
            fields={"reason": "provider_error", "error": truncate_text(f"{exc.__class__.__name__}: {exc}"), **detail},
        )
        return simple_rerank(query, items, top_k), "simple"

    results = [
        RerankResult(chunk=items[idx], score=score, relevance_score=score)
        for idx, score in pairs[: int(top_k)]
    ]  # docstring: API 已按相关性降序返回
    return results, "cohere"


async def rerank(
    query: str,
    chunks: Sequence[TextChunk],
    top_k: int = DEFAULT_RERANK_TOP_K,
    *,
    client: Optional[RerankClient] = None,
) -> List[RerankResult]:
    """Rerank chunks down to top_k; never raises."""
    results, _ = await run_rerank(query, chunks, top_k, client=client)
    return results
