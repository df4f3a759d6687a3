# src/paper_rag/backend/pipelines/retrieval/embedding.py

"""
[职责] embedding：封装 OpenAI 兼容 embeddings 接口（单条/批量）、余弦相似度与 chunk 向量懒加载。
[边界] 不做本地重试；不做向量持久化；仅在 chunk 对象上缓存向量（进程内）。
[上游关系] vector.dense_search / pipeline.hybrid_retrieve 调用；配置来自 paper_rag.config。
[下游关系] dense 检索打分；RetrievalStats.embedding_tokens 计费统计。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import httpx
import numpy as np

from paper_rag.backend.schemas.rag import TextChunk
from paper_rag.backend.utils.constants import MAX_EMBED_BATCH_SIZE
from paper_rag.backend.utils.errors import (
    ConfigurationError,
    DimensionMismatchError,
    EmbeddingProviderError,
)
from paper_rag.backend.utils.logging_ import get_logger, log_event
from paper_rag.config import get_settings


logger = get_logger("pipelines.embedding")


@dataclass(frozen=True)
class EmbeddingBatch:
    """
    [职责] 单次 embeddings 调用结果（与输入同序的向量 + token 用量）。
    [边界] vectors 已按响应 index 还原顺序。
    """

    vectors: List[List[float]]
    tokens: int


class EmbeddingClient(Protocol):
    """Single-method embedding provider contract (one request per call)."""

    batch_size: int

    async def embed(self, texts: Sequence[str]) -> EmbeddingBatch: ...


class OpenAIEmbeddingClient:
    """
    [职责] OpenAI embeddings HTTP 客户端（text-embedding-3-small, 1536 维）。
    [边界] 单次请求不拆分；拆分由 get_batch_embeddings 负责；凭证在请求时校验。
    [上游关系] retrieval_service 构造（默认读取 Settings）；测试可注入 httpx transport。
    [下游关系] get_embedding / get_batch_embeddings / embed_chunks。
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
        batch_size: Optional[int] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        s = get_settings()
        self._api_key = str(api_key if api_key is not None else (s.OPENAI_API_KEY or "")).strip()
        self._base_url = str(base_url or s.OPENAI_API_BASE).rstrip("/")
        self.model = str(model or s.PAPER_RAG_EMBED_MODEL)
        self.dimensions = int(dimensions or s.PAPER_RAG_EMBED_DIM)
        self.batch_size = min(MAX_EMBED_BATCH_SIZE, int(batch_size or s.PAPER_RAG_EMBED_BATCH_SIZE))
        self._timeout_s = float(timeout_s or s.PAPER_RAG_HTTP_TIMEOUT_S)
        self._transport = transport  # docstring: 测试注入 httpx.MockTransport

    def snapshot(self) -> Dict[str, Any]:
        """Non-secret provider parameters."""
        return {
            "kind": "embedder",
            "provider": "openai",
            "name": self.model,
            "params": {"dimensions": self.dimensions, "batch_size": self.batch_size},
            "endpoint": f"{self._base_url}/embeddings",
        }

    async def embed(self, texts: Sequence[str]) -> EmbeddingBatch:
        """
        [职责] 发起一次 embeddings 请求并按 index 还原顺序。
        [边界] 凭证缺失抛 ConfigurationError；非 2xx/网络异常/响应不合法抛 EmbeddingProviderError。
        """
        items = [str(t) for t in texts]
        if not items:
            return EmbeddingBatch(vectors=[], tokens=0)
        if not self._api_key:
            raise ConfigurationError(setting="OPENAI_API_KEY")

        payload = {"model": self.model, "input": items, "dimensions": self.dimensions}
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout_s) as client:
                resp = await client.post(f"{self._base_url}/embeddings", headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise EmbeddingProviderError(message=f"embedding request failed: {exc.__class__.__name__}", cause=exc)

        if resp.status_code < 200 or resp.status_code >= 300:
            raise EmbeddingProviderError(
                message=f"embedding API returned {resp.status_code}",
                status_code=resp.status_code,
                retryable=resp.status_code == 429 or resp.status_code >= 500,
            )

        try:
            data = resp.json()
            rows = sorted(data["data"], key=lambda row: int(row["index"]))  # docstring: 按 index 还原输入顺序
            vectors = [[float(x) for x in row["embedding"]] for row in rows]
            tokens = int((data.get("usage") or {}).get("total_tokens") or 0)
        except (ValueError, KeyError, TypeError) as exc:
            raise EmbeddingProviderError(message="embedding API returned a malformed payload", cause=exc)

        if len(vectors) != len(items):
            raise EmbeddingProviderError(
                message=f"embedding API returned {len(vectors)} vectors for {len(items)} inputs"
            )
        return EmbeddingBatch(vectors=vectors, tokens=tokens)


async def get_embedding(text: str, *, client: EmbeddingClient) -> Tuple[List[float], int]:
    """Embed one text; returns (vector, tokens)."""
    batch = await client.embed([text])
    if not batch.vectors:
        raise EmbeddingProviderError(message="embedding API returned no vector")
    return batch.vectors[0], batch.tokens


async def get_batch_embeddings(
    texts: Sequence[str],
    *,
    client: EmbeddingClient,
) -> Tuple[List[List[float]], int]:
    """
    [职责] 批量 embedding：按 client.batch_size 切分（上限 MAX_EMBED_BATCH_SIZE=100）并发请求，结果与输入同序。
    [边界] 任一子批失败则整体失败（异常透传）；空输入不发请求。
    [上游关系] embed_chunks 调用。
    [下游关系] chunk.embedding 写入。
    """
    items = list(texts)
    if not items:
        return [], 0

    size = max(1, min(MAX_EMBED_BATCH_SIZE, int(getattr(client, "batch_size", 0) or MAX_EMBED_BATCH_SIZE)))
    batches = [items[i : i + size] for i in range(0, len(items), size)]
    results = await asyncio.gather(*(client.embed(b) for b in batches))  # docstring: gather 保持子批顺序

    vectors: List[List[float]] = []
    tokens = 0
    for res in results:
        vectors.extend(res.vectors)
        tokens += int(res.tokens)

    log_event(
        logger,
        logging.DEBUG,
        "embedding.batch",
        fields={"texts": len(items), "batches": len(batches), "tokens": tokens},
    )
    return vectors, tokens


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    [职责] 余弦相似度。
    [边界] 维度不一致抛 DimensionMismatchError；任一向量模为 0 返回 0.0。
    """
    if len(a) != len(b):
        raise DimensionMismatchError(left_dim=len(a), right_dim=len(b))
    a_arr = np.asarray(a, dtype=np.float64)
    b_arr = np.asarray(b, dtype=np.float64)
    norm_product = np.linalg.norm(a_arr) * np.linalg.norm(b_arr)
    if norm_product == 0:
        return 0.0
    return float(np.dot(a_arr, b_arr) / norm_product)


def cosine_scores(query: Sequence[float], vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """
    [职责] query 对一组向量的余弦相似度（一次矩阵运算）。
    [边界] 任一向量维度与 query 不一致抛 DimensionMismatchError；模为 0 的行得分 0.0。
    [上游关系] vector.dense_search（在 worker 线程中调用）。
    """
    q = np.asarray(query, dtype=np.float64)
    for vec in vectors:
        if len(vec) != q.shape[0]:
            raise DimensionMismatchError(left_dim=q.shape[0], right_dim=len(vec))
    if not vectors:
        return np.zeros(0, dtype=np.float64)

    matrix = np.asarray(vectors, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    out = np.zeros_like(dots)
    np.divide(dots, norms, out=out, where=norms != 0)
    return out


async def embed_chunks(
    chunks: Sequence[TextChunk],
    *,
    client: EmbeddingClient,
) -> Tuple[List[TextChunk], int]:
    """
    [职责] 为缺少 embedding 的 chunk 计算向量并原地写回（幂等）。
    [边界] 已有 embedding 的 chunk 不重新计算；全部已有时不调用 provider。
    [上游关系] hybrid_retrieve 的 dense 分支调用。
    [下游关系] dense_search 使用 chunk.embedding。
    """
    items = list(chunks)
    missing = [c for c in items if c.embedding is None]
    if not missing:
        return items, 0

    vectors, tokens = await get_batch_embeddings([c.text for c in missing], client=client)
    for chunk, vector in zip(missing, vectors):
        chunk.embedding = vector  # docstring: 进程内缓存到 chunk 对象
    return items, tokens
