# src/paper_rag/backend/pipelines/retrieval/citations.py

"""
[职责] citations：最终结果 -> Citation 列表与生成阶段的上下文字符串；论文段落 -> TextChunk 转换。
[边界] 不做引用格式化（APA/MLA 等）；不调用模型；纯函数。
[上游关系] pipeline.hybrid_retrieve 产出最终结果；调用方提供 PaperContent 列表。
[下游关系] 生成 prompt（build_context）、前端引用展示、缓存持久化（Citation）。
"""

from __future__ import annotations

from typing import Iterable, List, Sequence

from paper_rag.backend.schemas.rag import Citation, PaperContent, TextChunk
from paper_rag.backend.utils.constants import QUOTE_MAX_CHARS

from .types import RetrievalResult


_CONTEXT_SEPARATOR = "\n---\n\n"  # docstring: 上下文块分隔符


def truncate_quote(text: str, max_length: int = QUOTE_MAX_CHARS) -> str:
    """
    [职责] 截断引用片段：优先在句末（. ? !）截断，否则硬截断并追加 "..."。
    [边界] 句末位置需大于 max_length 的一半（默认 150）才采用。
    """
    if len(text) <= max_length:
        return text

    truncated = text[:max_length]
    last_sentence = max(truncated.rfind("."), truncated.rfind("?"), truncated.rfind("!"))
    if last_sentence > max_length * 0.5:
        return truncated[: last_sentence + 1]
    return truncated + "..."


def build_citations(results: Sequence[RetrievalResult]) -> List[Citation]:
    """One Citation per final result, same order; relevance_score is the final score."""
    return [
        Citation(
            paper_id=r.chunk.paper_id,
            paper_title=r.chunk.paper_title,
            authors=r.chunk.authors,
            year=r.chunk.year,
            section=r.chunk.section,
            quote=truncate_quote(r.chunk.text),
            page_number=r.chunk.page_number,
            relevance_score=float(r.score),
        )
        for r in results
    ]


def build_context(results: Sequence[RetrievalResult]) -> str:
    """
    [职责] 生成 LLM 上下文字符串：[n] From "<title>" (<section>), p.<page>:\\n<text>\\n。
    [边界] section/page 缺失时省略对应片段；块之间以 "\\n---\\n\\n" 连接。
    [上游关系] retrieval_service 在检索完成后调用。
    [下游关系] 生成阶段 prompt；select_model 的 context_length。
    """
    blocks: List[str] = []
    for i, r in enumerate(results, start=1):
        chunk = r.chunk
        section = f" ({chunk.section})" if chunk.section else ""
        page = f", p.{chunk.page_number}" if chunk.page_number else ""
        blocks.append(f'[{i}] From "{chunk.paper_title}"{section}{page}:\n{chunk.text}\n')
    return _CONTEXT_SEPARATOR.join(blocks)


def papers_to_chunks(papers: Iterable[PaperContent]) -> List[TextChunk]:
    """
    [职责] 将“论文元数据 + 段落”转换为 TextChunk 列表。
    [边界] chunk_index 为跨论文的全局递增计数；id = "<paper_id>-<chunk_index>"；作者以 ", " 拼接。
    """
    chunks: List[TextChunk] = []
    chunk_index = 0
    for item in papers:
        paper = item.paper
        authors = ", ".join(paper.authors) if paper.authors else None
        for para in item.content.paragraphs:
            chunks.append(
                TextChunk(
                    id=f"{paper.id}-{chunk_index}",
                    paper_id=paper.id,
                    paper_title=paper.title,
                    authors=authors,
                    year=paper.year,
                    text=para.text,
                    section=para.section,
                    page_number=para.page_number,
                    chunk_index=chunk_index,
                )
            )
            chunk_index += 1
    return chunks
