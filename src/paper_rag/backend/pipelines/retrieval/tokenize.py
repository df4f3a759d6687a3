# src/paper_rag/backend/pipelines/retrieval/tokenize.py

"""
[职责] tokenize：BM25 使用的英文分词与轻量词干化（小写、去标点、丢弃短词、单次后缀剥离）。
[边界] 无状态、确定性；不做停用词表；不做多轮/链式词干化。
[上游关系] keyword.build_bm25_index / keyword.bm25_search 调用。
[下游关系] 影响 BM25 的 doc_freq 与词频统计。
"""

from __future__ import annotations

import re
from typing import List, Tuple


_NON_WORD_RE = re.compile(r"[^\w\s-]", re.ASCII)  # docstring: 保留 ASCII 字母数字/下划线/空白/连字符
MIN_TERM_LEN = 3  # docstring: 长度 <= 2 的词丢弃

# (suffix, strip_len, min_len_exclusive)，按顺序首个匹配生效
_SUFFIX_RULES: Tuple[Tuple[str, int, int], ...] = (
    ("ing", 3, 0),
    ("tion", 4, 0),
    ("ly", 2, 0),
    ("ed", 2, 4),
    ("s", 1, 3),
)


def stem(term: str) -> str:
    """
    [职责] 单词级后缀剥离（首个匹配规则生效，不链式处理）。
    [边界] "ed" 仅在词长 > 4 时剥离；"s" 仅在词长 > 3 时剥离。
    """
    for suffix, strip_len, min_len in _SUFFIX_RULES:
        if term.endswith(suffix) and len(term) > min_len:
            return term[:-strip_len]
    return term


def tokenize(text: str) -> List[str]:
    """
    [职责] 文本 -> 词干列表（保留重复，顺序与原文一致）。
    [边界] 长度过滤在词干化之前进行。
    [上游关系] BM25 建索引与查询。
    [下游关系] term frequency / doc frequency 统计。
    """
    lowered = str(text or "").lower()
    cleaned = _NON_WORD_RE.sub(" ", lowered)  # docstring: 标点替换为空格
    return [stem(term) for term in cleaned.split() if len(term) >= MIN_TERM_LEN]
