# src/paper_rag/backend/utils/constants.py

"""
[职责] 集中定义默认常量与协议字段名（trace/timing/provider/cache/retrieval），降低跨模块硬编码。
[边界] 不包含运行时可变配置；不读取环境变量；不依赖业务具体实现。
[上游关系] services/pipelines/api 在构建请求/记录/响应时引用这些稳定字段与默认值。
[下游关系] schemas/db/logging 等使用一致字段名以便排障与回放。
"""

from __future__ import annotations


TRACE_ID_KEY = "trace_id"  # docstring: trace_id 字段
REQUEST_ID_KEY = "request_id"  # docstring: request_id 字段
PARENT_REQUEST_ID_KEY = "parent_request_id"  # docstring: parent_request_id 字段
USER_ID_KEY = "user_id"  # docstring: 缓存归属用户字段
CACHE_KEY_KEY = "cache_key"  # docstring: 缓存 key 字段

TRACE_FIELD_KEYS = (  # docstring: 结构化日志推荐字段集合
    TRACE_ID_KEY,
    REQUEST_ID_KEY,
    PARENT_REQUEST_ID_KEY,
    USER_ID_KEY,
    CACHE_KEY_KEY,
)

PROVIDER_SNAPSHOT_KEY = "provider_snapshot"  # docstring: provider 快照字段
TIMING_MS_KEY = "timing_ms"  # docstring: timing_ms 字段
TIMING_TOTAL_KEY = "total"  # docstring: timing_ms 的总耗时 key（短形式）
TIMING_TOTAL_MS_KEY = "total_ms"  # docstring: timing_ms 的总耗时 key（含单位）

# --- retrieval defaults ---
DEFAULT_TOP_K = 20  # docstring: 每路召回与融合截断默认值
DEFAULT_RERANK_TOP_K = 10  # docstring: 最终返回条数默认值
DEFAULT_BM25_WEIGHT = 0.4  # docstring: BM25 融合权重
DEFAULT_DENSE_WEIGHT = 0.6  # docstring: dense 融合权重
DEFAULT_RRF_K = 60  # docstring: RRF 平滑常量

BM25_K1 = 1.5  # docstring: BM25 词频饱和参数
BM25_B = 0.75  # docstring: BM25 文档长度归一化参数

QUOTE_MAX_CHARS = 300  # docstring: Citation.quote 最大长度
MAX_EMBED_BATCH_SIZE = 100  # docstring: 单次 embeddings 请求的文本数上限

# --- cache defaults ---
CACHE_KEY_PREFIX = "cache_"  # docstring: 缓存 key 前缀

# --- model router ---
CHARS_PER_TOKEN = 4  # docstring: 近似 token 估算（字符/4）
PROMPT_OVERHEAD_TOKENS = 500  # docstring: system prompt 固定开销
