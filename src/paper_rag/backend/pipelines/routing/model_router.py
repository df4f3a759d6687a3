# src/paper_rag/backend/pipelines/routing/model_router.py

"""
[职责] model_router：按 query 复杂度与上下文长度选择最具成本效益的生成模型，并估算单次/月度成本。
[边界] 不调用任何模型；token 数按“4 字符 ≈ 1 token”近似估算；模型注册表只读、顺序固定。
[上游关系] retrieval_service 在 build_context 之后调用；API /retrieval/model 直接调用。
[下游关系] 生成阶段按 ModelSelection.model 与 get_model_provider 选择 SDK。
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Literal, Mapping, Optional, Tuple

from paper_rag.backend.utils.constants import CHARS_PER_TOKEN, PROMPT_OVERHEAD_TOKENS
from paper_rag.backend.utils.logging_ import get_logger, log_event


logger = get_logger("pipelines.model_router")

ModelTier = Literal["economy", "standard", "premium"]  # docstring: 成本档位
SdkProvider = Literal["openai", "google", "anthropic"]  # docstring: 生成 SDK 提供方

SIMPLE_QUERY_RE = re.compile(r"^(?:what is|who is|when did|where is|define|list|name|how many)")
REASONING_QUERY_RE = re.compile(
    r"compare|contrast|analyze|evaluate|explain why|implications|relate to|synthesize|critique|argue"
)
LONG_OUTPUT_MARKERS = ("detail", "comprehensive")

DEFAULT_OUTPUT_TOKENS = 200
REASONING_OUTPUT_TOKENS = 800
LONG_OUTPUT_TOKENS = 1200

SIMPLE_CONTEXT_TOKEN_LIMIT = 2000  # docstring: 简单问题的短上下文阈值
LONG_CONTEXT_TOKEN_LIMIT = 50000  # docstring: 长上下文阈值


@dataclass(frozen=True)
class ModelConfig:
    """Generation model entry; costs are USD per million tokens."""

    id: str
    provider: str
    tier: ModelTier
    input_cost_per_1m: float
    output_cost_per_1m: float
    max_context_tokens: int


@dataclass(frozen=True)
class QueryAnalysis:
    is_simple: bool
    requires_reasoning: bool
    context_tokens: int
    estimated_output_tokens: int


@dataclass(frozen=True)
class ModelSelection:
    """
    [职责] select_model 输出：所选模型、可读原因与估算成本（USD）。
    """

    model: ModelConfig
    reason: str
    estimated_cost: float
    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class MonthlyCostEstimate:
    model: str
    cost_per_query: float
    monthly_cost: float


def _build_registry(*models: ModelConfig) -> Mapping[str, ModelConfig]:
    return MappingProxyType({m.id: m for m in models})  # docstring: dict 保持插入顺序；只读视图


MODEL_REGISTRY: Mapping[str, ModelConfig] = _build_registry(
    ModelConfig("gemini-1.5-flash", "google", "economy", 0.075, 0.30, 1_000_000),
    ModelConfig("gpt-4o-mini", "openai", "standard", 0.15, 0.60, 128_000),
    ModelConfig("deepseek-chat", "deepseek", "economy", 0.14, 0.28, 64_000),
    ModelConfig("claude-3-5-haiku-latest", "anthropic", "standard", 0.80, 4.00, 200_000),
)

DEFAULT_MODEL_ID = "gpt-4o-mini"  # docstring: 未知模型 id 的兜底


def estimate_tokens(text_length: int) -> int:
    """Approximate token count for a character length (4 chars per token)."""
    return int(math.ceil(max(0, int(text_length)) / CHARS_PER_TOKEN))


def analyze_query(query: str, context_length: int) -> QueryAnalysis:
    """
    [职责] query 复杂度分析：简单问题（前缀匹配）/需要推理（任意位置匹配）/预估输出长度。
    [边界] 大小写不敏感；"detail"/"comprehensive" 覆盖输出长度判断。
    """
    lowered = str(query or "").lower()
    is_simple = bool(SIMPLE_QUERY_RE.match(lowered))
    requires_reasoning = bool(REASONING_QUERY_RE.search(lowered))

    output_tokens = DEFAULT_OUTPUT_TOKENS
    if requires_reasoning:
        output_tokens = REASONING_OUTPUT_TOKENS
    if any(marker in lowered for marker in LONG_OUTPUT_MARKERS):
        output_tokens = LONG_OUTPUT_TOKENS

    return QueryAnalysis(
        is_simple=is_simple,
        requires_reasoning=requires_reasoning,
        context_tokens=estimate_tokens(context_length),
        estimated_output_tokens=output_tokens,
    )


def calculate_cost(model: ModelConfig, input_tokens: int, output_tokens: int) -> float:
    return (input_tokens / 1_000_000) * model.input_cost_per_1m + (output_tokens / 1_000_000) * model.output_cost_per_1m


def first_model_of_tier(
    tier: str,
    registry: Mapping[str, ModelConfig] = MODEL_REGISTRY,
) -> Optional[ModelConfig]:
    """First registry model of the tier, in registry order."""
    for model in registry.values():
        if model.tier == tier:
            return model
    return None


def _largest_context_model(tier: str, registry: Mapping[str, ModelConfig]) -> Optional[ModelConfig]:
    best: Optional[ModelConfig] = None
    for model in registry.values():
        if model.tier != tier:
            continue
        if best is None or model.max_context_tokens > best.max_context_tokens:
            best = model  # docstring: 同等窗口保留先出现者
    return best


def _decide(analysis: QueryAnalysis, registry: Mapping[str, ModelConfig]) -> Tuple[Optional[ModelConfig], str]:
    """
    [职责] 按顺序应用路由规则（首个命中生效）。
    [边界] 规则：简单+短上下文 -> economy；超长上下文 -> 最大窗口 economy；推理 -> standard；其它 -> economy。
    """
    if analysis.is_simple and analysis.context_tokens < SIMPLE_CONTEXT_TOKEN_LIMIT:
        return first_model_of_tier("economy", registry), "simple query, short context: economy model"
    if analysis.context_tokens > LONG_CONTEXT_TOKEN_LIMIT:
        return _largest_context_model("economy", registry), "long context: economy model with the largest window"
    if analysis.requires_reasoning:
        return first_model_of_tier("standard", registry), "reasoning required: standard model"
    return first_model_of_tier("economy", registry), "default cost efficiency: economy model"


def select_model(
    query: str,
    context_length: int,
    preferred_tier: Optional[str] = None,
    *,
    registry: Mapping[str, ModelConfig] = MODEL_REGISTRY,
) -> ModelSelection:
    """
    [职责] 选择生成模型并估算单次成本。
    [边界] context_length 为字符数；input_tokens = 500 + ceil(len(query)/4) + ceil(context_length/4)。
    [上游关系] retrieval_service / API router。
    [下游关系] ModelSelection（model/reason/estimated_cost）。
    """
    analysis = analyze_query(query, context_length)
    input_tokens = PROMPT_OVERHEAD_TOKENS + estimate_tokens(len(query or "")) + analysis.context_tokens
    output_tokens = analysis.estimated_output_tokens

    model: Optional[ModelConfig] = None
    reason = ""
    if preferred_tier:
        model = first_model_of_tier(preferred_tier, registry)
        reason = f"user preferred tier: {preferred_tier}"

    if model is None:
        model, reason = _decide(analysis, registry)
    if model is None:
        model = registry.get(DEFAULT_MODEL_ID) or next(iter(registry.values()))
        reason = f"{reason} (tier unavailable, fallback to {model.id})"

    selection = ModelSelection(
        model=model,
        reason=reason,
        estimated_cost=calculate_cost(model, input_tokens, output_tokens),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
    )
    log_event(
        logger,
        logging.DEBUG,
        "router.selected",
        fields={
            "model": model.id,
            "tier": model.tier,
            "reason": reason,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
        },
    )
    return selection


def get_model_provider(
    model_id: str,
    registry: Mapping[str, ModelConfig] = MODEL_REGISTRY,
) -> Tuple[SdkProvider, str]:
    """
    Map a registry id to the SDK that serves it.
    deepseek speaks the OpenAI protocol; unknown ids fall back to gpt-4o-mini on openai.
    """
    model = registry.get(str(model_id))
    if model is None:
        return "openai", DEFAULT_MODEL_ID
    if model.provider == "google":
        return "google", model.id
    if model.provider == "anthropic":
        return "anthropic", model.id
    return "openai", model.id


def estimate_monthly_cost(
    queries_per_month: int,
    avg_context_tokens: int,
    avg_output_tokens: int,
    tier: str = "economy",
    *,
    registry: Mapping[str, ModelConfig] = MODEL_REGISTRY,
) -> MonthlyCostEstimate:
    """Project monthly spend for a usage profile on the first model of a tier."""
    model = first_model_of_tier(tier, registry) or next(iter(registry.values()))
    cost_per_query = calculate_cost(model, int(avg_context_tokens), int(avg_output_tokens))
    return MonthlyCostEstimate(
        model=model.id,
        cost_per_query=cost_per_query,
        monthly_cost=cost_per_query * int(queries_per_month),
    )
