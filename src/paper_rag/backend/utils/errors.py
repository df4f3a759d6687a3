# src/paper_rag/backend/utils/errors.py

"""
[职责] paper_rag 的错误体系：检索/缓存/provider 错误码、HTTP status 与 retryable 提示。
[边界] 不依赖 FastAPI；ErrorResponse 组装在 api/errors.py。
[上游关系] embedding/rerank client、cosine_similarity、cache store 抛出；routers 抛 BadRequestError。
[下游关系] api/errors.py 依据 http_status/retryable 输出 ErrorResponse 与 search_status。

错误树：

    DomainError
    ├── BadRequestError                 400  bad_request
    ├── PipelineError                   500  pipeline_error
    │   └── DimensionMismatchError      500  retrieval.dimension_mismatch
    └── ExternalDependencyError         503  external_dependency
        ├── ProviderError
        │   ├── EmbeddingProviderError  503  embedding.provider_error
        │   │   └── ConfigurationError  503  config.missing_credential（不可重试）
        │   └── RerankProviderError     503  rerank.provider_error（由本地打分吸收）
        └── CacheError                  503  cache.store_unavailable（由缓存层吸收）
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional, Tuple


ErrorDetail = Dict[str, Any]

# docstring: 允许 AREA__REASON 或 area.reason 两种写法
_CODE_UPPER = re.compile(r"^[A-Z][A-Z0-9]*(?:__[A-Z0-9]+)+$")
_CODE_DOTTED = re.compile(r"^[a-z][a-z0-9]*(?:\.[a-z0-9_]+)+$")

# docstring: 通用错误码 -> (http_status, retryable)
_GENERIC_CODES: Dict[str, Tuple[int, bool]] = {
    "bad_request": (400, False),
    "pipeline_error": (500, False),
    "external_dependency": (503, True),
    "internal_error": (500, False),
}

EMBEDDING_PROVIDER_ERROR_CODE = "embedding.provider_error"
CONFIG_MISSING_CREDENTIAL_CODE = "config.missing_credential"
RERANK_PROVIDER_ERROR_CODE = "rerank.provider_error"
DIMENSION_MISMATCH_CODE = "retrieval.dimension_mismatch"
CACHE_STORE_ERROR_CODE = "cache.store_unavailable"


def is_valid_error_code(error_code: str) -> bool:
    if not error_code:
        return False
    if error_code in _GENERIC_CODES:
        return True
    return bool(_CODE_UPPER.match(error_code) or _CODE_DOTTED.match(error_code))


def _checked_detail(detail: Optional[ErrorDetail]) -> ErrorDetail:
    out = {} if detail is None else detail
    if not isinstance(out, dict):
        raise ValueError("detail must be a dict")
    try:
        json.dumps(out)
    except TypeError as exc:
        raise ValueError("detail must be JSON-serializable") from exc
    return out


class DomainError(Exception):
    """
    [职责] 所有可预期错误的基类：error_code + message + JSON-safe detail，附带 http_status/retryable。
    [边界] 构造时校验错误码格式与 detail 可序列化，不合规直接 ValueError。
    [下游关系] to_http_error / api.errors.to_error_response。
    """

    def __init__(
        self,
        *,
        error_code: str,
        message: str,
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
        http_status: Optional[int] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        if not is_valid_error_code(error_code):
            raise ValueError(f"invalid error_code: {error_code}")
        default_status, default_retryable = _GENERIC_CODES.get(error_code, (500, False))

        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.detail = _checked_detail(detail)
        self.cause = cause
        self.http_status = default_status if http_status is None else http_status
        self.retryable = default_retryable if retryable is None else retryable
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.error_code,
            "message": self.message,
            "detail": self.detail,
            "retryable": bool(self.retryable),
        }


class BadRequestError(DomainError):
    """Invalid caller input (400)."""

    def __init__(
        self,
        *,
        message: str = "bad request",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(error_code="bad_request", message=message, detail=detail, cause=cause)


class PipelineError(DomainError):
    def __init__(
        self,
        *,
        message: str = "pipeline error",
        error_code: str = "pipeline_error",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            error_code=error_code, message=message, detail=detail, cause=cause, http_status=500, retryable=False
        )


class DimensionMismatchError(PipelineError):
    """Query and chunk vectors disagree on dimension; the search is aborted (never degraded)."""

    def __init__(self, *, left_dim: int, right_dim: int) -> None:
        self.left_dim = int(left_dim)
        self.right_dim = int(right_dim)
        super().__init__(
            message=f"vector dimension mismatch: {self.left_dim} != {self.right_dim}",
            error_code=DIMENSION_MISMATCH_CODE,
            detail={"left_dim": self.left_dim, "right_dim": self.right_dim},
        )


class ExternalDependencyError(DomainError):
    """
    [职责] 外部依赖（OpenAI / Cohere / 缓存库）不可用，HTTP 503。
    [边界] retryable 默认 True；api 层据此区分 degraded 与 unavailable。
    """

    def __init__(
        self,
        *,
        message: str = "external dependency error",
        error_code: str = "external_dependency",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(
            error_code=error_code,
            message=message,
            detail=detail,
            cause=cause,
            http_status=503,
            retryable=True if retryable is None else retryable,
        )


class ProviderError(ExternalDependencyError):
    """Model provider call failed; detail carries provider name and upstream status, never the key."""

    def __init__(
        self,
        *,
        provider: str,
        message: str,
        error_code: str = "external_dependency",
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        self.provider = str(provider)
        self.status_code = status_code
        detail: ErrorDetail = {"provider": self.provider}
        if status_code is not None:
            detail["status_code"] = int(status_code)
        super().__init__(message=message, error_code=error_code, detail=detail, cause=cause, retryable=retryable)


class EmbeddingProviderError(ProviderError):
    def __init__(
        self,
        *,
        message: str,
        provider: str = "openai",
        error_code: str = EMBEDDING_PROVIDER_ERROR_CODE,
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(
            provider=provider,
            message=message,
            error_code=error_code,
            status_code=status_code,
            cause=cause,
            retryable=retryable,
        )


class ConfigurationError(EmbeddingProviderError):
    """A provider credential (e.g. OPENAI_API_KEY) is missing; search is unavailable until it is set."""

    def __init__(self, *, setting: str, provider: str = "openai") -> None:
        self.setting = str(setting)
        super().__init__(
            message=f"{self.setting} is not configured",
            provider=provider,
            error_code=CONFIG_MISSING_CREDENTIAL_CODE,
            retryable=False,
        )
        self.detail["setting"] = self.setting


class RerankProviderError(ProviderError):
    def __init__(
        self,
        *,
        message: str,
        provider: str = "cohere",
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            provider=provider,
            message=message,
            error_code=RERANK_PROVIDER_ERROR_CODE,
            status_code=status_code,
            cause=cause,
        )


class CacheError(ExternalDependencyError):
    """Cache store read/write failed; ResponseCache turns this into a miss."""

    def __init__(self, *, message: str = "cache store unavailable", cause: Optional[Exception] = None) -> None:
        super().__init__(message=message, error_code=CACHE_STORE_ERROR_CODE, cause=cause)


def is_degraded_error(error: Exception) -> bool:
    """True for retryable dependency failures; missing credentials count as unavailable."""
    if isinstance(error, ConfigurationError):
        return False
    return isinstance(error, ExternalDependencyError) and bool(error.retryable)


def to_http_error(error: Exception, *, trace_id: Optional[str] = None) -> Tuple[int, Dict[str, Any]]:
    """
    [职责] 异常 -> (status, {"error": {...}})；未知异常统一为 internal_error，不回显原始消息。
    [上游关系] api/errors.to_error_response。
    """

    if isinstance(error, DomainError):
        status_code, body = error.http_status, error.to_dict()
    else:
        status_code = _GENERIC_CODES["internal_error"][0]
        body = {"code": "internal_error", "message": "internal error", "detail": {}, "retryable": False}
    if trace_id:
        body["trace_id"] = trace_id
    return status_code, {"error": body}
