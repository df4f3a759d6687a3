# playground/utils_gate/test_errors_logging_gate.py

"""
[职责] utils gate：验证错误码合同、HTTP 映射、降级判定与结构化 JSON 日志输出。
[边界] 纯单元测试；不启动 FastAPI。
[上游关系] backend/utils/errors.py, backend/utils/logging_.py, backend/api/errors.py。
[下游关系] 所有 router 的错误响应与日志排障。
"""

from __future__ import annotations

import json
import logging

import pytest

from paper_rag.backend.api.errors import SEARCH_DEGRADED, SEARCH_UNAVAILABLE, to_error_response
from paper_rag.backend.pipelines.base.context import PipelineContext
from paper_rag.backend.utils.errors import (
    BadRequestError,
    CacheError,
    ConfigurationError,
    DimensionMismatchError,
    DomainError,
    EmbeddingProviderError,
    RerankProviderError,
    is_degraded_error,
    is_valid_error_code,
    to_http_error,
)
from paper_rag.backend.utils.logging_ import (
    StructuredLogFormatter,
    get_logger,
    hash_text,
    level_from_name,
    log_event,
    truncate_text,
)


pytestmark = pytest.mark.utils_gate


@pytest.mark.parametrize(
    "code,valid",
    [
        ("bad_request", True),
        ("embedding.provider_error", True),
        ("CACHE__UNAVAILABLE", True),
        ("Bad Code", False),
        ("", False),
    ],
)
def test_error_code_format(code: str, valid: bool) -> None:
    assert is_valid_error_code(code) is valid


def test_domain_error_rejects_invalid_code_and_unsafe_detail() -> None:
    with pytest.raises(ValueError):
        DomainError(error_code="nope", message="x")
    with pytest.raises(ValueError):
        DomainError(error_code="bad_request", message="x", detail={"obj": object()})


def test_to_http_error_maps_domain_and_unknown_errors() -> None:
    status, payload = to_http_error(BadRequestError(message="bad input"), trace_id="t-1")
    assert status == 400
    assert payload["error"] == {
        "code": "bad_request",
        "message": "bad input",
        "detail": {},
        "retryable": False,
        "trace_id": "t-1",
    }

    status, payload = to_http_error(RuntimeError("secret internals"))
    assert status == 500
    assert payload["error"]["code"] == "internal_error"
    assert "secret" not in payload["error"]["message"]  # docstring: 未知异常不泄露细节


def test_dimension_mismatch_is_pipeline_error() -> None:
    err = DimensionMismatchError(left_dim=3, right_dim=4)
    status, payload = to_http_error(err)
    assert status == 500
    assert payload["error"]["detail"] == {"left_dim": 3, "right_dim": 4}
    assert is_degraded_error(err) is False


def test_degraded_vs_unavailable() -> None:
    assert is_degraded_error(EmbeddingProviderError(message="503", status_code=503, retryable=True)) is True
    assert is_degraded_error(EmbeddingProviderError(message="401", status_code=401, retryable=False)) is False
    assert is_degraded_error(ConfigurationError(setting="OPENAI_API_KEY")) is False
    assert is_degraded_error(RerankProviderError(message="timeout")) is True
    assert is_degraded_error(CacheError()) is True
    assert is_degraded_error(ValueError("x")) is False


def test_api_error_response_adds_search_status() -> None:
    status, resp = to_error_response(ConfigurationError(setting="OPENAI_API_KEY"), trace_id="t-2")
    assert status == 503
    assert resp.error.detail["search_status"] == SEARCH_UNAVAILABLE
    assert resp.error.detail["setting"] == "OPENAI_API_KEY"

    status, resp = to_error_response(EmbeddingProviderError(message="boom", retryable=True))
    assert resp.error.detail["search_status"] == SEARCH_DEGRADED
    assert resp.error.trace_id  # docstring: 缺省时生成兜底 trace_id

    status, resp = to_error_response(BadRequestError())
    assert status == 400
    assert "search_status" not in resp.error.detail


def test_structured_formatter_emits_json_with_extras() -> None:
    record = logging.LogRecord(
        name="paper_rag.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="cache.hit",
        args=(),
        exc_info=None,
    )
    record.user_id = "u1"
    record.cache_key = "cache_deadbeef"
    record.skipped = None

    payload = json.loads(StructuredLogFormatter().format(record))

    assert payload["message"] == "cache.hit"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "paper_rag.test"
    assert payload["user_id"] == "u1"
    assert payload["cache_key"] == "cache_deadbeef"
    assert "skipped" not in payload  # docstring: None 字段不输出
    assert payload["ts"].endswith("+00:00")


def test_log_event_attaches_context_fields(caplog) -> None:
    logger = get_logger("utils_gate")
    ctx = PipelineContext.from_trace(user_id="u-9")

    with caplog.at_level(logging.INFO, logger="paper_rag"):
        log_event(logger, logging.INFO, "retrieval.done", context=ctx, fields={"count": 3, "empty": None})

    record = next(r for r in caplog.records if r.getMessage() == "retrieval.done")
    assert record.name == "paper_rag.utils_gate"
    assert record.user_id == "u-9"
    assert record.trace_id
    assert record.count == 3
    assert not hasattr(record, "empty")


def test_logging_helpers() -> None:
    assert level_from_name("debug") == logging.DEBUG
    assert level_from_name("nonsense") == logging.INFO
    assert level_from_name(None, default=logging.WARNING) == logging.WARNING
    assert truncate_text("x" * 5, max_len=10) == "xxxxx"
    assert truncate_text("x" * 20, max_len=10) == "x" * 10 + "...(truncated)"
    assert hash_text("") == ""
    assert hash_text(None) is None
    assert len(hash_text("query") or "") == 64
