# src/paper_rag/backend/utils/logging_.py

"""
[职责] paper_rag 的结构化日志：JSON 行格式、项目根 logger、事件式记录（log_event）与 query 脱敏 helper。
[边界] 只挂载 stdout handler；不改 root logger；trace 字段由调用方（ctx 或 fields）提供。
[上游关系] api.app 启动时 configure_logging；pipelines/services 通过 get_logger + log_event 记事件。
[下游关系] stdout 采集后按 message（事件名）与 user_id/cache_key/trace_id 检索。
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from .constants import TRACE_FIELD_KEYS


DEFAULT_LOGGER_NAME = "paper_rag"  # docstring: 项目根 logger
DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_MAX_TEXT_LEN = 160  # docstring: 日志内文本预览上限
_HANDLER_NAME = "paper_rag_json"

# docstring: 取一个空 LogRecord 的属性作为内置字段集合，其余属性视为 extra
_BUILTIN_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class StructuredLogFormatter(logging.Formatter):
    """One JSON object per record: ts/level/logger/message plus non-null extras."""

    def __init__(self, *, ensure_ascii: bool = True) -> None:
        super().__init__()
        self._ensure_ascii = ensure_ascii

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        out: Dict[str, Any] = {
            "ts": ts.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attr, value in vars(record).items():
            if attr in _BUILTIN_ATTRS or value is None:
                continue
            out[attr] = value

        if record.exc_info:
            out["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            out["stack_info"] = record.stack_info
        return json.dumps(out, ensure_ascii=self._ensure_ascii, default=str)


def configure_logging(
    *,
    logger_name: str = DEFAULT_LOGGER_NAME,
    level: Optional[int] = None,
    ensure_ascii: bool = True,
) -> logging.Logger:
    """
    [职责] 给项目根 logger 挂一个 JSON stdout handler 并设定级别。
    [边界] 幂等：按 handler 名去重；propagate 保持开启（pytest caplog 依赖 root 传播）。
    [上游关系] api.app.create_app（PAPER_RAG_LOG_LEVEL）；get_logger 首次调用兜底。
    """

    root = logging.getLogger(logger_name)
    if level is not None:
        root.setLevel(level)
    elif root.level == logging.NOTSET:
        root.setLevel(DEFAULT_LOG_LEVEL)

    if all(h.get_name() != _HANDLER_NAME for h in root.handlers):
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(StructuredLogFormatter(ensure_ascii=ensure_ascii))
        root.addHandler(handler)

    root.propagate = True
    return root


def get_logger(name: Optional[str] = None, *, level: Optional[int] = None) -> logging.Logger:
    """Child of the ``paper_rag`` logger; ``get_logger("cache")`` -> ``paper_rag.cache``."""

    configure_logging()
    if not name:
        full_name = DEFAULT_LOGGER_NAME
    elif name.startswith(DEFAULT_LOGGER_NAME):
        full_name = name
    else:
        full_name = f"{DEFAULT_LOGGER_NAME}.{name}"
    logger = logging.getLogger(full_name)
    if level is not None:
        logger.setLevel(level)
    return logger


def level_from_name(name: Optional[str], *, default: int = DEFAULT_LOG_LEVEL) -> int:
    raw = (name or "").strip().upper()
    level = logging.getLevelName(raw) if raw else None
    return level if isinstance(level, int) else default


def _trace_fields(context: Any) -> Dict[str, str]:
    # docstring: ctx 可以是 PipelineContext（属性）或 dict（如 request.state 快照）
    out: Dict[str, str] = {}
    for key in TRACE_FIELD_KEYS:
        value = context.get(key) if isinstance(context, Mapping) else getattr(context, key, None)
        if value is not None:
            out[key] = str(value)
    return out


def log_event(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    context: Optional[Any] = None,
    fields: Optional[Mapping[str, Any]] = None,
    exc_info: Optional[Any] = None,
) -> None:
    """
    [职责] 记录一条事件日志：message 为事件名（如 cache.hit），trace 字段取自 context，业务字段取自 fields。
    [边界] None 值字段不写入 record；fields 与 trace 字段同名时 fields 优先。
    [上游关系] rerank/embedding/pipeline/cache_service/middleware。
    """

    extra: Dict[str, Any] = _trace_fields(context) if context is not None else {}
    for key, value in (fields or {}).items():
        if value is not None:
            extra[key] = value
    logger.log(level, message, extra=extra, exc_info=exc_info)


def truncate_text(text: Optional[str], *, max_len: int = DEFAULT_MAX_TEXT_LEN) -> Optional[str]:
    """Cut long text (provider error bodies etc.) before it goes into a log field."""

    if text is None:
        return None
    s = str(text)
    return s if len(s) <= max_len else s[:max_len] + "...(truncated)"


def hash_text(text: Optional[str]) -> Optional[str]:
    """sha256 hex of a user query; lets logs correlate queries without storing them."""

    if text is None:
        return None
    return hashlib.sha256(text.encode("utf-8")).hexdigest() if text else ""
