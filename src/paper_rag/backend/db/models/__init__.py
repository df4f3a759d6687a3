# src/paper_rag/backend/db/models/__init__.py

"""
[职责] db.models 聚合导出：集中声明 ORM Models，供 engine.init_db 与 repo 层统一导入。
[边界] 仅做导入与 __all__ 暴露；不包含任何业务逻辑。
"""

from __future__ import annotations

from ..base import Base
from .cache import RagCacheModel

__all__ = [
    "Base",
    "RagCacheModel",
]
