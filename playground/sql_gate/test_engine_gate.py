# playground/sql_gate/test_engine_gate.py

"""
[职责] engine gate：验证 db/engine.py 的最小可用性（可创建 engine、init_db、drop_db、URL 解析顺序）。
[边界] 不跑 FastAPI；不引入检索 pipeline；只验证 DB 基础设施可用且不污染默认路径。
[上游关系] 依赖 backend/db/engine.py 与 backend/db/base.py、backend/db/models 注册。
[下游关系] api/deps 的 get_session 与 SqlCacheRepo 依赖 SessionLocal 的一致行为。
"""

from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from paper_rag.backend.db.engine import create_engine, drop_db, init_db, resolve_db_url


pytestmark = pytest.mark.sql_gate


@pytest.mark.asyncio
async def test_engine_init_and_drop(tmp_path) -> None:
    """Init DB creates the cache table; drop DB removes it (on isolated sqlite file)."""  # docstring: 防污染默认本地库
    db_file = tmp_path / "engine_gate.db"  # docstring: 独立临时 sqlite 文件
    url = f"sqlite+aiosqlite:///{db_file}"

    engine: AsyncEngine = create_engine(url=url, echo=False)  # docstring: 临时引擎
    try:
        await drop_db(engine=engine)  # docstring: 幂等（即使不存在也应安全）
        await init_db(engine=engine)  # docstring: create_all

        async with engine.connect() as conn:
            rows = (await conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))).fetchall()
            names = {r[0] for r in rows}
            idx = (await conn.execute(text("SELECT name FROM sqlite_master WHERE type='index'"))).fetchall()
            indexes = {r[0] for r in idx}

        assert "rag_cache" in names
        assert "ix_rag_cache_user_expires" in indexes

        await drop_db(engine=engine)

        async with engine.connect() as conn:
            rows2 = (await conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))).fetchall()
            names2 = {r[0] for r in rows2}

        assert "rag_cache" not in names2
    finally:
        await engine.dispose()


def test_resolve_db_url_prefers_override(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///from-env.db")
    assert resolve_db_url("sqlite+aiosqlite:///explicit.db") == "sqlite+aiosqlite:///explicit.db"
