# playground/conftest.py

"""
[职责] gate 测试公共 fixtures：隔离的临时 sqlite 引擎、会话工厂与会话，以及通用的 chunk 构造器。
[边界] 不连接真实 provider；每个测试独立数据库文件，避免污染 .Local 默认库。
[上游关系] pytest 自动加载。
[下游关系] sql_gate / cache_gate / fastapi_gate 使用 engine/sessionmaker/session。
"""

from __future__ import annotations

from typing import AsyncIterator, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from paper_rag.backend.db.engine import create_engine, create_sessionmaker, drop_db, init_db
from paper_rag.backend.schemas.rag import TextChunk


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """Isolated sqlite engine with all tables created."""
    db_file = tmp_path / "gate.db"  # docstring: 独立临时 sqlite 文件
    eng = create_engine(url=f"sqlite+aiosqlite:///{db_file}", echo=False)
    await init_db(engine=eng)
    try:
        yield eng
    finally:
        await drop_db(engine=eng)
        await eng.dispose()


@pytest_asyncio.fixture
async def sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_sessionmaker(engine)


@pytest_asyncio.fixture
async def session(sessionmaker: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with sessionmaker() as s:
        yield s


def make_chunk(
    chunk_id: str,
    text: str,
    *,
    paper_id: str = "paper-1",
    section: Optional[str] = None,
    page_number: Optional[int] = None,
    embedding: Optional[List[float]] = None,
    chunk_index: int = 0,
    paper_title: str = "Test Paper",
) -> TextChunk:
    """Build a TextChunk with sensible defaults."""  # docstring: 测试共享构造器
    return TextChunk(
        id=chunk_id,
        paper_id=paper_id,
        paper_title=paper_title,
        authors="A. Author",
        year=2024,
        text=text,
        section=section,
        page_number=page_number,
        chunk_index=chunk_index,
        embedding=embedding,
    )


@pytest.fixture
def chunk_factory():
    return make_chunk
