# src/paper_rag/backend/scripts/init_db.py

"""
[职责] `paper-rag-init-db`：建 rag_cache 表（可先 drop），可选清理已过期缓存条目。
[边界] 不触碰 provider；--purge-expired 只删 expires_at 早于当前 UTC 时间的行，不做容量淘汰。
[上游关系] 部署/CI/本地开发；db.engine.init_db/drop_db 与 SqlCacheRepo.delete_expired。

    paper-rag-init-db --db-url sqlite+aiosqlite:///./.Local/paper_rag.db --purge-expired --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import time
from typing import Any, Dict, Optional, Sequence

from paper_rag.backend.db.base import utcnow
from paper_rag.backend.db.engine import create_engine, create_sessionmaker, drop_db, init_db
from paper_rag.backend.db.repo import SqlCacheRepo


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="paper-rag-init-db", description="Prepare the response-cache database.")
    p.add_argument("--db-url", default=None, help="overrides PAPER_RAG_DATABASE_URL / DATABASE_URL")
    p.add_argument("--drop", action="store_true", help="drop tables before creating them")
    p.add_argument("--purge-expired", action="store_true", help="delete cache entries past expires_at")
    echo = p.add_mutually_exclusive_group()  # docstring: 不传则沿用 SQL_ECHO
    echo.add_argument("--echo", dest="echo", action="store_true", default=None)
    echo.add_argument("--no-echo", dest="echo", action="store_false")
    p.add_argument("--json", action="store_true", help="print the result as one JSON object")
    return p


async def _run_async(
    *,
    db_url: Optional[str],
    drop: bool,
    purge_expired: bool,
    echo: Optional[bool],
) -> Dict[str, Any]:
    """Failures land in result["error"] so the summary is always printed."""
    t0 = time.perf_counter()
    engine = create_engine(url=db_url, echo=echo)
    result: Dict[str, Any] = {
        "ok": False,
        "db_url": engine.url.render_as_string(hide_password=True),
        "echo": engine.echo,
        "dropped": False,
        "created": False,
        "purged": None,
        "duration_ms": 0.0,
        "error": None,
    }
    try:
        if drop:
            await drop_db(engine=engine)
            result["dropped"] = True
        await init_db(engine=engine)
        result["created"] = True
        if purge_expired:
            result["purged"] = await SqlCacheRepo(create_sessionmaker(engine)).delete_expired(utcnow())
        result["ok"] = True
    except Exception as exc:
        result["error"] = f"{exc.__class__.__name__}: {exc}"
    finally:
        await engine.dispose()
        result["duration_ms"] = round((time.perf_counter() - t0) * 1000.0, 2)
    return result


def _print_summary(*, result: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(result, ensure_ascii=True, default=str))
        return
    lines = [
        f"status={'ok' if result['ok'] else 'failed'}",
        f"db_url={result['db_url']} echo={result['echo']}",
        f"dropped={result['dropped']} created={result['created']} purged={result['purged']}",
        f"duration_ms={result['duration_ms']}",
    ]
    if result["error"]:
        lines.append(f"error={result['error']}")
    for line in lines:
        print(f"[init_db] {line}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    result = asyncio.run(
        _run_async(db_url=args.db_url, drop=args.drop, purge_expired=args.purge_expired, echo=args.echo)
    )
    _print_summary(result=result, as_json=args.json)
    return 0 if result["ok"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
