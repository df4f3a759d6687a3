# src/paper_rag/config.py
from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_repo_root(start: Path) -> Path:
    """Closest ancestor holding a pyproject.toml; `start` itself when none is found."""
    here = start.resolve()
    for candidate in (here, *here.parents):
        if (candidate / "pyproject.toml").exists():
            return candidate
    return here


PACKAGE_ROOT = Path(__file__).resolve().parent
REPO_ROOT = _find_repo_root(PACKAGE_ROOT)
ENV_FILE = REPO_ROOT / ".env"

# .env also feeds the plain os.getenv switches in db.engine (DATABASE_URL, SQL_ECHO).
load_dotenv(str(ENV_FILE), override=False)

LOCAL_ROOT = REPO_ROOT / ".Local"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    PAPER_RAG_DATABASE_URL: str | None = None
    PAPER_RAG_LOG_LEVEL: str = "INFO"
    PAPER_RAG_HTTP_TIMEOUT_S: float = 30.0

    # dense embeddings, OpenAI-compatible /embeddings
    OPENAI_API_KEY: str | None = None
    OPENAI_API_BASE: str = "https://api.openai.com/v1"
    PAPER_RAG_EMBED_MODEL: str = "text-embedding-3-small"
    PAPER_RAG_EMBED_DIM: int = 1536
    PAPER_RAG_EMBED_BATCH_SIZE: int = 100

    # Cohere /rerank; without a key the local scorer is used
    COHERE_API_KEY: str | None = None
    COHERE_API_BASE: str = "https://api.cohere.ai/v1"
    PAPER_RAG_RERANK_MODEL: str = "rerank-english-v3.0"

    # response cache
    PAPER_RAG_CACHE_TTL_HOURS: int = 24
    PAPER_RAG_CACHE_MAX_ENTRIES_PER_USER: int = 100

    @property
    def default_database_url(self) -> str:
        return f"sqlite+aiosqlite:///{(LOCAL_ROOT / 'paper_rag.db').as_posix()}"


settings = Settings()


def get_settings() -> Settings:
    """
    Fresh Settings from the current environment.
    Clients call this on construction so tests can monkeypatch env vars.
    """
    return Settings()
