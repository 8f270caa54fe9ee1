from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path

from pydantic import BaseModel, Field

PACKAGE_DIR = Path(__file__).parent


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _resolve_data_dir() -> Path:
    override = _env("FUZE_HOME")
    if override:
        return Path(override).expanduser().resolve()
    return PACKAGE_DIR / "data"


def _resolve_database_path() -> Path:
    override = _env("FUZE_DATABASE_PATH")
    if override:
        return Path(override).expanduser()
    return _resolve_data_dir() / "fuze_submissions.db"


class Settings(BaseModel):
    data_dir: Path = Field(default_factory=_resolve_data_dir)

    store_backend: str = Field(default_factory=lambda: _env("FUZE_STORE", "sqlite").lower())
    database_path: Path = Field(default_factory=_resolve_database_path)

    supabase_url: str = Field(default_factory=lambda: _env("SUPABASE_URL"))
    supabase_key: str = Field(default_factory=lambda: _env("SUPABASE_KEY"))
    supabase_table: str = Field(default_factory=lambda: _env("SUPABASE_TABLE", "submissions"))

    openai_api_key: str = Field(default_factory=lambda: _env("OPENAI_API_KEY"))
    openai_base_url: str = Field(
        default_factory=lambda: _env("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
    )
    llm_provider: str = Field(default_factory=lambda: _env("LLM_PROVIDER", "openai"))
    llm_model: str = Field(default_factory=lambda: _env("LLM_MODEL"))

    extraction_delay: float = Field(default_factory=lambda: float(_env("FUZE_EXTRACTION_DELAY", "2.0")))
    extraction_concurrency: int = Field(default_factory=lambda: int(_env("FUZE_EXTRACTION_CONCURRENCY", "1")))
    transcript_min_length: int = Field(default_factory=lambda: int(_env("FUZE_TRANSCRIPT_MIN_LENGTH", "100")))
    proxy_timeout_seconds: float = 120.0

    host: str = Field(default_factory=lambda: _env("FUZE_HOST", "127.0.0.1"))
    port: int = Field(default_factory=lambda: int(_env("FUZE_PORT", "3000")))

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_directories()
    return settings
