from __future__ import annotations
from functools import lru_cache
from typing import List
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ──────────────────────────────────────────────────────────────────
    APP_NAME: str = "Battle Tracker"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # ── CORS ─────────────────────────────────────────────────────────────────
    CORS_ORIGINS: List[str] = ["http://localhost:5173"]

    # ── Database ─────────────────────────────────────────────────────────────
    DB_USER: str  # required, no default
    DB_PASSWORD: str  # required, no default
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "battles"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_URL: str = ""  # full SQLAlchemy URL, overrides the DB_* parts (e.g. sqlite+aiosqlite)

    # ── Eclesiar API ─────────────────────────────────────────────────────────
    ECLESIAR_API_URL: str  # required, no default
    ECLESIAR_API_KEY: str = ""  # fallback when a request carries no key
    INCLUDE_EVENT_WARS: bool = False

    # ── HTTP client ──────────────────────────────────────────────────────────
    HTTP_TIMEOUT: float = 8.0
    REQUEST_DELAY_SECONDS: float = 0.05   # spacing before every upstream call
    MAX_RETRIES: int = 5                  # total attempts on HTTP 429
    RETRY_BASE_DELAY_SECONDS: float = 1.0  # doubles on each attempt

    # ── Ingestion ────────────────────────────────────────────────────────────
    HITS_MAX_PAGES: int = 1000
    PLAYER_CACHE_TTL_HOURS: int = 24

    @property
    def DATABASE_URL(self) -> str:
        from urllib.parse import quote_plus
        if self.DB_URL:
            return self.DB_URL
        return (
            f"postgresql+asyncpg://{quote_plus(self.DB_USER)}:{quote_plus(self.DB_PASSWORD)}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of {allowed}")
        return v

    @field_validator("MAX_RETRIES")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MAX_RETRIES must be at least 1")
        return v

    model_config = {"env_file": ".env", "extra": "ignore"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
