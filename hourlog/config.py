"""
HourLog — Centralized configuration.

Loads all settings from .env. Nothing here is mandatory: the text-enrichment
key is optional and every other setting has a working default.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from hourlog/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite
    DATABASE_PATH: str = "data/hourlog.db"
    DB_BUSY_TIMEOUT_SECONDS: float = 5.0
    CONFLICT_RETRIES: int = 3

    # Timezone assigned to newly registered users
    DEFAULT_TIMEZONE: str = "UTC"

    # Summary enrichment, provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str = ""
    ENRICHMENT_TIMEOUT_SECONDS: float = 12.0

    # Input bounds
    TITLE_MAX_LENGTH: int = 200
    TEXT_MAX_LENGTH: int = 5000
    MAX_ESTIMATE_MINUTES: int = 24 * 60
    MAX_TARGET_INDEX: int = 1000

    # Backlog paging
    BACKLOG_PAGE_SIZE: int = 20
    BACKLOG_MAX_PAGE_SIZE: int = 100

    @field_validator(
        "CONFLICT_RETRIES", "TITLE_MAX_LENGTH", "TEXT_MAX_LENGTH",
        "MAX_ESTIMATE_MINUTES", "MAX_TARGET_INDEX",
        "BACKLOG_PAGE_SIZE", "BACKLOG_MAX_PAGE_SIZE",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("DB_BUSY_TIMEOUT_SECONDS", "ENRICHMENT_TIMEOUT_SECONDS", mode="before")
    @classmethod
    def parse_seconds(cls, v: str | float) -> float:
        return float(v)


def _load_settings() -> Settings:
    """Load settings from environment, falling back to defaults."""
    defaults = Settings()
    return Settings(
        DATABASE_PATH=os.getenv("DATABASE_PATH", defaults.DATABASE_PATH),
        DB_BUSY_TIMEOUT_SECONDS=os.getenv(
            "DB_BUSY_TIMEOUT_SECONDS", defaults.DB_BUSY_TIMEOUT_SECONDS,
        ),
        CONFLICT_RETRIES=os.getenv("CONFLICT_RETRIES", defaults.CONFLICT_RETRIES),
        DEFAULT_TIMEZONE=os.getenv("DEFAULT_TIMEZONE", defaults.DEFAULT_TIMEZONE),
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", defaults.LLM_PROVIDER),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=os.getenv("LLM_API_KEY", ""),
        ENRICHMENT_TIMEOUT_SECONDS=os.getenv(
            "ENRICHMENT_TIMEOUT_SECONDS", defaults.ENRICHMENT_TIMEOUT_SECONDS,
        ),
        TITLE_MAX_LENGTH=os.getenv("TITLE_MAX_LENGTH", defaults.TITLE_MAX_LENGTH),
        TEXT_MAX_LENGTH=os.getenv("TEXT_MAX_LENGTH", defaults.TEXT_MAX_LENGTH),
        MAX_ESTIMATE_MINUTES=os.getenv(
            "MAX_ESTIMATE_MINUTES", defaults.MAX_ESTIMATE_MINUTES,
        ),
        MAX_TARGET_INDEX=os.getenv("MAX_TARGET_INDEX", defaults.MAX_TARGET_INDEX),
        BACKLOG_PAGE_SIZE=os.getenv("BACKLOG_PAGE_SIZE", defaults.BACKLOG_PAGE_SIZE),
        BACKLOG_MAX_PAGE_SIZE=os.getenv(
            "BACKLOG_MAX_PAGE_SIZE", defaults.BACKLOG_MAX_PAGE_SIZE,
        ),
    )


# Singleton, imported by all other modules as:
#   from hourlog.config import settings
settings = _load_settings()
