"""Configuration management via pydantic-settings.

All configuration is loaded from environment variables and/or a .env file.
Every external credential is optional: without it the matching service
degrades to "no information found" instead of failing.
"""

from __future__ import annotations

import logging
from pathlib import Path

import structlog
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; SuccessionResearchBot/1.0)"


class Config(BaseSettings):
    """Application configuration loaded from environment variables / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Storage ---
    database_path: str = "data/research.db"
    log_level: str = "INFO"
    max_retry_attempts: int = 2

    # --- Search (Serper) ---
    serper_api_key: str | None = None
    search_country: str = "de"
    search_language: str = "de"

    # --- LLM ---
    anthropic_api_key: str | None = None
    llm_model: str = "claude-haiku-4-5-20251001"
    llm_max_tokens: int = 1500
    llm_temperature: float = 0.3

    # --- Page fetching ---
    fetch_timeout_seconds: float = 15.0
    fetch_max_chars: int = 10000
    user_agent: str = DEFAULT_USER_AGENT

    # --- Orchestration / HTTP ---
    module_concurrency: int = 1
    cors_allow_origins: list[str] = ["*"]

    # ---- Validators ----

    @field_validator("serper_api_key", "anthropic_api_key")
    @classmethod
    def _blank_key_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v.upper()

    @field_validator("max_retry_attempts")
    @classmethod
    def _valid_retry_attempts(cls, v: int) -> int:
        if v < 0 or v > 5:
            raise ValueError("MAX_RETRY_ATTEMPTS must be between 0 and 5")
        return v

    @field_validator("module_concurrency")
    @classmethod
    def _valid_module_concurrency(cls, v: int) -> int:
        if v < 1 or v > 3:
            raise ValueError("MODULE_CONCURRENCY must be between 1 and 3")
        return v

    @field_validator("fetch_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("FETCH_TIMEOUT_SECONDS must be positive")
        return v

    @model_validator(mode="after")
    def _ensure_db_parent_dir(self) -> Config:
        """Auto-create parent directory for database file."""
        db_path = Path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return self

    # ---- Convenience properties ----

    @property
    def search_available(self) -> bool:
        return bool(self.serper_api_key)

    @property
    def llm_enabled(self) -> bool:
        return bool(self.anthropic_api_key)


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog to drop events below ``level``."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=False,
    )
