"""Centralised application settings loaded from environment / .env file."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

_DEFAULT_DB_URL = f"sqlite+aiosqlite:///{_PROJECT_ROOT / 'data' / 'mindflow.db'}"


class Settings(BaseSettings):
    """Runtime configuration for the MindFlow host process.

    Values are read from environment variables first, then from a *.env* file
    located at the project root.  Scoring constants are not settings: they
    live in the engine table (see :mod:`mindflow.engine.config`), which can be
    pointed at a JSON file through ``ENGINE_CONFIG_FILE``.
    """

    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ──────────────────────────────────────────────
    database_url: str = _DEFAULT_DB_URL
    persist_snapshots: bool = True

    # ── API server ────────────────────────────────────────────
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    api_secret_key: str = "change-me-to-a-random-secret"

    # ── CORS ──────────────────────────────────────────────────
    cors_origins: str = "*"  # comma-separated origins, or "*" for all

    # ── Event delivery ────────────────────────────────────────
    webhook_url: str = ""
    webhook_timeout_seconds: float = 5.0

    # ── Engine ────────────────────────────────────────────────
    engine_config_file: str = ""
    tick_interval_ms: float | None = Field(None, gt=0)  # overrides the engine table
    pipeline_maxsize: int = 10_000

    # ── Logging ───────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Return a cached :class:`Settings` singleton."""
    return Settings()
