from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    This uses pydantic-settings so that we get type validation and defaults.
    Settings are loaded from environment variables with optional .env file override.
    """

    # App basics
    ENV: Literal["development", "staging", "production"] = "development"
    """Environment mode: affects logging and database reset protection."""

    DEBUG: bool = True
    """Enable debug mode: verbose logging and development features."""

    APP_NAME: str = "Smart Reconciliation"
    """Service name shown in the OpenAPI docs and startup logs."""

    # DB
    DATABASE_URL: Optional[str] = None
    """Database connection URL. If None, uses SQLite for development."""

    TEST_DATABASE_URL: Optional[str] = None
    """Test database URL. Separate from main DB for testing."""

    # Reconciliation
    RECONCILIATION_CHUNK_SIZE: int = 1000
    """Number of batch records loaded and reconciled per chunk."""

    PARTIAL_MATCH_VARIANCE: float = 0.02
    """Relative amount tolerance for PARTIAL_MATCH (0.02 = 2%)."""

    MATCH_CANDIDATE_LIMIT: int = 10
    """Maximum cross-batch candidates scanned by EXACT_MATCH / PARTIAL_MATCH."""

    DUPLICATE_SCAN_LIMIT: int = 5
    """Maximum same-batch siblings scanned by DUPLICATE_DETECTION."""

    RECONCILIATION_DISABLED_RULES: list[str] = []
    """Rule names disabled for this deployment (e.g. '["PARTIAL_MATCH"]')."""

    # Batch worker
    WORKER_RETRY_ATTEMPTS: int = 3
    """Attempts the batch worker makes when reconciliation hits a storage failure."""

    WORKER_RETRY_DELAY: float = 5.0
    """Initial delay in seconds between worker retry attempts."""

    # Model config
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid re-parsing .env repeatedly.

    Uses LRU cache to ensure only one Settings instance exists per process,
    improving performance and ensuring consistency.
    """
    return Settings()
