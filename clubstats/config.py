"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./clubstats.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_STATEMENT_TIMEOUT_MS: int = 60000  # Reconciliation batches must finish well inside this

    # Logging
    LOG_LEVEL: str = "INFO"

    # ═══════════════════════════════════════════════════════════════
    # Reconciliation jobs (keyword summary + review like counts)
    # ═══════════════════════════════════════════════════════════════

    RECONCILE_SCHEDULER_ENABLED: bool = True  # Kill-switch for the nightly jobs
    RECONCILE_CRON: str = "0 0 2 * * *"  # sec min hour dom mon dow (daily 02:00)
    RECONCILE_TIMEZONE: str = "Asia/Seoul"

    # Keyset page size per job (rows per batch transaction)
    CLUB_REVIEW_KEYWORD_SCHEDULE_BATCH: int = 1000
    PERFORMANCE_REVIEW_SCHEDULE_BATCH: int = 1000

    # False = every run rescans from id 0 (idempotent full pass).
    # True = resume from the last committed batch cursor stored in reconcile_checkpoints.
    RECONCILE_RESUME_FROM_CHECKPOINT: bool = False

    # pg_try_advisory_lock key namespace (one key per job derived from this)
    RECONCILE_ADVISORY_LOCK_BASE: int = 771000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
