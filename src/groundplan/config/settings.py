"""
Application settings using Pydantic.

Provides environment-based configuration loading with GROUNDPLAN_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Database
    database_url: str = "sqlite+aiosqlite:///.groundplan/state.db"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    # Debug
    debug: bool = False

    # State backend
    state_backend: str = "sql"  # memory, sql
    default_scope: str = "default"

    # Locking
    lock_timeout_seconds: float = 0.0  # 0 fails fast when the lock is held
    lock_poll_interval_seconds: float = 1.0
    lock_lease_seconds: float = 60.0
    lock_heartbeat_seconds: float = 20.0

    # Apply
    apply_concurrency: int = 4
    retry_max_attempts: int = 4
    retry_backoff_multiplier: float = 0.5
    retry_backoff_max_seconds: float = 30.0

    # API
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = []

    # HTTP client settings (REST resource handler)
    http_timeout: float = 30.0

    # Simulated provider types keep their resources in this file
    sim_state_path: str = ".groundplan/sim.json"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "GROUNDPLAN_"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
