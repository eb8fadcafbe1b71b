"""
Settings — environment-driven configuration.

    from settlement.config import get_settings

    settings = get_settings()
    engine_url = settings.database_url

Every field can be overridden with a ``SETTLEMENT_``-prefixed environment
variable or a ``.env`` file in the working directory.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SETTLEMENT_",
        env_file=".env",
        extra="ignore",
    )

    # Storage
    database_url: str = "sqlite+aiosqlite:///./settlement.db"
    database_echo: bool = False

    # Money
    currency: str = Field(default="USD", min_length=3, max_length=3)

    # Payment provider
    provider: Literal["simulated", "stripe"] = "simulated"
    stripe_api_key: str | None = None
    webhook_secret: str | None = None
    webhook_tolerance_seconds: int = 300

    # Resilience (provider calls)
    provider_timeout_seconds: float = 10.0
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    retry_factor: float = 2.0
    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_reset_timeout: float = 60.0
    breaker_success_threshold: int = Field(default=3, ge=1)

    # Logging
    log_level: str = "INFO"
    log_json: bool = True


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings()


__all__ = ("Settings", "get_settings")
