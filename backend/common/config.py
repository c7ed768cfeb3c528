"""Application configuration via environment variables.

Uses pydantic-settings to load from .env file and environment variables.
All config is centralized here — modules should import `get_settings()`.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SelectionPolicyName = Literal["tiered", "rarity"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ─── Database ───
    database_url: str = "sqlite+aiosqlite:///./predictor.db"
    db_echo: bool = False
    auto_create_tables: bool = True

    # ─── App ───
    environment: str = "development"
    log_level: str = "INFO"

    # ─── Session Gate ───
    usage_limit: int = Field(default=15, ge=1)

    # ─── Draw ───
    selection_policy: SelectionPolicyName = "tiered"
    confidence_min: int = 70
    confidence_max: int = 99
    max_resample_attempts: int = Field(default=50, ge=1)
    rare_chance: float = Field(default=1 / 15, ge=0.0, le=1.0)

    # ─── Presentation hints ───
    reveal_delay_seconds: float = 3.0  # Caller-owned suspense delay

    # ─── Deposit / Affiliate ───
    affiliate_link: str = "https://1waff.com/?p=YOUR_CODE_HERE"
    redeposit_amount_cents: int = 40000
    deposit_resets_usage: bool = True

    @model_validator(mode="after")
    def _check_confidence_range(self) -> Settings:
        if self.confidence_min > self.confidence_max:
            msg = (
                f"confidence_min ({self.confidence_min}) must not exceed "
                f"confidence_max ({self.confidence_max})"
            )
            raise ValueError(msg)
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton.

    Uses lru_cache so Settings is only instantiated once.
    In tests, call `get_settings.cache_clear()` to reset.
    """
    return Settings()
