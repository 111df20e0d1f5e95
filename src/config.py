from __future__ import annotations

from decimal import Decimal
from functools import cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    database_url: str = "sqlite:///exit_planner.db"
    log_level: str = "INFO"
    before_target_margin_percent: Decimal = Field(default=Decimal(10), ge=0, lt=100)
    recompute_max_attempts: int = Field(default=3, ge=1)
    alert_channels: tuple[str, ...] = ("email",)

    model_config = SettingsConfigDict(
        env_prefix="EXIT_PLANNER_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@cache
def config() -> AppSettings:
    return AppSettings()
