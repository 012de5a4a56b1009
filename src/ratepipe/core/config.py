"""
Configuration management for ratepipe.

Supports environment variables, .env files, and YAML configuration.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from ratepipe.core.models import RateBudgetConfig


class BudgetSettings(BaseSettings):
    """Per-credential rate budget."""

    model_config = SettingsConfigDict(
        env_prefix="RATEPIPE_BUDGET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_per_window: int = Field(default=4, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)
    tolerance_seconds: float = Field(default=5.0, ge=0)
    max_per_day: int = Field(default=500, ge=1)

    def to_config(self) -> RateBudgetConfig:
        """Build the budget configuration shared by every credential."""
        return RateBudgetConfig(
            max_per_window=self.max_per_window,
            window_seconds=self.window_seconds,
            tolerance_seconds=self.tolerance_seconds,
            max_per_day=self.max_per_day,
        )


class PipelineSettings(BaseSettings):
    """Dispatch limits for work queue pipelines."""

    model_config = SettingsConfigDict(
        env_prefix="RATEPIPE_PIPELINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 900 dispatches per minute
    throughput: int = Field(default=15, ge=1, description="Dispatch starts per refill interval")
    max_concurrency: int = Field(default=10, ge=1)
    refill_interval: float = Field(default=1.0, gt=0)


class RotationSettings(BaseSettings):
    """Credential rotation for KeyRotationLimiter."""

    model_config = SettingsConfigDict(
        env_prefix="RATEPIPE_ROTATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    credentials: Annotated[list[str], NoDecode] = Field(default_factory=list)
    cooldown_seconds: float = Field(default=600.0, ge=0)
    retry_delay: float = Field(default=0.01, gt=0)
    acquire_timeout: float | None = Field(default=None, gt=0)

    @field_validator("credentials", mode="before")
    @classmethod
    def split_credentials(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        return [str(item).strip() for item in v if str(item).strip()]


class EngineSettings(BaseSettings):
    """Logging and general settings."""

    model_config = SettingsConfigDict(
        env_prefix="RATEPIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    log_format: str = "console"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in {"json", "console"}:
            raise ValueError(f"Invalid log format: {v}. Must be 'json' or 'console'")
        return v


class Settings(BaseSettings):
    """Combined application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    budget: BudgetSettings = Field(default_factory=BudgetSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    rotation: RotationSettings = Field(default_factory=RotationSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
