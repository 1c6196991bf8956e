"""Application configuration using Pydantic Settings.

Settings are read from environment variables only; each concern has its own
prefix:
- LIMITER_* controls the window, retry budget and HTTP enforcement policy
- STORE_* selects the counter store backend
- LOG_* controls logging output
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _build_limiter_settings() -> "LimiterSettings":
    """Build limiter settings from environment.

    Pydantic Settings (v2) populates values from environment variables when
    instantiated without arguments, which is why nested groups are built via
    default_factory.
    """

    return LimiterSettings()


def _build_store_settings() -> "StoreSettings":
    return StoreSettings()


def _build_log_settings() -> "LogSettings":
    return LogSettings()


class LimiterSettings(BaseSettings):
    """Fixed-window limiter configuration."""

    enabled: bool = Field(
        True,
        description="Enable rate limiting on protected routes",
    )
    max_requests: int = Field(
        2500,
        description="Maximum number of operations allowed per window (per identifier)",
        ge=1,
    )
    duration_ms: int = Field(
        3_600_000,
        description="Window length in milliseconds",
        ge=1,
    )
    max_attempts: int = Field(
        10,
        description="Maximum read/write passes per consume before giving up on contention",
        ge=1,
    )
    backoff_ms: int = Field(
        5,
        description="Base delay between conflicting attempts, in milliseconds",
        ge=0,
    )
    fail_open: bool = Field(
        False,
        description="Allow requests when the counter store is unavailable",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )

    model_config = SettingsConfigDict(
        env_prefix="LIMITER_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Counter store configuration."""

    backend: Literal["memory", "redis"] = Field(
        "memory",
        description="Counter store backend (memory is per-process only)",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL used by the redis backend",
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log destination: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated log files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main settings container composed from domain-specific settings."""

    limiter: LimiterSettings = Field(default_factory=_build_limiter_settings)
    store: StoreSettings = Field(default_factory=_build_store_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - nested settings are created via default_factory
# so env loading works.
settings = Settings()
