"""Settings for the limiter service, read from the environment.

``APP_ENV`` (development, testing, staging, production) selects an optional
``.env.<APP_ENV>`` file at the project root. Values are grouped per concern:
``RATE_LIMIT_*`` for the limiter and ``LOG_*`` for logging.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_ENV = os.getenv("APP_ENV", "development")

PROJECT_ROOT = Path(__file__).resolve().parents[2]

_KNOWN_ENVS = ("development", "testing", "staging", "production")

_env_path = PROJECT_ROOT / f".env.{APP_ENV if APP_ENV in _KNOWN_ENVS else 'development'}"
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings ignore env_file, so the file is pushed into os.environ
# before any settings object is built.
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_rate_limit_settings() -> "RateLimitSettings":
    """Read ``RATE_LIMIT_*`` variables."""

    return RateLimitSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    """Build logging settings from environment."""

    return LogSettings()  # type: ignore[call-arg]


class RateLimitSettings(BaseSettings):
    """Sliding-window rate limiter configuration."""

    enabled: bool = Field(
        True,
        description="Enable rate limiting on guarded routes",
    )
    rate: str = Field(
        "60 requests in 1 minute",
        description="Rate literal, e.g. '10 requests in 5 minutes'",
    )
    backend: Literal["memory", "redis"] = Field(
        "memory",
        description="Counter storage: process memory or a shared Redis instance",
    )
    redis_url: str | None = Field(
        None,
        description="Redis connection URL (required when backend is 'redis')",
    )
    key_prefix: str = Field(
        "window-limiter",
        description="Prefix for Redis counter keys",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    max_tracked_keys: int | None = Field(
        None,
        description="Upper bound on tracked logical keys (LRU); unbounded when unset",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log line format",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Where log records are written",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output is 'file'",
    )
    max_bytes: int | None = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (None disables rotation)",
    )
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """All settings, one attribute per concern.

    Built once at import; malformed values fail the import.
    """

    app_env: str = APP_ENV
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Process-wide settings
settings = Settings()
