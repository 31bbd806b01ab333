"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) populates values from environment variables, but
    static type checkers treat fields as constructor arguments.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()  # type: ignore[call-arg]


def _build_redis_settings() -> "RedisSettings":
    return RedisSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    admin_key_required: bool = Field(
        True,
        description="Whether admin endpoints (stats/reset) require an API key",
    )
    admin_api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid admin API keys",
    )
    service_api_keys: str | None = Field(
        None,
        description=(
            "Comma-separated keys of trusted services allowed to pass an explicit "
            "key and outcome to the decision endpoint (admin keys are accepted too)"
        ),
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable rate limiting on routes guarded by a preset",
    )
    rate_limit_backend: Literal["memory", "redis"] = Field(
        "memory",
        description="Counter store: per-process memory or shared Redis",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    sweep_interval_seconds: float = Field(
        300.0,
        description="Interval of the background sweep of expired in-memory records (0 disables)",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Adaptive scaling applied on top of the named presets."""

    load_adaptive_enabled: bool = Field(
        False,
        description="Reduce effective limits as tracked load rises (in-memory backend only)",
    )
    load_damping_factor: float = Field(
        0.5,
        description="Fraction of the limit removed at full load",
        ge=0,
        le=1,
    )
    load_refresh_interval_ms: int = Field(
        30_000,
        description="Minimum interval between two load estimate refreshes",
        ge=1,
    )
    load_saturation_keys: int = Field(
        1000,
        description="Tracked key count considered full load by the default load source",
        ge=1,
    )

    geo_enabled: bool = Field(
        False,
        description="Reduce effective limits for high-risk or anonymized origins",
    )
    high_risk_countries: str = Field(
        "CN,RU,KP,IR",
        description="Comma-separated ISO country codes treated as high-risk",
    )
    high_risk_factor: float = Field(
        0.5,
        description="Multiplier applied to the limit for high-risk countries",
        gt=0,
        le=1,
    )
    anonymized_factor: float = Field(
        0.3,
        description="Multiplier applied to the limit for VPN/proxy origins",
        gt=0,
        le=1,
    )
    geo_country_header: str = Field(
        "X-Geo-Country",
        description="Header set by the edge proxy with the resolved country code",
    )
    geo_anonymized_header: str = Field(
        "X-Geo-Anonymized",
        description="Header set by the edge proxy when the origin is a VPN/proxy",
    )
    trust_forwarded_for: bool = Field(
        True,
        description="Derive client keys from X-Forwarded-For when present",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Shared counter store configuration."""

    url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL",
    )
    timeout_ms: int = Field(
        200,
        description="Socket connect/read timeout; a timeout fails open",
        ge=1,
    )
    key_prefix: str = Field(
        "rate_limit:",
        description="Prefix for every rate limit key stored in Redis",
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate file after N bytes (0 disables)")
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
