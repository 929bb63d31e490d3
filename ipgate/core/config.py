"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ipgate.utils.durations import parse_compact_duration


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
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_gate_settings() -> "GateSettings":
    """Build gate policy settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return GateSettings()  # type: ignore[call-arg]


def _build_store_settings() -> "StoreSettings":
    """Build counter store settings from environment.

    See _build_gate_settings() for rationale about the type ignore.
    """

    return StoreSettings()  # type: ignore[call-arg]


def _build_server_settings() -> "ServerSettings":
    return ServerSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class GateSettings(BaseSettings):
    """Rate limiting policy applied to every client address."""

    limit: int = Field(
        100,
        description="Maximum number of requests allowed per timespan (per client)",
        ge=1,
    )
    timespan: timedelta = Field(
        timedelta(hours=1),
        description="Trailing window the limit applies to (e.g., 1h, 90s, 3600)",
    )
    atomic: bool = Field(
        False,
        description="Count and record each access atomically in the store",
    )
    check_timeout_seconds: float | None = Field(
        None,
        description="Upper bound on a single admission check before answering 503",
        gt=0,
    )
    trust_forwarded_for: bool = Field(
        False,
        description="Take the client address from the first X-Forwarded-For hop",
    )
    include_headers: bool = Field(
        True,
        description="Include Retry-After header when throttling",
    )

    model_config = SettingsConfigDict(
        env_prefix="GATE_",
        case_sensitive=False,
    )

    @field_validator("timespan", mode="before")
    @classmethod
    def _parse_timespan(cls, value: Any) -> Any:
        if isinstance(value, str):
            parsed = parse_compact_duration(value)
            if parsed is not None:
                return parsed
            try:
                return timedelta(seconds=float(value))
            except ValueError:
                return value
        return value

    @field_validator("timespan")
    @classmethod
    def _require_positive_timespan(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("timespan must be positive")
        return value


class StoreSettings(BaseSettings):
    """Counter store configuration.

    The postgres backend requires ``uri``; the memory backend keeps records
    in-process and is meant for local development and tests.
    """

    backend: Literal["postgres", "memory"] = Field(
        "postgres",
        description="Counter store backend",
    )
    uri: str | None = Field(
        None,
        description="Datastore connection URI (e.g., postgresql://user@host/db)",
    )
    retry: int = Field(
        1,
        description="Connection attempts per burst before backing off (0 means default)",
        ge=0,
    )
    retry_interval_seconds: float = Field(
        1.0,
        description="Pause between attempts within a burst",
        ge=0,
    )
    backoff_unit_seconds: float = Field(
        1.0,
        description="Scale of the randomized pause between bursts",
        ge=0,
    )
    connect_timeout_seconds: int = Field(
        10,
        description="Transport-level timeout for a single connection attempt",
        ge=1,
    )
    init_schema: bool = Field(
        False,
        description="Create the access table and index at startup if missing",
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class ServerSettings(BaseSettings):
    """HTTP listener configuration."""

    host: str = Field("0.0.0.0", description="Interface to bind")
    port: int = Field(80, description="Port to listen on", ge=1, le=65535)

    model_config = SettingsConfigDict(
        env_prefix="SERVER_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json or plain")
    output: str = Field("stdout", description="stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(0, description="Rotate file after this many bytes (0 disables)")
    backup_count: int = Field(5, description="Number of rotated files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.

    Environments:
    - development: Local development
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    gate: GateSettings = Field(default_factory=_build_gate_settings)
    store: StoreSettings = Field(default_factory=_build_store_settings)
    server: ServerSettings = Field(default_factory=_build_server_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
