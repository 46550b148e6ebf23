"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
transfer ledger, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

# Upstream tokentx pages are capped at 10k rows.
MAX_PAGE_SIZE = 10_000


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )
    echo: bool = Field(
        default=False,
        alias="DATABASE_ECHO",
        description="Echo SQL statements for debugging",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")
        return v


class ExplorerSettings(BaseSettings):
    """Block-explorer API settings."""

    model_config = SettingsConfigDict(env_prefix="EXPLORER_", extra="ignore")

    api_key: SecretStr = Field(
        alias="EXPLORER_API_KEY",
        description="Explorer API key",
    )
    base_url: str = Field(
        default="https://api.etherscan.io/v2/api",
        alias="EXPLORER_BASE_URL",
        description="Explorer API endpoint (Etherscan v2 multichain)",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        alias="EXPLORER_REQUEST_TIMEOUT_SECONDS",
        gt=0,
        le=600,
        description="Per-request HTTP timeout",
    )
    max_requests_per_second: float = Field(
        default=5.0,
        alias="EXPLORER_MAX_REQUESTS_PER_SECOND",
        gt=0,
        le=100,
        description="Client-side rate limit for explorer calls",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("EXPLORER_BASE_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class SyncSettings(BaseSettings):
    """Ingestion target and loop behaviour."""

    model_config = SettingsConfigDict(env_prefix="SYNC_", extra="ignore")

    chain_id: int = Field(
        default=1284,
        alias="SYNC_CHAIN_ID",
        ge=1,
        description="Chain ID queried on the explorer (Moonbeam=1284)",
    )
    contract_address: str = Field(
        alias="SYNC_CONTRACT_ADDRESS",
        description="Token contract whose transfers are ingested",
    )
    address: str = Field(
        alias="SYNC_ADDRESS",
        description="Tracked holder/participant address",
    )
    page_size: int = Field(
        default=MAX_PAGE_SIZE,
        alias="SYNC_PAGE_SIZE",
        ge=1,
        le=MAX_PAGE_SIZE,
        description="Rows requested per page; a full page triggers another fetch",
    )
    max_attempts: int = Field(
        default=3,
        alias="SYNC_MAX_ATTEMPTS",
        ge=1,
        le=20,
        description="Attempts per upstream call before the run is aborted",
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        alias="SYNC_RETRY_BASE_DELAY_SECONDS",
        ge=0,
        le=60,
        description="Initial backoff between attempts (doubles each retry)",
    )
    retry_max_delay_seconds: float = Field(
        default=30.0,
        alias="SYNC_RETRY_MAX_DELAY_SECONDS",
        ge=0,
        le=600,
        description="Upper bound on a single backoff sleep",
    )
    on_persist_failure: Literal["abort", "skip"] = Field(
        default="abort",
        alias="SYNC_ON_PERSIST_FAILURE",
        description="After persist retries: abort the run, or drop the page and continue",
    )
    persist_max_attempts: int = Field(
        default=2,
        alias="SYNC_PERSIST_MAX_ATTEMPTS",
        ge=1,
        le=10,
        description="Insert attempts per page before on_persist_failure applies",
    )

    @field_validator("contract_address", "address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Validate EVM address format."""
        if not Web3.is_address(v):
            raise ValueError(f"Not a valid EVM address: {v}")
        return v.lower()


class RedisSettings(BaseSettings):
    """Redis settings for the optional run lock."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; enables the sync run lock when set",
    )
    lock_ttl_seconds: int = Field(
        default=900,
        alias="SYNC_LOCK_TTL_SECONDS",
        ge=10,
        le=24 * 3600,
        description="Expiry of the run lock if a holder dies without releasing it",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def lock_enabled(self) -> bool:
        return self.url is not None


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from transfer_ledger.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.sync.chain_id)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    explorer: ExplorerSettings = Field(
        default_factory=lambda: ExplorerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    sync: SyncSettings = Field(
        default_factory=lambda: SyncSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "explorer": {
                "base_url": self.explorer.base_url,
                "api_key": "(set)" if self.explorer.api_key.get_secret_value() else "(not set)",
                "max_requests_per_second": str(self.explorer.max_requests_per_second),
            },
            "sync": {
                "chain_id": str(self.sync.chain_id),
                "contract_address": self.sync.contract_address,
                "address": self.sync.address,
                "page_size": str(self.sync.page_size),
                "max_attempts": str(self.sync.max_attempts),
                "on_persist_failure": self.sync.on_persist_failure,
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
