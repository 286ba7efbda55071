"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates limits and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Optional:
        DATA_DIR: Directory holding the local databases
        MAX_CACHE_BYTES: Quota for cached documents (0 disables the quota)
        MAX_DOCUMENT_BYTES: Largest single document the fetcher accepts
        FETCH_TIMEOUT_SECONDS: HTTP timeout for document fetches
        STARTING_CREDITS: Balance granted when an account is opened
        GRANT_RETENTION_PERIODS: Access grants kept per gate key
        CONNECTIVITY_PROBE_URL: URL polled to detect connectivity
        CONNECTIVITY_PROBE_INTERVAL_SECONDS: Poll interval for the probe
        LOG_LEVEL: Logging level
        LOG_FILE: Optional JSON-lines log file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    DATA_DIR: Path = Field(default=Path(".caseshelf"), description="Local data directory")
    MAX_CACHE_BYTES: int = Field(
        default=512 * 1024 * 1024,
        ge=0,
        description="Quota for cached documents in bytes (0 = unbounded)",
    )

    # Fetching
    MAX_DOCUMENT_BYTES: int = Field(
        default=50 * 1024 * 1024, gt=0, description="Maximum size of a fetched document"
    )
    FETCH_TIMEOUT_SECONDS: float = Field(
        default=30.0, gt=0.0, description="HTTP timeout for document fetches"
    )

    # Credits
    STARTING_CREDITS: int = Field(
        default=50, ge=0, description="Balance granted when an account is opened"
    )
    GRANT_RETENTION_PERIODS: int = Field(
        default=7, ge=1, le=365, description="Access grant periods retained per gate key"
    )

    # Connectivity
    CONNECTIVITY_PROBE_URL: str | None = Field(
        default=None, description="URL polled to detect connectivity"
    )
    CONNECTIVITY_PROBE_INTERVAL_SECONDS: float = Field(
        default=15.0, gt=0.0, description="Connectivity probe interval"
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON-lines log file")

    @field_validator("CONNECTIVITY_PROBE_URL")
    @classmethod
    def validate_probe_url(cls, v: str | None) -> str | None:
        """Require an http(s) URL for the connectivity probe."""
        if v is None or not v.strip():
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("CONNECTIVITY_PROBE_URL must be an http(s) URL")
        return v.strip()

    @property
    def cache_quota_bytes(self) -> int | None:
        """Document cache quota, None when unbounded."""
        return self.MAX_CACHE_BYTES or None

    @property
    def documents_db_path(self) -> Path:
        """SQLite database for cached documents."""
        return self.DATA_DIR / "documents.db"

    @property
    def ledger_db_path(self) -> Path:
        """SQLite database for accounts, transactions and access grants."""
        return self.DATA_DIR / "ledger.db"

    def ensure_directories(self) -> None:
        """Create the data directory if it doesn't exist."""
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)

    def display(self) -> dict[str, str | int | float | None]:
        """Return settings for display."""
        return {
            "DATA_DIR": str(self.DATA_DIR),
            "MAX_CACHE_BYTES": self.MAX_CACHE_BYTES,
            "MAX_DOCUMENT_BYTES": self.MAX_DOCUMENT_BYTES,
            "FETCH_TIMEOUT_SECONDS": self.FETCH_TIMEOUT_SECONDS,
            "STARTING_CREDITS": self.STARTING_CREDITS,
            "GRANT_RETENTION_PERIODS": self.GRANT_RETENTION_PERIODS,
            "CONNECTIVITY_PROBE_URL": self.CONNECTIVITY_PROBE_URL,
            "CONNECTIVITY_PROBE_INTERVAL_SECONDS": self.CONNECTIVITY_PROBE_INTERVAL_SECONDS,
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
