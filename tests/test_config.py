"""
Tests for configuration module.
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from caseshelf.config import Settings, clear_settings_cache, get_settings


class TestSettingsValidation:
    """Tests for Settings validation."""

    def test_settings_loads_from_env(self, mock_env_vars: dict[str, str], temp_dir: Path) -> None:
        """Test that settings correctly loads from environment variables."""
        settings = get_settings()

        assert settings.DATA_DIR == temp_dir / "data"
        assert settings.MAX_CACHE_BYTES == 1048576
        assert settings.STARTING_CREDITS == 50
        assert settings.GRANT_RETENTION_PERIODS == 7
        assert settings.LOG_LEVEL == "DEBUG"

    def test_defaults(self) -> None:
        """Test defaults when nothing is configured."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.DATA_DIR == Path(".caseshelf")
        assert settings.STARTING_CREDITS == 50
        assert settings.GRANT_RETENTION_PERIODS == 7
        assert settings.CONNECTIVITY_PROBE_URL is None
        assert settings.LOG_LEVEL == "INFO"

    def test_negative_quota_rejected(self) -> None:
        """Test MAX_CACHE_BYTES must not be negative."""
        with patch.dict(os.environ, {"MAX_CACHE_BYTES": "-1"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_retention_bounds(self) -> None:
        """Test GRANT_RETENTION_PERIODS must be at least one."""
        with patch.dict(os.environ, {"GRANT_RETENTION_PERIODS": "0"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_probe_url_requires_http(self) -> None:
        """Test the connectivity probe must be an http(s) URL."""
        with patch.dict(os.environ, {"CONNECTIVITY_PROBE_URL": "ftp://example.com"}, clear=True):
            with pytest.raises(ValidationError) as exc_info:
                Settings(_env_file=None)

        assert "http(s)" in str(exc_info.value)

    def test_blank_probe_url_is_none(self) -> None:
        """Test a blank probe URL disables probing."""
        with patch.dict(os.environ, {"CONNECTIVITY_PROBE_URL": "  "}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.CONNECTIVITY_PROBE_URL is None

    def test_invalid_log_level(self) -> None:
        """Test LOG_LEVEL must be a known level."""
        with patch.dict(os.environ, {"LOG_LEVEL": "VERBOSE"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)


class TestSettingsHelpers:
    """Tests for derived settings."""

    def test_zero_quota_is_unbounded(self) -> None:
        """Test MAX_CACHE_BYTES=0 disables the quota."""
        with patch.dict(os.environ, {"MAX_CACHE_BYTES": "0"}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.cache_quota_bytes is None

    def test_database_paths(self, mock_settings: Settings, temp_dir: Path) -> None:
        """Test database files live in DATA_DIR."""
        assert mock_settings.documents_db_path == temp_dir / "data" / "documents.db"
        assert mock_settings.ledger_db_path == temp_dir / "data" / "ledger.db"

    def test_ensure_directories(self, mock_settings: Settings) -> None:
        """Test the data directory is created."""
        mock_settings.ensure_directories()

        assert mock_settings.DATA_DIR.is_dir()

    def test_display(self, mock_settings: Settings) -> None:
        """Test display output includes every setting."""
        display = mock_settings.display()

        assert display["STARTING_CREDITS"] == 50
        assert display["LOG_FILE"] is None
        assert "DATA_DIR" in display


class TestSettingsCache:
    """Tests for the settings singleton."""

    def test_get_settings_is_cached(self, mock_env_vars: dict[str, str]) -> None:
        """Test get_settings returns the same instance."""
        assert get_settings() is get_settings()

    def test_clear_settings_cache(self, mock_env_vars: dict[str, str]) -> None:
        """Test clearing the cache picks up new environment values."""
        first = get_settings()

        with patch.dict(os.environ, {"STARTING_CREDITS": "75"}):
            clear_settings_cache()
            second = get_settings()

        assert first is not second
        assert second.STARTING_CREDITS == 75
