"""Tests for settings loading."""

from __future__ import annotations

import pytest

from blobmirror.config import MAX_UPLOAD_SIZE, Settings


class TestSettings:
    """Test Settings defaults and environment overrides."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CACHE_DATABASE_URL", raising=False)
        monkeypatch.delenv("SYNC_BATCH_SIZE", raising=False)
        settings = Settings(_env_file=None)
        assert settings.cache_database_url.startswith("sqlite+aiosqlite://")
        assert settings.sync_batch_size == 100
        assert settings.upload_timeout_minutes == 15
        assert settings.recent_items_limit == 10
        assert settings.max_upload_size == MAX_UPLOAD_SIZE == 10_737_418_240

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CACHE_DATABASE_URL", "sqlite+aiosqlite:///./other.db")
        monkeypatch.setenv("SYNC_BATCH_SIZE", "25")
        monkeypatch.setenv("AZURE_STORAGE_CONNECTION_STRING", "UseDevelopmentStorage=true")
        settings = Settings(_env_file=None)
        assert settings.cache_database_url == "sqlite+aiosqlite:///./other.db"
        assert settings.sync_batch_size == 25
        assert settings.azure_connection_string == "UseDevelopmentStorage=true"
