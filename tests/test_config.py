"""Tests for environment-driven configuration."""

import pytest
from pydantic import ValidationError

from budget_sync.config import (
    AppSettings,
    HistorySettings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """No .env file and no inherited variables."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "SYNC_DEBOUNCE_SECONDS",
        "HISTORY_CAPACITY",
        "GOOGLE_SHEETS_CREDENTIALS_PATH",
        "GOOGLE_SHEETS_SPREADSHEET_ID",
        "LOG_LEVEL",
        "DEBUG_MODE",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    def test_defaults(self):
        sync = SyncSettings()
        assert sync.debounce_seconds == 1.0
        assert sync.synced_display_seconds == 2.0
        assert sync.error_display_seconds == 5.0
        assert HistorySettings().capacity == 50

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SYNC_DEBOUNCE_SECONDS", "0.25")
        monkeypatch.setenv("HISTORY_CAPACITY", "10")
        assert get_settings().sync.debounce_seconds == 0.25
        assert get_settings().history.capacity == 10

    def test_invalid_capacity(self, monkeypatch):
        monkeypatch.setenv("HISTORY_CAPACITY", "0")
        with pytest.raises(ValidationError):
            HistorySettings()

    def test_log_level_is_normalized(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        assert AppSettings().log_level == "DEBUG"

    def test_debug_mode_overrides_log_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "warning")
        assert AppSettings().effective_log_level == "WARNING"
        monkeypatch.setenv("DEBUG_MODE", "true")
        assert AppSettings().effective_log_level == "DEBUG"


class TestValidateAllSettings:
    def test_reports_missing_google_sheets_config(self):
        results = validate_all_settings()
        assert results["sync"] is True
        assert results["history"] is True
        assert results["google_sheets"] is False
        assert "google_sheets_error" in results

    def test_reports_invalid_values(self, monkeypatch):
        monkeypatch.setenv("HISTORY_CAPACITY", "0")
        results = validate_all_settings()
        assert results["history"] is False
