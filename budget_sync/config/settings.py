"""
Configuration for Budget Sync

Every tunable value is read from the environment (or a .env file) through
pydantic-settings, grouped by the collaborator it configures: sync timing,
undo history, the SQLite working copy and the Google Sheets backend.
The engine's timing constants are settings rather than literals so that
tests can shrink them to fractions of a second.
"""

import warnings
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Sync engine timing configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    debounce_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="Delay after the last change before a debounced push runs"
    )
    synced_display_seconds: float = Field(
        default=2.0,
        gt=0.0,
        description="How long the 'synced' status is shown before returning to idle"
    )
    error_display_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="How long the 'error' status is shown before returning to idle"
    )
    poll_interval_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Interval for polling the remote change log"
    )


class HistorySettings(BaseSettings):
    """Undo/redo history configuration."""

    model_config = SettingsConfigDict(
        env_prefix="HISTORY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    capacity: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum number of undoable commands kept"
    )


class LocalStoreSettings(BaseSettings):
    """Embedded SQLite store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOCAL_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    path: str = Field(
        default="budget.db",
        description="Path to the SQLite database file (':memory:' for a throwaway store)"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets remote store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet shared by all devices"
    )

    # Sheet names within the spreadsheet
    expenses_sheet_name: str = Field(
        default="Expenses",
        description="Name of the sheet for expense records"
    )
    settings_sheet_name: str = Field(
        default="Settings",
        description="Name of the sheet for payment settings"
    )
    changes_sheet_name: str = Field(
        default="Changes",
        description="Name of the sheet used as the change log"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """A missing key file only warns; it may be mounted after start-up."""
        if not Path(v).exists():
            warnings.warn(
                f"Service account key not found at {v}; "
                "Google Sheets sync will fail until it is present."
            )
        return v


class AppSettings(BaseSettings):
    """
    Process-wide switches that are not tied to one collaborator.

    Read from unprefixed variables (LOG_LEVEL, DEBUG_MODE) or .env.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    debug_mode: bool = Field(
        default=False,
        description="Log at DEBUG regardless of log_level (held pushes, skipped reloads)"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for the structured log"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug_mode else self.log_level


class Settings(BaseSettings):
    """
    Entry point for every configuration group of a sync session.

    Each group is built on access, so a device without Google Sheets
    credentials can still run against the local store and in-memory remote.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def history(self) -> HistorySettings:
        return HistorySettings()

    @property
    def local_store(self) -> LocalStoreSettings:
        return LocalStoreSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Shared Settings instance.

    Tests that change the environment call get_settings.cache_clear().
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Try to build every configuration group.

    Returns {group: built_ok}, plus {group}_error with the message for each
    group that failed. Run before create_session() to report missing
    Google Sheets variables up front.
    """
    results = {}
    settings = get_settings()

    for name in ("sync", "history", "local_store", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
