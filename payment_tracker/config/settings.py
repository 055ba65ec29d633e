"""
Configuration Management for Payment Tracker

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The generation engine itself only needs the horizon and the calendar
overflow policy; everything else describes where the data lives.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from payment_tracker.recurrence.rules import OverflowPolicy


class GenerationSettings(BaseSettings):
    """Recurring occurrence generation configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GENERATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    horizon_months: int = Field(
        default=6,
        ge=1,
        le=24,
        description="How many calendar months ahead occurrences are materialized"
    )
    overflow_policy: OverflowPolicy = Field(
        default=OverflowPolicy.CLAMP,
        description="What to do with day-of-month values the month does not have"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

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
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    definitions_sheet_name: str = Field(
        default="PaymentDefinitions",
        description="Name of the sheet holding recurring payment definitions"
    )
    occurrences_sheet_name: str = Field(
        default="Transactions",
        description="Name of the sheet holding dated occurrences"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily so generation works without Sheets configured

    @property
    def generation(self) -> GenerationSettings:
        return GenerationSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus an
    {setting_name}_error entry for each group that failed to load.
    """
    results = {}
    settings = get_settings()

    for name in ("generation", "google_sheets"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
