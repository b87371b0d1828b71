"""
Configuration Management for the Ledger Engine

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All tunable business constants live here.
Components receive these values at construction time, so nothing in the
aggregation or matching code reads the environment directly.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Reconciliation, split and statistics constants."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    # Reconciliation matcher
    match_window_days: int = Field(
        default=5,
        ge=0,
        le=31,
        description="Days after the external record date a ledger transaction may settle"
    )
    amount_tolerance_cents: int = Field(
        default=1,
        ge=0,
        description="Maximum absolute difference between matched amounts"
    )
    external_marker: str = Field(
        default="paypal",
        min_length=1,
        description="Token (case-insensitive) marking externally-payable transactions"
    )
    external_tag: str = Field(
        default="paypal",
        min_length=1,
        description="Tag stored on children created by reconciliation"
    )

    # Split materializer
    split_tolerance_cents: int = Field(
        default=1,
        ge=0,
        description="Allowed difference between split sum and parent amount"
    )

    # Statistics
    default_lookback_months: int = Field(
        default=12,
        ge=1,
        le=240,
        description="Months used by statistics when the caller gives none"
    )
    trim_percentage: float = Field(
        default=0.2,
        ge=0.0,
        lt=0.5,
        description="Fraction trimmed from each side for the trimmed mean"
    )
    trend_threshold_percent: float = Field(
        default=10.0,
        ge=0.0,
        description="Relative median change that counts as a trend"
    )

    @field_validator('external_marker', 'external_tag')
    @classmethod
    def normalize_token(cls, v: str) -> str:
        """Markers are compared case-insensitively."""
        return v.strip().lower()


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
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
    transactions_sheet_name: str = Field(
        default="Transactions",
        description="Name of the sheet for ledger transactions"
    )
    budgets_sheet_name: str = Field(
        default="Budgets",
        description="Name of the sheet for budgets"
    )
    budget_versions_sheet_name: str = Field(
        default="BudgetVersions",
        description="Name of the sheet for budget versions"
    )
    patterns_sheet_name: str = Field(
        default="Patterns",
        description="Name of the sheet for category-matching patterns"
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


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Which ledger store implementation to use"
    )

    @property
    def uses_google_sheets(self) -> bool:
        return self.storage_backend == "google_sheets"


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

    # Sub-settings are loaded lazily so a memory-backed setup
    # does not need Google credentials.

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, object]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus "<name>_error"
    entries for the failing groups. Useful for startup checks.
    """
    results: dict[str, object] = {}

    settings = get_settings()

    try:
        _ = settings.ledger
        results["ledger"] = True
    except Exception as e:
        results["ledger"] = False
        results["ledger_error"] = str(e)

    try:
        app = settings.app
        results["app"] = True
    except Exception as e:
        app = None
        results["app"] = False
        results["app_error"] = str(e)

    # Sheets credentials only matter when that backend is selected
    if app is not None and app.uses_google_sheets:
        try:
            _ = settings.google_sheets
            results["google_sheets"] = True
        except Exception as e:
            results["google_sheets"] = False
            results["google_sheets_error"] = str(e)

    return results
