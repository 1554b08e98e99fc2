"""
Configuration Management for LifeOS Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here, including which
storage backend a run uses. There is no runtime fallback from one backend
to another: the backend is named explicitly or the run fails at startup.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


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
        description="Name of the sheet holding imported transactions"
    )
    ledger_sheet_name: str = Field(
        default="Input",
        description="Name of the original finance sheet (ground truth balances)"
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


class LocalStorageSettings(BaseSettings):
    """Local JSON file storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_LOCAL_",
        extra="ignore"
    )

    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding the local JSON files"
    )
    transactions_file: str = Field(
        default="transactions.json",
        description="File name of the transaction collection"
    )
    snapshots_file: str = Field(
        default="snapshots.json",
        description="File name of the ground truth balance snapshot"
    )

    @property
    def transactions_path(self) -> Path:
        return self.data_dir / self.transactions_file

    @property
    def snapshots_path(self) -> Path:
        return self.data_dir / self.snapshots_file


class LedgerSettings(BaseSettings):
    """
    Main ledger settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backend: Literal["memory", "json", "sheets"] = Field(
        default="json",
        description="Storage backend for transactions and snapshots"
    )

    # Aggregation
    strict_accounts: bool = Field(
        default=True,
        description="Reject transactions for accounts missing from the hierarchy"
    )
    accounts_file: Optional[Path] = Field(
        default=None,
        description="JSON file declaring ledger accounts, groups and opening balances"
    )

    # Reconciliation
    reconciliation_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        ge=0,
        description="Largest absolute delta still reported as matched"
    )

    # Duplicate detection
    near_duplicate_window_days: int = Field(
        default=7,
        ge=1,
        le=31,
        description="Date window for the near-duplicate heuristic"
    )

    # Presentation only
    currency: str = Field(
        default="TZS",
        description="Currency label used in reports"
    )


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def local(self) -> LocalStorageSettings:
        return LocalStorageSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Google Sheets is only checked when it is the selected backend.
    """
    results = {}

    settings = get_settings()

    try:
        ledger = settings.ledger
        results["ledger"] = True
    except Exception as e:
        results["ledger"] = False
        results["ledger_error"] = str(e)
        return results

    try:
        _ = settings.local
        results["local"] = True
    except Exception as e:
        results["local"] = False
        results["local_error"] = str(e)

    if ledger.backend == "sheets":
        try:
            _ = settings.google_sheets
            results["google_sheets"] = True
        except Exception as e:
            results["google_sheets"] = False
            results["google_sheets_error"] = str(e)

    if ledger.accounts_file is not None:
        results["accounts_file"] = ledger.accounts_file.exists()

    return results
