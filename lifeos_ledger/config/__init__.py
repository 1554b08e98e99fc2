"""Configuration package."""

from lifeos_ledger.config.settings import (
    GoogleSheetsSettings,
    LedgerSettings,
    LocalStorageSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "GoogleSheetsSettings",
    "LedgerSettings",
    "LocalStorageSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
