"""Configuration package."""

from famvault.config.settings import (
    AuditSettings,
    EncryptionSettings,
    GoogleSheetsSettings,
    MigrationSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AuditSettings",
    "EncryptionSettings",
    "GoogleSheetsSettings",
    "MigrationSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
