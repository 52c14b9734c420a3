"""
Configuration Management for famvault

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The master encryption key is deliberately NOT validated at load time:
a missing key only becomes an error when a family key is actually needed,
so read-only tooling (audit dashboards, health checks) still starts.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EncryptionSettings(BaseSettings):
    """Master key configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ENCRYPTION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    key: Optional[str] = Field(
        default=None,
        description="Master encryption key, 32 bytes hex-encoded (64 characters)"
    )
    version: int = Field(
        default=1,
        ge=1,
        description="Encryption version written next to every encrypted column"
    )


class MigrationSettings(BaseSettings):
    """Bulk encryption migration tuning."""

    model_config = SettingsConfigDict(
        env_prefix="MIGRATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    transaction_batch_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Rows fetched per batch for bulk tables"
    )
    batch_delay_seconds: float = Field(
        default=0.2,
        ge=0.0,
        le=10.0,
        description="Pause between batches so the data store is not flooded"
    )
    default_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Currency recorded for legacy plaintext amounts"
    )


class AuditSettings(BaseSettings):
    """Audit trail thresholds."""

    model_config = SettingsConfigDict(
        env_prefix="AUDIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    large_transaction_threshold: float = Field(
        default=1000.0,
        ge=0,
        description="Amount above which an execution is MEDIUM risk"
    )
    critical_transaction_threshold: float = Field(
        default=10000.0,
        ge=0,
        description="Bulk amount above which processing is MEDIUM risk"
    )
    default_page_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Page size used when an offset is given without a limit"
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

    # Worksheet names within the spreadsheet
    accounts_sheet_name: str = Field(default="financial_accounts")
    transactions_sheet_name: str = Field(default="transactions")
    profiles_sheet_name: str = Field(default="profiles")
    family_members_sheet_name: str = Field(default="family_members")
    audit_sheet_name: str = Field(default="audit_logs")
    sensitive_operations_sheet_name: str = Field(default="sensitive_operations_log")
    encryption_log_sheet_name: str = Field(default="encryption_operations_log")
    checksums_sheet_name: str = Field(default="data_integrity_checksums")

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running a migration."
            )
        return v


class Settings(BaseSettings):
    """
    Root settings container.

    Sub-settings are loaded on every access so that environment changes
    (key rotation, tests) are picked up without restarting.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def encryption(self) -> EncryptionSettings:
        return EncryptionSettings()

    @property
    def migration(self) -> MigrationSettings:
        return MigrationSettings()

    @property
    def audit(self) -> AuditSettings:
        return AuditSettings()

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

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries describing what is wrong.
    Useful for startup checks.
    """
    # Imported here: keys imports this module.
    from famvault.crypto.errors import ConfigurationError
    from famvault.crypto.keys import get_master_key

    results = {}

    settings = get_settings()

    try:
        get_master_key()
        results["encryption"] = True
    except ConfigurationError as e:
        results["encryption"] = False
        results["encryption_error"] = str(e)

    for name in ("migration", "audit", "google_sheets"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
