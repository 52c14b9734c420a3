"""Bulk encryption of existing plaintext data."""

from famvault.migration.migrator import EncryptionMigrator, migrate_current_family_data

__all__ = ["EncryptionMigrator", "migrate_current_family_data"]
