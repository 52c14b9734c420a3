"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements Google Sheets as the backend, but designed to be swappable.
"""

from famvault.services.storage.interface import (
    AuditLoggingError,
    AuditStorageInterface,
    ConnectionError,
    EncryptedTable,
    EncryptionCounts,
    FinancialDataStore,
    NotFoundError,
    PersistenceError,
    StorageError,
)
from famvault.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsFinancialStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "EncryptedTable",
    "EncryptionCounts",
    "FinancialDataStore",
    # Exceptions
    "AuditLoggingError",
    "ConnectionError",
    "NotFoundError",
    "PersistenceError",
    "StorageError",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsFinancialStore",
]
