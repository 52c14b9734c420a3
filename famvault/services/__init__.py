"""Services package."""

from famvault.services.storage import (
    AuditLoggingError,
    AuditStorageInterface,
    ConnectionError,
    EncryptedTable,
    FinancialDataStore,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsFinancialStore,
    NotFoundError,
    PersistenceError,
    StorageError,
)

__all__ = [
    "AuditLoggingError",
    "AuditStorageInterface",
    "ConnectionError",
    "EncryptedTable",
    "FinancialDataStore",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsFinancialStore",
    "NotFoundError",
    "PersistenceError",
    "StorageError",
]
