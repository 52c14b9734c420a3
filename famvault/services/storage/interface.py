"""
Abstract Storage Interface

DESIGN DECISION: We define abstract interfaces for the data store and the
audit sink. This allows us to:
1. Run against Google Sheets today and PostgreSQL later
2. Use in-memory storage for testing
3. Keep encryption and migration logic decoupled from storage

The interfaces are intentionally narrow - only the operations the
encryption layer needs.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple, Optional

from famvault.models.audit import (
    AuditLogEntry,
    AuditLogFilters,
    EncryptionOperationRecord,
    SecurityDashboard,
    SensitiveOperation,
    StoredAuditLog,
)


class EncryptedTable(str, Enum):
    """
    Tables carrying an encrypted counterpart column.

    Each table keeps its plaintext column during migration, next to
    <prefix>_encrypted, <prefix>_encrypted_at and encryption_version.
    """
    FINANCIAL_ACCOUNTS = "financial_accounts"
    TRANSACTIONS = "transactions"
    PROFILES = "profiles"

    @property
    def column_prefix(self) -> str:
        return {
            EncryptedTable.FINANCIAL_ACCOUNTS: "balance",
            EncryptedTable.TRANSACTIONS: "amount",
            EncryptedTable.PROFILES: "pii",
        }[self]

    @property
    def encrypted_column(self) -> str:
        return f"{self.column_prefix}_encrypted"

    @property
    def encrypted_at_column(self) -> str:
        return f"{self.column_prefix}_encrypted_at"


class EncryptionCounts(NamedTuple):
    total: int
    encrypted: int
    latest_encryption: Optional[datetime]


class FinancialDataStore(ABC):
    """
    Abstract interface for the relational data store.

    Rows are plain dicts keyed by column name. Every row has an "id".
    All queries are scoped to one family.
    """

    @abstractmethod
    async def count_unencrypted(
        self,
        table: EncryptedTable,
        family_id: str,
    ) -> int:
        """Number of rows whose encrypted column is still null."""
        pass

    @abstractmethod
    async def list_unencrypted(
        self,
        table: EncryptedTable,
        family_id: str,
        limit: Optional[int] = None,
        after_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """
        Rows whose encrypted column is still null, ordered by id.

        Args:
            table: Table to read
            family_id: Family scope
            limit: Maximum rows to return (None = all)
            after_id: Only rows with id strictly greater than this

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def save_encrypted(
        self,
        table: EncryptedTable,
        family_id: str,
        record_id: str,
        envelope: dict[str, Any],
        encrypted_at: datetime,
        encryption_version: int,
    ) -> None:
        """
        Write the encrypted envelope and its markers onto one row.

        Raises:
            NotFoundError: Row does not exist in this family
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def get_encryption_counts(
        self,
        table: EncryptedTable,
        family_id: str,
    ) -> EncryptionCounts:
        """Total rows, encrypted rows and latest encryption time."""
        pass

    @abstractmethod
    async def get_encryption_salt(self, user_id: str) -> Optional[str]:
        """The user's profile encryption salt, or None."""
        pass

    @abstractmethod
    async def get_family_id_for_user(self, user_id: str) -> Optional[str]:
        """The family the user belongs to, or None."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def create_audit_log(self, entry: AuditLogEntry) -> str:
        """
        Persist an audit entry.

        HIGH and CRITICAL entries also create a sensitive operation row.

        Returns:
            The new audit log id

        Raises:
            AuditLoggingError: If the write fails
        """
        pass

    @abstractmethod
    async def log_encryption_operation(self, record: EncryptionOperationRecord) -> None:
        """Record one encryption attempt."""
        pass

    @abstractmethod
    async def list_audit_logs(
        self,
        family_id: str,
        filters: AuditLogFilters,
    ) -> list[StoredAuditLog]:
        """Audit logs for a family, newest first, filtered and paginated."""
        pass

    @abstractmethod
    async def get_security_dashboard(self, family_id: str) -> Optional[SecurityDashboard]:
        """Aggregate summary, or None when the family has no history yet."""
        pass

    @abstractmethod
    async def list_pending_approvals(self, family_id: str) -> list[SensitiveOperation]:
        """Operations requiring approval and not yet approved, newest first."""
        pass

    @abstractmethod
    async def save_data_checksum(
        self,
        table_name: str,
        record_id: str,
        family_id: str,
        checksum: str,
        data: dict[str, Any],
    ) -> None:
        """Insert or replace the checksum snapshot of one record."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class PersistenceError(StorageError):
    """The backing store rejected a write."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class AuditLoggingError(StorageError):
    """Writing to the audit trail failed. Never reaches business logic."""
    pass
