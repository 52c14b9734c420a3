"""
Shared fixtures.

In-memory implementations of both storage interfaces so that no test
touches Google Sheets.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

import pytest

from famvault.audit import AuditLogger, get_audit_logger
from famvault.config import get_settings
from famvault.crypto import generate_encryption_key, generate_family_key
from famvault.models.audit import (
    AuditLogEntry,
    AuditLogFilters,
    EncryptionOperationRecord,
    RiskLevel,
    SecurityDashboard,
    SensitiveOperation,
    StoredAuditLog,
)
from famvault.services.storage import (
    AuditLoggingError,
    AuditStorageInterface,
    EncryptedTable,
    EncryptionCounts,
    FinancialDataStore,
    NotFoundError,
    PersistenceError,
    StorageError,
)


FAMILY_ID = "fam-1"
USER_ID = "user-1"
USER_SALT = "abc123"


class InMemoryFinancialStore(FinancialDataStore):
    """Dict-backed data store with fault injection."""

    def __init__(self):
        self.rows: dict[EncryptedTable, dict[str, dict[str, Any]]] = {
            table: {} for table in EncryptedTable
        }
        self.members: dict[str, str] = {}
        self.salts: dict[str, str] = {}
        self.failing_saves: set[str] = set()
        self.fail_listing_after: Optional[int] = None
        self.list_calls: list[dict[str, Any]] = []
        self.save_calls: list[str] = []

    # Seeding helpers

    def add_account(self, account_id: str, balance: Any, name: str = "Checking",
                    family_id: str = FAMILY_ID, currency: str = "USD") -> None:
        self.rows[EncryptedTable.FINANCIAL_ACCOUNTS][account_id] = {
            "id": account_id,
            "family_id": family_id,
            "name": name,
            "balance": balance,
            "currency": currency,
            "balance_encrypted": None,
        }

    def add_transaction(self, transaction_id: str, amount: Any,
                        description: str = "Groceries",
                        family_id: str = FAMILY_ID) -> None:
        self.rows[EncryptedTable.TRANSACTIONS][transaction_id] = {
            "id": transaction_id,
            "family_id": family_id,
            "description": description,
            "amount": amount,
            "amount_encrypted": None,
        }

    def add_profile(self, user_id: str, family_id: str = FAMILY_ID,
                    salt: Optional[str] = None, **pii: Any) -> None:
        self.members[user_id] = family_id
        if salt:
            self.salts[user_id] = salt
        self.rows[EncryptedTable.PROFILES][user_id] = {
            "id": user_id,
            "pii_encrypted": None,
            **pii,
        }

    def _family_rows(self, table: EncryptedTable, family_id: str) -> list[dict[str, Any]]:
        rows = self.rows[table].values()
        if table == EncryptedTable.PROFILES:
            return [r for r in rows if self.members.get(r["id"]) == family_id]
        return [r for r in rows if r["family_id"] == family_id]

    # FinancialDataStore

    async def count_unencrypted(self, table, family_id):
        return sum(
            1 for r in self._family_rows(table, family_id)
            if r.get(table.encrypted_column) is None
        )

    async def list_unencrypted(self, table, family_id, limit=None, after_id=None):
        self.list_calls.append({"table": table, "limit": limit, "after_id": after_id})
        if self.fail_listing_after is not None and len(self.list_calls) > self.fail_listing_after:
            raise StorageError("connection reset")

        pending = sorted(
            (
                dict(r) for r in self._family_rows(table, family_id)
                if r.get(table.encrypted_column) is None
            ),
            key=lambda r: r["id"],
        )
        if after_id is not None:
            pending = [r for r in pending if r["id"] > after_id]
        return pending[:limit] if limit is not None else pending

    async def save_encrypted(self, table, family_id, record_id, envelope,
                             encrypted_at, encryption_version):
        self.save_calls.append(record_id)
        if record_id in self.failing_saves:
            raise PersistenceError("write rejected")
        row = self.rows[table].get(record_id)
        if row is None or row not in self._family_rows(table, family_id):
            raise NotFoundError(f"{table.value} row not found: {record_id}")
        row[table.encrypted_column] = envelope
        row[table.encrypted_at_column] = encrypted_at
        row["encryption_version"] = encryption_version

    async def get_encryption_counts(self, table, family_id):
        rows = self._family_rows(table, family_id)
        encrypted = [r for r in rows if r.get(table.encrypted_column) is not None]
        stamps = [r[table.encrypted_at_column] for r in encrypted]
        return EncryptionCounts(
            total=len(rows),
            encrypted=len(encrypted),
            latest_encryption=max(stamps) if stamps else None,
        )

    async def get_encryption_salt(self, user_id):
        return self.salts.get(user_id)

    async def get_family_id_for_user(self, user_id):
        return self.members.get(user_id)


class InMemoryAuditStorage(AuditStorageInterface):
    """List-backed audit sink. Set `fail = True` to simulate an outage."""

    def __init__(self):
        self.logs: list[StoredAuditLog] = []
        self.operations: list[SensitiveOperation] = []
        self.encryption_records: list[EncryptionOperationRecord] = []
        self.checksums: dict[tuple[str, str], dict[str, Any]] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise AuditLoggingError("audit sink unavailable")

    async def create_audit_log(self, entry: AuditLogEntry) -> str:
        self._check()
        log = StoredAuditLog.from_entry(entry, str(uuid4()))
        self.logs.append(log)
        if log.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
            self.operations.append(SensitiveOperation.from_audit_log(log, str(uuid4())))
        return log.id

    async def log_encryption_operation(self, record):
        self._check()
        self.encryption_records.append(record)

    async def list_audit_logs(self, family_id, filters: AuditLogFilters):
        if self.fail:
            raise StorageError("audit sink unavailable")
        return filters.apply([log for log in self.logs if log.family_id == family_id])

    async def get_security_dashboard(self, family_id) -> Optional[SecurityDashboard]:
        if self.fail:
            raise StorageError("audit sink unavailable")
        return SecurityDashboard.from_logs(
            [log for log in self.logs if log.family_id == family_id]
        )

    async def list_pending_approvals(self, family_id):
        if self.fail:
            raise StorageError("audit sink unavailable")
        pending = [
            op for op in self.operations
            if op.family_id == family_id and op.is_pending
        ]
        return sorted(pending, key=lambda op: op.created_at, reverse=True)

    async def save_data_checksum(self, table_name, record_id, family_id, checksum, data):
        self._check()
        self.checksums[(table_name, record_id)] = {
            "family_id": family_id,
            "checksum": checksum,
            "data": data,
            "created_at": datetime.utcnow(),
        }


@pytest.fixture(autouse=True)
def reset_caches():
    """Settings and the process-wide audit logger are cached per process."""
    get_settings.cache_clear()
    get_audit_logger.cache_clear()
    yield
    get_settings.cache_clear()
    get_audit_logger.cache_clear()


@pytest.fixture
def master_key(monkeypatch) -> str:
    key = generate_encryption_key()
    monkeypatch.setenv("ENCRYPTION_KEY", key)
    monkeypatch.setenv("MIGRATION_BATCH_DELAY_SECONDS", "0")
    return key


@pytest.fixture
def family_key(master_key) -> str:
    return generate_family_key(FAMILY_ID, USER_SALT)


@pytest.fixture
def store() -> InMemoryFinancialStore:
    return InMemoryFinancialStore()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)
