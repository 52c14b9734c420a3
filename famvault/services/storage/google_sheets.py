"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets stands in for the relational store because:
1. A family can inspect its own data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (fine for a family ledger)
- No transactions (each encrypted row is written independently, which is
  exactly what the migration expects)
- No server-side functions: risk assessment, sensitive operation rows and
  the security dashboard aggregate are computed here in Python

Every table lives on its own worksheet with a header row. Rows are read
with get_all_records() and addressed by header name, so extra columns
added by hand in the sheet are ignored. Cells are read as text so that ids
and salts such as "001234" keep their leading zeros.
"""

import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional
from uuid import uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from famvault.config import get_settings
from famvault.crypto.checksum import canonical_json
from famvault.models.audit import (
    AuditAction,
    AuditLogEntry,
    AuditLogFilters,
    EncryptionOperationRecord,
    RiskLevel,
    SecurityDashboard,
    SensitiveOperation,
    StoredAuditLog,
)
from famvault.models.encryption import utcnow
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


logger = structlog.get_logger(__name__)


ACCOUNT_COLUMNS = [
    "id",
    "family_id",
    "name",
    "balance",
    "currency",
    "balance_encrypted",
    "balance_encrypted_at",
    "encryption_version",
]

TRANSACTION_COLUMNS = [
    "id",
    "family_id",
    "account_id",
    "description",
    "amount",
    "currency",
    "date",
    "amount_encrypted",
    "amount_encrypted_at",
    "encryption_version",
]

PROFILE_COLUMNS = [
    "id",
    "full_name",
    "date_of_birth",
    "ssn",
    "address",
    "phone_number",
    "emergency_contact",
    "encryption_salt",
    "pii_encrypted",
    "pii_encrypted_at",
    "encryption_version",
]

FAMILY_MEMBER_COLUMNS = [
    "family_id",
    "user_id",
    "role",
]

AUDIT_COLUMNS = [
    "id",
    "created_at",
    "family_id",
    "user_id",
    "action",
    "table_name",
    "record_id",
    "old_data_json",
    "new_data_json",
    "changes_json",
    "operation_context",
    "ip_address",
    "user_agent",
    "session_id",
    "amount_involved",
    "risk_level",
]

SENSITIVE_OPERATION_COLUMNS = [
    "id",
    "created_at",
    "family_id",
    "user_id",
    "operation_type",
    "operation_data_json",
    "amount",
    "threshold_exceeded",
    "requires_approval",
    "approved_by",
    "approved_at",
]

ENCRYPTION_LOG_COLUMNS = [
    "id",
    "created_at",
    "family_id",
    "user_id",
    "table_name",
    "record_id",
    "operation",
    "encryption_version",
    "success",
    "error_message",
]

CHECKSUM_COLUMNS = [
    "id",
    "created_at",
    "table_name",
    "record_id",
    "family_id",
    "checksum_hash",
    "data_snapshot_json",
]


def _cell(value: Any) -> str:
    """Render a value for a RAW cell write."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _blank(value: Any) -> bool:
    return value is None or value == ""


def _text(value: Any) -> Optional[str]:
    return None if _blank(value) else str(value)


def _json(value: Any) -> Any:
    return json.loads(value) if not _blank(value) else None


def _flag(value: Any) -> bool:
    return str(value).lower() == "true"


def _decimal(value: Any) -> Optional[Decimal]:
    if _blank(value):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Not a number: {value!r}")


def _timestamp(value: Any) -> Optional[datetime]:
    return datetime.fromisoformat(str(value)) if not _blank(value) else None


def _records(sheet: gspread.Worksheet) -> list[dict[str, Any]]:
    return sheet.get_all_records(numericise_ignore=["all"])


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        """Get or create a worksheet, writing the header row on creation."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def table_sheet(self, table: EncryptedTable) -> gspread.Worksheet:
        names = {
            EncryptedTable.FINANCIAL_ACCOUNTS: (self._settings.accounts_sheet_name, ACCOUNT_COLUMNS),
            EncryptedTable.TRANSACTIONS: (self._settings.transactions_sheet_name, TRANSACTION_COLUMNS),
            EncryptedTable.PROFILES: (self._settings.profiles_sheet_name, PROFILE_COLUMNS),
        }
        title, columns = names[table]
        return self.get_worksheet(title, columns)

    def family_members_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.family_members_sheet_name,
            FAMILY_MEMBER_COLUMNS,
        )

    def audit_sheet(self) -> gspread.Worksheet:
        # More rows for audit log
        return self.get_worksheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)

    def sensitive_operations_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.sensitive_operations_sheet_name,
            SENSITIVE_OPERATION_COLUMNS,
        )

    def encryption_log_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.encryption_log_sheet_name,
            ENCRYPTION_LOG_COLUMNS,
            rows=5000,
        )

    def checksums_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.checksums_sheet_name, CHECKSUM_COLUMNS)


class GoogleSheetsFinancialStore(FinancialDataStore):
    """
    Google Sheets implementation of the financial data store.

    Accounts and transactions carry a family_id column. Profiles are
    scoped to a family through the family_members worksheet.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _member_ids(self, family_id: str) -> set[str]:
        records = _records(self._client.family_members_sheet())
        return {
            str(r["user_id"]) for r in records
            if str(r.get("family_id", "")) == family_id and not _blank(r.get("user_id"))
        }

    def _family_rows(
        self,
        table: EncryptedTable,
        family_id: str,
    ) -> list[tuple[int, dict[str, Any]]]:
        """(sheet row number, record) pairs belonging to the family."""
        records = _records(self._client.table_sheet(table))
        if table == EncryptedTable.PROFILES:
            members = self._member_ids(family_id)
            belongs = lambda r: str(r.get("id", "")) in members  # noqa: E731
        else:
            belongs = lambda r: str(r.get("family_id", "")) == family_id  # noqa: E731

        # Row 1 is the header
        return [
            (idx, {k: (None if v == "" else v) for k, v in record.items()})
            for idx, record in enumerate(records, start=2)
            if not _blank(record.get("id")) and belongs(record)
        ]

    async def count_unencrypted(
        self,
        table: EncryptedTable,
        family_id: str,
    ) -> int:
        try:
            rows = self._family_rows(table, family_id)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to count {table.value}: {e}")
        return sum(1 for _, row in rows if _blank(row.get(table.encrypted_column)))

    async def list_unencrypted(
        self,
        table: EncryptedTable,
        family_id: str,
        limit: Optional[int] = None,
        after_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        try:
            rows = self._family_rows(table, family_id)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list {table.value}: {e}")

        pending = sorted(
            (
                {**row, "id": str(row["id"])}
                for _, row in rows
                if _blank(row.get(table.encrypted_column))
            ),
            key=lambda r: r["id"],
        )
        if after_id is not None:
            pending = [r for r in pending if r["id"] > after_id]
        if limit is not None:
            pending = pending[:limit]
        return pending

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(NotFoundError),
        reraise=True,
    )
    async def save_encrypted(
        self,
        table: EncryptedTable,
        family_id: str,
        record_id: str,
        envelope: dict[str, Any],
        encrypted_at: datetime,
        encryption_version: int,
    ) -> None:
        try:
            rows = self._family_rows(table, family_id)
            row_number = next(
                (idx for idx, row in rows if str(row["id"]) == record_id),
                None,
            )
            if row_number is None:
                raise NotFoundError(f"{table.value} row not found: {record_id}")

            sheet = self._client.table_sheet(table)
            header = sheet.row_values(1)
            updates = {
                table.encrypted_column: canonical_json(envelope),
                table.encrypted_at_column: encrypted_at.isoformat(),
                "encryption_version": str(encryption_version),
            }
            for column, value in updates.items():
                if column not in header:
                    raise PersistenceError(
                        f"Worksheet for {table.value} has no {column} column"
                    )
                sheet.update_cell(row_number, header.index(column) + 1, value)
        except StorageError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save encrypted {table.value} row: {e}")

    async def get_encryption_counts(
        self,
        table: EncryptedTable,
        family_id: str,
    ) -> EncryptionCounts:
        try:
            rows = [row for _, row in self._family_rows(table, family_id)]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {table.value}: {e}")

        encrypted = [r for r in rows if not _blank(r.get(table.encrypted_column))]
        stamps = [
            _timestamp(r[table.encrypted_at_column]) for r in encrypted
            if not _blank(r.get(table.encrypted_at_column))
        ]
        return EncryptionCounts(
            total=len(rows),
            encrypted=len(encrypted),
            latest_encryption=max(stamps) if stamps else None,
        )

    async def get_encryption_salt(self, user_id: str) -> Optional[str]:
        try:
            records = _records(self._client.table_sheet(EncryptedTable.PROFILES))
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read profiles: {e}")

        for record in records:
            if str(record.get("id", "")) == user_id:
                return _text(record.get("encryption_salt"))
        return None

    async def get_family_id_for_user(self, user_id: str) -> Optional[str]:
        try:
            records = _records(self._client.family_members_sheet())
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read family members: {e}")

        for record in records:
            if str(record.get("user_id", "")) == user_id:
                return _text(record.get("family_id"))
        return None


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit logs are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._page_size = get_settings().audit.default_page_size

    def _log_to_row(self, log: StoredAuditLog) -> list:
        """Convert a StoredAuditLog to a spreadsheet row."""
        return [
            log.id,
            log.created_at.isoformat(),
            log.family_id,
            log.user_id,
            log.action.value,
            log.table_name,
            _cell(log.record_id),
            canonical_json(log.old_data) if log.old_data is not None else "",
            canonical_json(log.new_data) if log.new_data is not None else "",
            canonical_json(log.changes),
            _cell(log.operation_context),
            _cell(log.ip_address),
            _cell(log.user_agent),
            _cell(log.session_id),
            _cell(log.amount),
            log.risk_level.value,
        ]

    def _record_to_log(self, record: dict[str, Any]) -> StoredAuditLog:
        """Convert a worksheet record to a StoredAuditLog."""
        return StoredAuditLog(
            id=str(record["id"]),
            created_at=_timestamp(record["created_at"]),
            family_id=str(record["family_id"]),
            user_id=str(record["user_id"]),
            action=AuditAction(record["action"]),
            table_name=str(record["table_name"]),
            record_id=_text(record.get("record_id")),
            old_data=_json(record.get("old_data_json")),
            new_data=_json(record.get("new_data_json")),
            changes=_json(record.get("changes_json")) or {},
            operation_context=_text(record.get("operation_context")),
            ip_address=_text(record.get("ip_address")),
            user_agent=_text(record.get("user_agent")),
            session_id=_text(record.get("session_id")),
            amount=_decimal(record.get("amount_involved")),
            risk_level=RiskLevel(record.get("risk_level") or RiskLevel.LOW.value),
        )

    def _operation_to_row(self, op: SensitiveOperation) -> list:
        return [
            op.id,
            op.created_at.isoformat(),
            op.family_id,
            op.user_id,
            op.operation_type,
            canonical_json(op.operation_data),
            _cell(op.amount),
            _cell(op.threshold_exceeded),
            _cell(op.requires_approval),
            _cell(op.approved_by),
            _cell(op.approved_at),
        ]

    def _record_to_operation(self, record: dict[str, Any]) -> SensitiveOperation:
        return SensitiveOperation(
            id=str(record["id"]),
            created_at=_timestamp(record["created_at"]),
            family_id=str(record["family_id"]),
            user_id=str(record["user_id"]),
            operation_type=str(record["operation_type"]),
            operation_data=_json(record.get("operation_data_json")) or {},
            amount=_decimal(record.get("amount")),
            threshold_exceeded=_flag(record.get("threshold_exceeded")),
            requires_approval=_flag(record.get("requires_approval")),
            approved_by=_text(record.get("approved_by")),
            approved_at=_timestamp(record.get("approved_at")),
        )

    def _family_logs(self, family_id: str) -> list[StoredAuditLog]:
        logs = []
        for record in _records(self._client.audit_sheet()):
            if str(record.get("family_id", "")) != family_id:
                continue
            try:
                logs.append(self._record_to_log(record))
            except (KeyError, ValueError, TypeError, PydanticValidationError) as e:
                logger.warning(
                    "audit_row_skipped",
                    row_id=record.get("id"),
                    error=str(e),
                )
        return logs

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _append(
        self,
        sheet: Callable[[], gspread.Worksheet],
        row: list,
        what: str,
    ) -> None:
        """Append one row, retrying just this write."""
        try:
            sheet().append_row(row, value_input_option="RAW")
        except Exception as e:
            raise AuditLoggingError(f"Failed to write {what}: {e}")

    async def create_audit_log(self, entry: AuditLogEntry) -> str:
        """Append an audit log, plus a sensitive operation row when HIGH/CRITICAL."""
        log = StoredAuditLog.from_entry(entry, str(uuid4()))
        await self._append(self._client.audit_sheet, self._log_to_row(log), "audit log")
        if log.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
            operation = SensitiveOperation.from_audit_log(log, str(uuid4()))
            await self._append(
                self._client.sensitive_operations_sheet,
                self._operation_to_row(operation),
                "sensitive operation",
            )
        return log.id

    async def log_encryption_operation(self, record: EncryptionOperationRecord) -> None:
        row = [
            str(uuid4()),
            record.created_at.isoformat(),
            record.family_id,
            _cell(record.user_id),
            record.table_name,
            record.record_id,
            record.operation.value,
            str(record.encryption_version),
            _cell(record.success),
            _cell(record.error_message),
        ]
        await self._append(self._client.encryption_log_sheet, row, "encryption operation")

    async def list_audit_logs(
        self,
        family_id: str,
        filters: AuditLogFilters,
    ) -> list[StoredAuditLog]:
        try:
            logs = self._family_logs(family_id)
        except Exception as e:
            raise StorageError(f"Failed to get audit logs: {e}")
        return filters.apply(logs, default_page_size=self._page_size)

    async def get_security_dashboard(self, family_id: str) -> Optional[SecurityDashboard]:
        try:
            logs = self._family_logs(family_id)
        except Exception as e:
            raise StorageError(f"Failed to get audit logs: {e}")
        return SecurityDashboard.from_logs(logs, now=utcnow())

    async def list_pending_approvals(self, family_id: str) -> list[SensitiveOperation]:
        try:
            records = _records(self._client.sensitive_operations_sheet())
        except Exception as e:
            raise StorageError(f"Failed to get sensitive operations: {e}")

        pending = []
        for record in records:
            if str(record.get("family_id", "")) != family_id:
                continue
            try:
                operation = self._record_to_operation(record)
            except (KeyError, ValueError, TypeError, PydanticValidationError) as e:
                logger.warning(
                    "sensitive_operation_row_skipped",
                    row_id=record.get("id"),
                    error=str(e),
                )
                continue
            if operation.is_pending:
                pending.append(operation)

        # Sort newest first
        pending.sort(key=lambda op: op.created_at, reverse=True)
        return pending

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_data_checksum(
        self,
        table_name: str,
        record_id: str,
        family_id: str,
        checksum: str,
        data: dict[str, Any],
    ) -> None:
        """Insert or replace the (table_name, record_id) checksum row."""
        row = [
            str(uuid4()),
            utcnow().isoformat(),
            table_name,
            record_id,
            family_id,
            checksum,
            canonical_json(data),
        ]
        try:
            sheet = self._client.checksums_sheet()
            for idx, record in enumerate(_records(sheet), start=2):
                if (
                    str(record.get("table_name", "")) == table_name
                    and str(record.get("record_id", "")) == record_id
                ):
                    sheet.delete_rows(idx)
                    break
            sheet.append_row(row, value_input_option="RAW")
        except Exception as e:
            raise AuditLoggingError(f"Failed to save data checksum: {e}")
