"""
Audit Logger

DESIGN DECISION: Every sensitive financial operation is logged.
This provides:
1. Complete traceability of who changed what
2. Risk classification feeding the security dashboard
3. An approval queue for critical operations

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (an audit outage never breaks a business
  operation: failures are logged locally and None is returned)
- Fills request context (IP, user agent, session) into every entry
"""

import time
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any, Optional, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from famvault.config import get_settings
from famvault.crypto.checksum import create_data_checksum
from famvault.models.audit import (
    SYSTEM_FAMILY_ID,
    SYSTEM_USER_ID,
    AuditAction,
    AuditLogEntry,
    AuditLogFilters,
    EncryptionOperationRecord,
    RequestContext,
    RiskLevel,
    SecurityDashboard,
    SensitiveOperation,
    StoredAuditLog,
)
from famvault.models.encryption import utcnow
from famvault.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


AmountLike = Union[Decimal, int, float, str, None]


def _to_amount(value: AmountLike) -> Optional[Decimal]:
    """Best-effort conversion of a record's amount for risk scoring."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def _field(data: Optional[dict], name: str) -> Any:
    return data.get(name) if data else None


class AuditLogger:
    """
    Central audit logging service.

    Logs entries both to:
    1. Structured local log (for debugging)
    2. The audit storage backend (for persistence and the dashboard)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)
        self._context = RequestContext()
        self._settings = get_settings().audit

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

    @storage.setter
    def storage(self, storage: Optional[AuditStorageInterface]) -> None:
        self._storage = storage

    def set_request_context(
        self,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        """Set request context for all subsequent entries."""
        self._context = RequestContext(
            ip_address=ip_address,
            user_agent=user_agent,
            session_id=session_id,
        )

    def clear_request_context(self) -> None:
        self._context = RequestContext()

    def _with_context(self, entry: AuditLogEntry) -> AuditLogEntry:
        """Fill request context into the fields the entry leaves blank."""
        updates = {
            name: value
            for name, value in self._context.model_dump().items()
            if value is not None and getattr(entry, name) is None
        }
        return entry.model_copy(update=updates) if updates else entry

    async def log_financial_operation(self, entry: AuditLogEntry) -> Optional[str]:
        """
        Log an audit entry.

        Always logs locally. Persists to storage if available.

        Returns the audit log id, or None when no storage is configured or
        the write failed. Never raises.
        """
        entry = self._with_context(entry)

        # Always log locally
        log_dict = entry.to_log_dict()
        if entry.resolved_risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage is None:
            return None

        try:
            return await self._storage.create_audit_log(entry)
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "audit_storage_failed",
                error_type=type(e).__name__,
                error=str(e),
                table_name=entry.table_name,
                record_id=entry.record_id,
            )
            return None

    async def _log_entry(self, **fields: Any) -> Optional[str]:
        """Build an entry from wrapper arguments and log it. Never raises."""
        try:
            entry = AuditLogEntry(**fields)
        except PydanticValidationError as e:
            self._logger.error(
                "audit_entry_invalid",
                error=str(e),
                table_name=fields.get("table_name"),
                record_id=fields.get("record_id"),
            )
            return None
        return await self.log_financial_operation(entry)

    # =========================================================================
    # CONVENIENCE LOGGERS
    # =========================================================================

    async def log_transaction(
        self,
        action: AuditAction,
        family_id: str,
        user_id: str,
        transaction_id: str,
        old_data: Optional[dict] = None,
        new_data: Optional[dict] = None,
    ) -> Optional[str]:
        """Log a transaction CREATE/UPDATE/DELETE."""
        return await self._log_entry(
            family_id=family_id,
            user_id=user_id,
            action=action,
            table_name="transactions",
            record_id=transaction_id,
            old_data=old_data,
            new_data=new_data,
            operation_context="transaction-management",
            amount=_to_amount(_field(new_data, "amount") or _field(old_data, "amount")),
        )

    async def log_budget(
        self,
        action: AuditAction,
        family_id: str,
        user_id: str,
        budget_id: str,
        old_data: Optional[dict] = None,
        new_data: Optional[dict] = None,
    ) -> Optional[str]:
        """Log a budget CREATE/UPDATE/DELETE."""
        return await self._log_entry(
            family_id=family_id,
            user_id=user_id,
            action=action,
            table_name="budgets",
            record_id=budget_id,
            old_data=old_data,
            new_data=new_data,
            operation_context="budget-management",
            amount=_to_amount(_field(new_data, "amount") or _field(old_data, "amount")),
        )

    async def log_account(
        self,
        action: AuditAction,
        family_id: str,
        user_id: str,
        account_id: str,
        old_data: Optional[dict] = None,
        new_data: Optional[dict] = None,
    ) -> Optional[str]:
        """
        Log an account CREATE/UPDATE/DELETE.

        The amount involved is the absolute balance change (missing
        balances count as zero).
        """
        new_balance = _to_amount(_field(new_data, "balance")) or Decimal("0")
        old_balance = _to_amount(_field(old_data, "balance")) or Decimal("0")
        return await self._log_entry(
            family_id=family_id,
            user_id=user_id,
            action=action,
            table_name="financial_accounts",
            record_id=account_id,
            old_data=old_data,
            new_data=new_data,
            operation_context="account-management",
            amount=abs(new_balance - old_balance),
        )

    async def log_recurring_transaction(
        self,
        action: AuditAction,
        family_id: str,
        user_id: str,
        recurring_transaction_id: str,
        old_data: Optional[dict] = None,
        new_data: Optional[dict] = None,
    ) -> Optional[str]:
        return await self._log_entry(
            family_id=family_id,
            user_id=user_id,
            action=action,
            table_name="recurring_transactions",
            record_id=recurring_transaction_id,
            old_data=old_data,
            new_data=new_data,
            operation_context="recurring-transaction-management",
            amount=(
                _to_amount(_field(new_data, "amount") or _field(old_data, "amount"))
                or Decimal("0")
            ),
        )

    async def log_recurring_transaction_execution(
        self,
        family_id: str,
        user_id: str,
        recurring_transaction_id: str,
        execution_data: dict,
    ) -> Optional[str]:
        """
        Log one scheduled execution of a recurring transaction.

        execution_data carries scheduled_date, execution_status, amount and
        optionally transaction_id / error_message. A failed execution is
        HIGH risk, a large one MEDIUM.
        """
        amount = _to_amount(execution_data.get("amount")) or Decimal("0")
        if execution_data.get("execution_status") == "failed":
            risk = RiskLevel.HIGH
        elif amount > Decimal(str(self._settings.large_transaction_threshold)):
            risk = RiskLevel.MEDIUM
        else:
            risk = RiskLevel.LOW

        return await self._log_entry(
            family_id=family_id,
            user_id=user_id,
            action=AuditAction.EXECUTE,
            table_name="recurring_transaction_executions",
            record_id=recurring_transaction_id,
            new_data=execution_data,
            operation_context="automated-recurring-execution",
            amount=amount,
            risk_level=risk,
        )

    async def log_bulk_recurring_processing(
        self,
        processing_result: dict,
    ) -> Optional[str]:
        """
        Log a bulk run of the recurring transaction processor.

        processing_result carries processed_count, failed_count,
        error_messages, families_affected and total_amount_processed.
        Logged as the system user.
        """
        total = _to_amount(processing_result.get("total_amount_processed")) or Decimal("0")
        if processing_result.get("failed_count", 0) > 0:
            risk = RiskLevel.HIGH
        elif total > Decimal(str(self._settings.critical_transaction_threshold)):
            risk = RiskLevel.MEDIUM
        else:
            risk = RiskLevel.LOW

        families = processing_result.get("families_affected") or []
        return await self._log_entry(
            family_id=families[0] if families else SYSTEM_FAMILY_ID,
            user_id=SYSTEM_USER_ID,
            action=AuditAction.BULK_PROCESS,
            table_name="recurring_transactions",
            record_id=f"bulk_processing_{int(time.time() * 1000)}",
            new_data=processing_result,
            operation_context="automated-bulk-processing",
            amount=total,
            risk_level=risk,
        )

    async def log_security_event(
        self,
        family_id: str,
        user_id: str,
        event_type: str,
        event_data: Optional[dict] = None,
    ) -> Optional[str]:
        """Security events are access attempts, so they are logged as VIEW."""
        return await self._log_entry(
            family_id=family_id,
            user_id=user_id,
            action=AuditAction.VIEW,
            table_name="security_events",
            operation_context=event_type,
            new_data=event_data,
        )

    async def log_suspicious_activity(
        self,
        family_id: str,
        user_id: str,
        activity_type: str,
        details: Optional[dict] = None,
        risk_level: RiskLevel = RiskLevel.HIGH,
    ) -> Optional[str]:
        return await self._log_entry(
            family_id=family_id,
            user_id=user_id,
            action=AuditAction.VIEW,
            table_name="suspicious_activities",
            operation_context=activity_type,
            new_data={**(details or {}), "detected_at": utcnow().isoformat()},
            risk_level=risk_level,
        )

    async def log_authentication(
        self,
        user_id: str,
        action: AuditAction,
        family_id: Optional[str] = None,
    ) -> Optional[str]:
        """Log a LOGIN or LOGOUT."""
        return await self._log_entry(
            family_id=family_id or SYSTEM_FAMILY_ID,
            user_id=user_id,
            action=action,
            table_name="auth_events",
            operation_context="user-authentication",
        )

    async def log_encryption_operation(self, record: EncryptionOperationRecord) -> bool:
        """Record one row encryption attempt. Never raises."""
        log = self._logger.info if record.success else self._logger.warning
        log(
            "encryption_operation",
            family_id=record.family_id,
            table_name=record.table_name,
            record_id=record.record_id,
            success=record.success,
            error=record.error_message,
        )

        if self._storage is None:
            return False

        try:
            await self._storage.log_encryption_operation(record)
            return True
        except Exception as e:
            self._logger.error(
                "audit_storage_failed",
                error_type=type(e).__name__,
                error=str(e),
                table_name=record.table_name,
                record_id=record.record_id,
            )
            return False

    async def record_data_checksum(
        self,
        table_name: str,
        record_id: str,
        family_id: str,
        data: dict,
    ) -> Optional[str]:
        """Store a checksum snapshot of a record. Returns the checksum."""
        checksum = create_data_checksum(data)
        if self._storage is None:
            return checksum

        try:
            await self._storage.save_data_checksum(
                table_name=table_name,
                record_id=record_id,
                family_id=family_id,
                checksum=checksum,
                data=data,
            )
        except Exception as e:
            self._logger.error(
                "checksum_storage_failed",
                error_type=type(e).__name__,
                error=str(e),
                table_name=table_name,
                record_id=record_id,
            )
            return None
        return checksum

    # =========================================================================
    # READ PATHS
    # =========================================================================

    async def get_audit_logs(
        self,
        family_id: str,
        filters: Optional[AuditLogFilters] = None,
    ) -> list[StoredAuditLog]:
        """Audit logs for a family, newest first. Read failures yield []."""
        if self._storage is None:
            return []
        try:
            return await self._storage.list_audit_logs(family_id, filters or AuditLogFilters())
        except Exception as e:
            self._logger.error(
                "audit_read_failed",
                error_type=type(e).__name__,
                error=str(e),
                family_id=family_id,
            )
            return []

    async def get_security_dashboard(self, family_id: str) -> Optional[SecurityDashboard]:
        """
        Security summary for a family.

        A family with no audit history gets the all-zero dashboard.
        Returns None only when the read itself failed.
        """
        if self._storage is None:
            return SecurityDashboard.empty()
        try:
            dashboard = await self._storage.get_security_dashboard(family_id)
        except Exception as e:
            self._logger.error(
                "dashboard_read_failed",
                error_type=type(e).__name__,
                error=str(e),
                family_id=family_id,
            )
            return None
        return dashboard or SecurityDashboard.empty()

    async def get_pending_approvals(self, family_id: str) -> list[SensitiveOperation]:
        if self._storage is None:
            return []
        try:
            return await self._storage.list_pending_approvals(family_id)
        except Exception as e:
            self._logger.error(
                "approvals_read_failed",
                error_type=type(e).__name__,
                error=str(e),
                family_id=family_id,
            )
            return []


@lru_cache()
def get_audit_logger() -> AuditLogger:
    """
    Process-wide audit logger.

    Starts without storage (local logging only) until
    configure_audit_logger() installs a backend.
    Call get_audit_logger.cache_clear() to reset.
    """
    return AuditLogger()


def configure_audit_logger(storage: Optional[AuditStorageInterface]) -> AuditLogger:
    """Install a storage backend on the process-wide audit logger."""
    audit_logger = get_audit_logger()
    audit_logger.storage = storage
    return audit_logger
