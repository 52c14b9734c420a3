"""
Audit Models for famvault

Every sensitive financial operation is logged for audit purposes.
This provides:
1. Complete traceability of who changed what
2. Risk classification for the security dashboard
3. An approval queue for critical operations

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
AuditLogEntry is frozen to make that explicit in code as well.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from famvault.models.encryption import utcnow


SYSTEM_USER_ID = "00000000-0000-0000-0000-000000000000"
SYSTEM_FAMILY_ID = "00000000-0000-0000-0000-000000000000"


class AuditAction(str, Enum):
    """What kind of operation was performed."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    VIEW = "VIEW"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    EXECUTE = "EXECUTE"
    BULK_PROCESS = "BULK_PROCESS"
    ENCRYPT = "ENCRYPT"


class RiskLevel(str, Enum):
    """Risk classification, ordered from least to most severe."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# Tables whose deletions are always HIGH risk
PROTECTED_TABLES = frozenset({"transactions", "financial_accounts", "budgets"})

DASHBOARD_WINDOW = timedelta(days=30)


def _balance(data: Optional[dict[str, Any]]) -> Optional[Decimal]:
    if not data or data.get("balance") is None:
        return None
    try:
        return Decimal(str(data["balance"]))
    except ArithmeticError:
        return None


def calculate_risk_level(
    action: AuditAction,
    table_name: str,
    amount: Optional[Decimal] = None,
    old_data: Optional[dict[str, Any]] = None,
    new_data: Optional[dict[str, Any]] = None,
) -> RiskLevel:
    """
    Derive the risk level of an operation.

    Later rules override earlier ones:
    1. DELETE on a protected table -> HIGH
    2. amount > 10000 CRITICAL, > 1000 HIGH, > 100 MEDIUM
    3. account balance change > 5000 CRITICAL, > 1000 HIGH
    """
    risk = RiskLevel.LOW

    if action == AuditAction.DELETE and table_name in PROTECTED_TABLES:
        risk = RiskLevel.HIGH

    if amount is not None:
        if amount > 10000:
            risk = RiskLevel.CRITICAL
        elif amount > 1000:
            risk = RiskLevel.HIGH
        elif amount > 100:
            risk = RiskLevel.MEDIUM

    if table_name == "financial_accounts":
        old_balance = _balance(old_data)
        new_balance = _balance(new_data)
        if old_balance is not None and new_balance is not None:
            change = abs(new_balance - old_balance)
            if change > 5000:
                risk = RiskLevel.CRITICAL
            elif change > 1000:
                risk = RiskLevel.HIGH

    return risk


def compute_changes(
    old_data: Optional[dict[str, Any]],
    new_data: Optional[dict[str, Any]],
) -> dict[str, dict[str, Any]]:
    """Fields of new_data whose value differs from old_data."""
    if not old_data or not new_data:
        return {}
    return {
        key: {"old": old_data.get(key), "new": value}
        for key, value in new_data.items()
        if old_data.get(key) != value
    }


class AuditLogEntry(BaseModel):
    """
    A single audit log entry, as submitted.

    This is the core unit of our audit trail.
    Every sensitive operation creates one of these.
    """
    model_config = ConfigDict(frozen=True)

    family_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    action: AuditAction
    table_name: str = Field(..., min_length=1, max_length=50)
    record_id: Optional[str] = None

    old_data: Optional[dict[str, Any]] = None
    new_data: Optional[dict[str, Any]] = None

    operation_context: Optional[str] = Field(
        default=None,
        max_length=100,
        description="e.g. 'transaction-management', 'automated-bulk-processing'"
    )

    # Request context
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None

    amount: Optional[Decimal] = Field(
        default=None,
        description="Money involved in the operation, if any"
    )
    risk_level: Optional[RiskLevel] = Field(
        default=None,
        description="Explicit risk. Derived from the data when omitted."
    )

    @property
    def resolved_risk_level(self) -> RiskLevel:
        """Explicit risk level, or the derived one."""
        if self.risk_level is not None:
            return self.risk_level
        return calculate_risk_level(
            self.action,
            self.table_name,
            self.amount,
            self.old_data,
            self.new_data,
        )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.

        Record contents (old_data/new_data) are left out: they may hold
        plaintext financial data.
        """
        return {
            "family_id": self.family_id,
            "user_id": self.user_id,
            "action": self.action.value,
            "table_name": self.table_name,
            "record_id": self.record_id,
            "operation_context": self.operation_context,
            "amount": str(self.amount) if self.amount is not None else None,
            "risk_level": self.resolved_risk_level.value,
        }


class StoredAuditLog(AuditLogEntry):
    """An audit entry as read back from storage."""

    id: str
    created_at: datetime
    changes: dict[str, Any] = Field(default_factory=dict)
    risk_level: RiskLevel = RiskLevel.LOW

    @classmethod
    def from_entry(
        cls,
        entry: AuditLogEntry,
        log_id: str,
        created_at: Optional[datetime] = None,
    ) -> 'StoredAuditLog':
        """Resolve risk and changes the way the audit table stores them."""
        data = entry.model_dump(exclude={"risk_level"})
        return cls(
            **data,
            id=log_id,
            created_at=created_at or utcnow(),
            changes=compute_changes(entry.old_data, entry.new_data),
            risk_level=entry.resolved_risk_level,
        )


class AuditLogFilters(BaseModel):
    """Read-path filters for get_audit_logs()."""

    action: Optional[AuditAction] = None
    table_name: Optional[str] = None
    risk_level: Optional[RiskLevel] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=1, le=1000)
    offset: Optional[int] = Field(default=None, ge=0)

    @field_validator('start_date', 'end_date')
    @classmethod
    def to_naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Stored timestamps are naive UTC."""
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @model_validator(mode='after')
    def validate_dates(self) -> 'AuditLogFilters':
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self

    def matches(self, log: StoredAuditLog) -> bool:
        """In-process filtering for backends without server-side queries."""
        if self.action and log.action != self.action:
            return False
        if self.table_name and log.table_name != self.table_name:
            return False
        if self.risk_level and log.risk_level != self.risk_level:
            return False
        if self.start_date and log.created_at < self.start_date:
            return False
        if self.end_date and log.created_at > self.end_date:
            return False
        return True

    def apply(
        self,
        logs: Sequence[StoredAuditLog],
        default_page_size: int = 50,
    ) -> list[StoredAuditLog]:
        """Filter, order newest first, then paginate."""
        selected = sorted(
            (log for log in logs if self.matches(log)),
            key=lambda log: log.created_at,
            reverse=True,
        )
        if self.offset is not None:
            limit = self.limit or default_page_size
            return selected[self.offset:self.offset + limit]
        if self.limit is not None:
            return selected[:self.limit]
        return selected


class SensitiveOperation(BaseModel):
    """High or critical risk operation, possibly awaiting approval."""

    id: str
    family_id: str
    user_id: str
    operation_type: str
    operation_data: dict[str, Any] = Field(default_factory=dict)
    amount: Optional[Decimal] = None
    threshold_exceeded: bool = False
    requires_approval: bool = False
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_pending(self) -> bool:
        return self.requires_approval and self.approved_at is None

    @classmethod
    def from_audit_log(cls, log: StoredAuditLog, operation_id: str) -> 'SensitiveOperation':
        """
        Build the sensitive operation row that accompanies a HIGH/CRITICAL log.

        Critical operations exceed the threshold; those above 5000 also
        need approval.
        """
        critical = log.risk_level == RiskLevel.CRITICAL
        return cls(
            id=operation_id,
            family_id=log.family_id,
            user_id=log.user_id,
            operation_type=log.operation_context or f"{log.action.value}_{log.table_name}",
            operation_data={
                "action": log.action.value,
                "table": log.table_name,
                "record_id": log.record_id,
                "old_data": log.old_data,
                "new_data": log.new_data,
                "audit_log_id": log.id,
            },
            amount=log.amount,
            threshold_exceeded=critical,
            requires_approval=critical and log.amount is not None and log.amount > 5000,
            created_at=log.created_at,
        )


class SecurityDashboard(BaseModel):
    """Per-family aggregate of the audit trail."""

    total_operations: int = 0
    critical_operations: int = 0
    high_risk_operations: int = 0
    operations_last_24h: int = 0
    high_risk_last_24h: int = 0
    last_operation: Optional[datetime] = None
    avg_amount_involved: Decimal = Decimal("0")

    @classmethod
    def empty(cls) -> 'SecurityDashboard':
        """All-zero dashboard for families with no audit history yet."""
        return cls()

    @classmethod
    def from_logs(
        cls,
        logs: Sequence[StoredAuditLog],
        now: Optional[datetime] = None,
    ) -> Optional['SecurityDashboard']:
        """
        Aggregate the last 30 days of a family's audit logs.

        Returns None when there is nothing in the window, like an
        aggregate view with no row for the family.
        """
        now = now or utcnow()
        recent = [log for log in logs if log.created_at >= now - DASHBOARD_WINDOW]
        if not recent:
            return None

        day_ago = now - timedelta(hours=24)
        severe = (RiskLevel.HIGH, RiskLevel.CRITICAL)
        amounts = [log.amount for log in recent if log.amount is not None]

        return cls(
            total_operations=len(recent),
            critical_operations=sum(1 for log in recent if log.risk_level == RiskLevel.CRITICAL),
            high_risk_operations=sum(1 for log in recent if log.risk_level == RiskLevel.HIGH),
            operations_last_24h=sum(1 for log in recent if log.created_at >= day_ago),
            high_risk_last_24h=sum(
                1 for log in recent
                if log.created_at >= day_ago and log.risk_level in severe
            ),
            last_operation=max(log.created_at for log in recent),
            avg_amount_involved=(
                sum(amounts, Decimal("0")) / len(amounts) if amounts else Decimal("0")
            ),
        )


class EncryptionOperationRecord(BaseModel):
    """One attempt to encrypt a row, as sent to log_encryption_operation."""

    family_id: str
    user_id: Optional[str] = None
    table_name: str
    record_id: str
    operation: AuditAction = AuditAction.ENCRYPT
    encryption_version: int = 1
    success: bool
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class RequestContext(BaseModel):
    """Request metadata merged into every entry that lacks it."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
