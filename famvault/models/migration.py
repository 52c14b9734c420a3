"""
Migration Models

A MigrationResult is created when a run starts, mutated as each row is
processed, and finalized when the run ends. It is only ever touched by
the single task running that migration.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from famvault.models.encryption import utcnow


class MigrationStatus(str, Enum):
    """
    Lifecycle of one entity migration.

    NOT_STARTED -> RUNNING -> COMPLETED | PARTIALLY_FAILED | CANCELLED

    A single row failing never aborts a run; it ends PARTIALLY_FAILED.
    """
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    CANCELLED = "cancelled"


class MigrationResult(BaseModel):
    """Outcome of migrating one table for one family."""

    success: bool = False
    status: MigrationStatus = MigrationStatus.NOT_STARTED
    processed: int = Field(default=0, ge=0)
    encrypted: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(
        default=0,
        ge=0,
        description="Rows with nothing to encrypt (e.g. empty PII)"
    )
    errors: list[str] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    duration_ms: int = Field(default=0, ge=0)

    def start(self) -> None:
        self.status = MigrationStatus.RUNNING
        self.start_time = utcnow()

    def record_success(self) -> None:
        self.encrypted += 1

    def record_failure(self, message: str) -> None:
        self.failed += 1
        self.errors.append(message)

    def finish(self, status: Optional[MigrationStatus] = None) -> 'MigrationResult':
        """
        Close the run.

        Without an explicit status the run is COMPLETED when no row failed,
        PARTIALLY_FAILED otherwise. success is True only for COMPLETED.
        """
        if status is None:
            status = (
                MigrationStatus.COMPLETED
                if self.failed == 0
                else MigrationStatus.PARTIALLY_FAILED
            )
        self.status = status
        self.success = status == MigrationStatus.COMPLETED
        self.end_time = utcnow()
        delta = self.end_time - self.start_time
        self.duration_ms = max(0, int(delta.total_seconds() * 1000))
        return self


class MigrationProgress(BaseModel):
    """Ephemeral progress snapshot passed to the progress callback."""

    stage: str
    current: int = Field(ge=0)
    total: int = Field(ge=0)
    percentage: int = Field(ge=0, le=100)
    current_item: Optional[str] = None

    @classmethod
    def build(
        cls,
        stage: str,
        current: int,
        total: int,
        current_item: Optional[str] = None,
    ) -> 'MigrationProgress':
        percentage = round(current / total * 100) if total > 0 else 0
        return cls(
            stage=stage,
            current=current,
            total=total,
            percentage=min(100, percentage),
            current_item=current_item,
        )


class FamilyMigrationResults(BaseModel):
    accounts: MigrationResult
    transactions: MigrationResult
    pii: MigrationResult


class MigrationSummary(BaseModel):
    total_processed: int = 0
    total_encrypted: int = 0
    total_failed: int = 0
    total_errors: list[str] = Field(default_factory=list)
    duration_ms: int = 0


class FamilyMigrationReport(BaseModel):
    """Combined outcome of migrate_family_data()."""

    success: bool
    results: FamilyMigrationResults
    summary: MigrationSummary

    @classmethod
    def from_results(
        cls,
        accounts: MigrationResult,
        transactions: MigrationResult,
        pii: MigrationResult,
        duration_ms: int,
    ) -> 'FamilyMigrationReport':
        parts = (accounts, transactions, pii)
        return cls(
            success=all(r.success for r in parts),
            results=FamilyMigrationResults(
                accounts=accounts,
                transactions=transactions,
                pii=pii,
            ),
            summary=MigrationSummary(
                total_processed=sum(r.processed for r in parts),
                total_encrypted=sum(r.encrypted for r in parts),
                total_failed=sum(r.failed for r in parts),
                total_errors=[e for r in parts for e in r.errors],
                duration_ms=duration_ms,
            ),
        )


class HealthStatus(str, Enum):
    FULLY_ENCRYPTED = "FULLY_ENCRYPTED"
    MOSTLY_ENCRYPTED = "MOSTLY_ENCRYPTED"
    PARTIALLY_ENCRYPTED = "PARTIALLY_ENCRYPTED"
    MINIMALLY_ENCRYPTED = "MINIMALLY_ENCRYPTED"
    NOT_ENCRYPTED = "NOT_ENCRYPTED"


class EncryptionHealth(BaseModel):
    """How much of one table is encrypted for a family."""

    table_name: str
    total_records: int = Field(ge=0)
    encrypted_records: int = Field(ge=0)
    encryption_percentage: float = Field(ge=0, le=100)
    latest_encryption: Optional[datetime] = None
    health_status: HealthStatus

    @classmethod
    def from_counts(
        cls,
        table_name: str,
        total_records: int,
        encrypted_records: int,
        latest_encryption: Optional[datetime] = None,
    ) -> 'EncryptionHealth':
        if total_records > 0:
            percentage = round(encrypted_records / total_records * 100, 2)
        else:
            percentage = 0.0

        # An empty table has nothing left to encrypt
        if total_records == 0 or percentage >= 100:
            status = HealthStatus.FULLY_ENCRYPTED
        elif percentage >= 75:
            status = HealthStatus.MOSTLY_ENCRYPTED
        elif percentage >= 50:
            status = HealthStatus.PARTIALLY_ENCRYPTED
        elif percentage > 0:
            status = HealthStatus.MINIMALLY_ENCRYPTED
        else:
            status = HealthStatus.NOT_ENCRYPTED

        return cls(
            table_name=table_name,
            total_records=total_records,
            encrypted_records=encrypted_records,
            encryption_percentage=min(100.0, percentage),
            latest_encryption=latest_encryption,
            health_status=status,
        )
