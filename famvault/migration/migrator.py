"""
Encryption Migration

Walks the plaintext rows of a family and encrypts them in place:
account balances, transaction amounts and user PII.

DESIGN DECISION: The migration is idempotent instead of transactional.
Only rows whose encrypted column is still null are selected, so a crashed,
cancelled or partially failed run is resumed by simply running it again.

Each row is isolated:
- An encryption or persistence error on one row is recorded in the
  MigrationResult and the loop moves on
- Only a failure to fetch the next batch stops the run early
- Audit writes never raise (see AuditLogger)

Rows are processed sequentially so audit log ordering is deterministic and
the store sees bounded load.
"""

import asyncio
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, NamedTuple, Optional

import structlog

from famvault.audit import AuditLogger, get_audit_logger
from famvault.config import get_settings
from famvault.crypto.domain import encrypt_financial_amount, encrypt_user_pii
from famvault.crypto.errors import MissingSaltError, ValidationError
from famvault.crypto.keys import generate_family_key
from famvault.models.audit import EncryptionOperationRecord
from famvault.models.encryption import UserPIIData, utcnow
from famvault.models.migration import (
    EncryptionHealth,
    FamilyMigrationReport,
    MigrationProgress,
    MigrationResult,
    MigrationStatus,
)
from famvault.services.storage.interface import EncryptedTable, FinancialDataStore


logger = structlog.get_logger(__name__)


ProgressCallback = Callable[[MigrationProgress], None]

PII_FIELDS = tuple(UserPIIData.model_fields)


class _TableMigration(NamedTuple):
    """How one table is walked and described."""
    table: EncryptedTable
    stage: str
    failure_label: str
    batched: bool


ACCOUNTS = _TableMigration(
    table=EncryptedTable.FINANCIAL_ACCOUNTS,
    stage="Encrypting account balances",
    failure_label="Account migration",
    batched=False,
)
TRANSACTIONS = _TableMigration(
    table=EncryptedTable.TRANSACTIONS,
    stage="Encrypting transaction amounts",
    failure_label="Transaction migration",
    batched=True,
)
PROFILES = _TableMigration(
    table=EncryptedTable.PROFILES,
    stage="Encrypting user PII",
    failure_label="PII migration",
    batched=False,
)


def _stored_amount(value: Any) -> Any:
    """Stores hand back text for some numeric columns."""
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"Amount must be a number, got {value!r}")
    return value


def _pii_from_row(row: dict[str, Any]) -> UserPIIData:
    return UserPIIData(**{
        name: str(row[name]) if row.get(name) not in (None, "") else None
        for name in PII_FIELDS
    })


def _describe(plan: _TableMigration, row: dict[str, Any]) -> tuple[str, str]:
    """(progress item, error prefix) for a row."""
    row_id = row.get("id")
    if plan.table == EncryptedTable.FINANCIAL_ACCOUNTS:
        name = row.get("name") or "Unnamed"
        return f"Account: {name}", f"Account {name} ({row_id})"
    if plan.table == EncryptedTable.TRANSACTIONS:
        description = str(row.get("description") or "Unnamed")[:30]
        return f"Transaction: {description}", f"Transaction {description} ({row_id})"
    name = row.get("full_name") or "Unnamed"
    return f"User: {name}", f"User {name} ({row_id})"


class EncryptionMigrator:
    """
    Encrypts a family's existing plaintext data.

    Usage:
        migrator = EncryptionMigrator(store, progress_callback=print)
        report = await migrator.migrate_family_data(family_id, user_id)
    """

    def __init__(
        self,
        store: FinancialDataStore,
        audit_logger: Optional[AuditLogger] = None,
        progress_callback: Optional[ProgressCallback] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        user_id: Optional[str] = None,
    ):
        """
        Args:
            store: Data store holding the plaintext rows
            audit_logger: Defaults to the process-wide audit logger
            progress_callback: Called after each row starts processing
            batch_size: Rows per batch for transactions (settings default: 50)
            batch_delay: Seconds to pause between batches (settings default: 0.2)
            user_id: User the migration runs on behalf of (for the audit trail)
        """
        settings = get_settings()
        self._store = store
        self._audit = audit_logger or get_audit_logger()
        self._progress_callback = progress_callback
        self._batch_size = batch_size or settings.migration.transaction_batch_size
        self._batch_delay = (
            batch_delay if batch_delay is not None
            else settings.migration.batch_delay_seconds
        )
        self._default_currency = settings.migration.default_currency
        self._encryption_version = settings.encryption.version
        self._user_id = user_id

    def _report_progress(
        self,
        stage: str,
        current: int,
        total: int,
        current_item: Optional[str] = None,
    ) -> None:
        """A failing callback is logged and never stops the run."""
        if self._progress_callback is None:
            return
        try:
            self._progress_callback(
                MigrationProgress.build(stage, current, total, current_item)
            )
        except Exception as e:
            logger.warning(
                "progress_callback_failed",
                stage=stage,
                error_type=type(e).__name__,
                error=str(e),
            )

    # =========================================================================
    # ROW ENCRYPTION
    # =========================================================================

    def _encrypt_row(
        self,
        table: EncryptedTable,
        row: dict[str, Any],
        family_key: str,
    ) -> Optional[dict[str, Any]]:
        """Envelope for the row, or None when there is nothing to encrypt."""
        if table == EncryptedTable.PROFILES:
            pii = _pii_from_row(row)
            if pii.is_empty:
                return None
            return encrypt_user_pii(pii, family_key).model_dump(mode="json")

        value_column = table.column_prefix
        currency = row.get("currency") or self._default_currency
        encrypted = encrypt_financial_amount(
            _stored_amount(row.get(value_column)),
            currency,
            family_key,
        )
        return encrypted.model_dump(mode="json")

    async def _persist(
        self,
        table: EncryptedTable,
        family_id: str,
        record_id: str,
        envelope: dict[str, Any],
    ) -> None:
        await self._store.save_encrypted(
            table,
            family_id,
            record_id,
            envelope,
            encrypted_at=utcnow(),
            encryption_version=self._encryption_version,
        )

    async def _audit_row(
        self,
        table: EncryptedTable,
        family_id: str,
        record_id: str,
        success: bool,
        error_message: Optional[str] = None,
    ) -> None:
        await self._audit.log_encryption_operation(EncryptionOperationRecord(
            family_id=family_id,
            user_id=self._user_id,
            table_name=table.value,
            record_id=record_id,
            encryption_version=self._encryption_version,
            success=success,
            error_message=error_message,
        ))

    # =========================================================================
    # TABLE MIGRATION
    # =========================================================================

    async def _migrate_table(
        self,
        plan: _TableMigration,
        family_id: str,
        family_key: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> MigrationResult:
        result = MigrationResult()
        result.start()
        log = logger.bind(family_id=family_id, table_name=plan.table.value)

        try:
            total = await self._store.count_unencrypted(plan.table, family_id)
        except Exception as e:
            result.errors.append(f"{plan.failure_label} failed: {e}")
            log.error("migration_fetch_failed", error=str(e))
            return result.finish(MigrationStatus.PARTIALLY_FAILED)

        self._report_progress(plan.stage, 0, total)
        if total == 0:
            log.info("migration_nothing_to_do")
            return result.finish()

        log.info("migration_started", total=total)
        limit = self._batch_size if plan.batched else None
        after_id: Optional[str] = None
        final_status: Optional[MigrationStatus] = None

        while final_status is None:
            try:
                batch = await self._store.list_unencrypted(
                    plan.table,
                    family_id,
                    limit=limit,
                    after_id=after_id,
                )
            except Exception as e:
                result.errors.append(f"{plan.failure_label} failed: {e}")
                log.error("migration_fetch_failed", error=str(e), processed=result.processed)
                final_status = MigrationStatus.PARTIALLY_FAILED
                break

            if not batch:
                break

            for row in batch:
                if cancel_event is not None and cancel_event.is_set():
                    result.errors.append(f"{plan.failure_label} cancelled")
                    log.warning("migration_cancelled", processed=result.processed)
                    final_status = MigrationStatus.CANCELLED
                    break
                await self._migrate_row(plan, family_id, family_key, row, total, result)

            if final_status is not None:
                break

            last_id = batch[-1].get("id")
            if last_id is None or limit is None or len(batch) < limit:
                break
            after_id = str(last_id)

            # Throttle so the store is not flooded
            await asyncio.sleep(self._batch_delay)

        result.finish(final_status)
        log.info(
            "migration_finished",
            status=result.status.value,
            processed=result.processed,
            encrypted=result.encrypted,
            failed=result.failed,
            skipped=result.skipped,
            duration_ms=result.duration_ms,
        )
        return result

    async def _migrate_row(
        self,
        plan: _TableMigration,
        family_id: str,
        family_key: str,
        row: dict[str, Any],
        total: int,
        result: MigrationResult,
    ) -> None:
        record_id = str(row.get("id"))
        progress_item, error_prefix = _describe(plan, row)

        result.processed += 1
        self._report_progress(plan.stage, result.processed, total, progress_item)

        try:
            envelope = self._encrypt_row(plan.table, row, family_key)
            if envelope is None:
                result.skipped += 1
                return
            await self._persist(plan.table, family_id, record_id, envelope)
        except Exception as e:
            result.record_failure(f"{error_prefix}: {e}")
            logger.warning(
                "row_encryption_failed",
                family_id=family_id,
                table_name=plan.table.value,
                record_id=record_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            await self._audit_row(plan.table, family_id, record_id, False, str(e))
            return

        result.record_success()
        await self._audit_row(plan.table, family_id, record_id, True)

    async def migrate_account_balances(
        self,
        family_id: str,
        family_key: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> MigrationResult:
        """Encrypt every unencrypted account balance of the family."""
        return await self._migrate_table(ACCOUNTS, family_id, family_key, cancel_event)

    async def migrate_transaction_amounts(
        self,
        family_id: str,
        family_key: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> MigrationResult:
        """Encrypt every unencrypted transaction amount, in batches."""
        return await self._migrate_table(TRANSACTIONS, family_id, family_key, cancel_event)

    async def migrate_user_pii(
        self,
        family_id: str,
        family_key: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> MigrationResult:
        """Encrypt the PII of every family member. Empty profiles are skipped."""
        return await self._migrate_table(PROFILES, family_id, family_key, cancel_event)

    # =========================================================================
    # FAMILY MIGRATION
    # =========================================================================

    async def _family_key(self, family_id: str, user_id: Optional[str]) -> str:
        user_id = user_id or self._user_id
        salt = await self._store.get_encryption_salt(user_id) if user_id else None
        if not salt:
            raise MissingSaltError("User encryption salt not found")
        return generate_family_key(family_id, salt)

    async def migrate_family_data(
        self,
        family_id: str,
        user_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> FamilyMigrationReport:
        """
        Run all three migrations for a family.

        The family key is derived once up front from the user's stored salt.

        Raises:
            MissingSaltError: The user has no encryption salt
            ConfigurationError: The master key is missing or malformed
        """
        started = time.monotonic()
        family_key = await self._family_key(family_id, user_id)

        logger.info("family_migration_started", family_id=family_id)
        accounts = await self.migrate_account_balances(family_id, family_key, cancel_event)
        transactions = await self.migrate_transaction_amounts(family_id, family_key, cancel_event)
        pii = await self.migrate_user_pii(family_id, family_key, cancel_event)

        report = FamilyMigrationReport.from_results(
            accounts,
            transactions,
            pii,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        logger.info(
            "family_migration_finished",
            family_id=family_id,
            success=report.success,
            total_processed=report.summary.total_processed,
            total_failed=report.summary.total_failed,
        )
        return report

    async def get_encryption_health(self, family_id: str) -> list[EncryptionHealth]:
        """Encryption coverage of each table for a family."""
        health = []
        for table in EncryptedTable:
            counts = await self._store.get_encryption_counts(table, family_id)
            health.append(EncryptionHealth.from_counts(
                table.value,
                counts.total,
                counts.encrypted,
                counts.latest_encryption,
            ))
        return health

    # =========================================================================
    # LIVE PATH
    # =========================================================================

    async def _encrypt_single(
        self,
        table: EncryptedTable,
        family_id: str,
        family_key: str,
        record_id: str,
        amount: Any,
        currency: Optional[str],
    ) -> bool:
        try:
            encrypted = encrypt_financial_amount(
                amount,
                currency or self._default_currency,
                family_key,
            )
            await self._persist(table, family_id, record_id, encrypted.model_dump(mode="json"))
        except Exception as e:
            logger.error(
                "row_encryption_failed",
                family_id=family_id,
                table_name=table.value,
                record_id=record_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            await self._audit_row(table, family_id, record_id, False, str(e))
            return False

        await self._audit_row(table, family_id, record_id, True)
        return True

    async def encrypt_account_balance(
        self,
        family_id: str,
        family_key: str,
        account_id: str,
        balance: Any,
        currency: Optional[str] = None,
    ) -> bool:
        """Encrypt and store one account balance as it is written."""
        return await self._encrypt_single(
            EncryptedTable.FINANCIAL_ACCOUNTS,
            family_id,
            family_key,
            account_id,
            balance,
            currency,
        )

    async def encrypt_transaction_amount(
        self,
        family_id: str,
        family_key: str,
        transaction_id: str,
        amount: Any,
        currency: Optional[str] = None,
    ) -> bool:
        """Encrypt and store one transaction amount as it is written."""
        return await self._encrypt_single(
            EncryptedTable.TRANSACTIONS,
            family_id,
            family_key,
            transaction_id,
            amount,
            currency,
        )


async def migrate_current_family_data(
    store: FinancialDataStore,
    user_id: str,
    audit_logger: Optional[AuditLogger] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> FamilyMigrationReport:
    """
    Migrate the family of the given user.

    Raises:
        MissingSaltError: The user has no encryption salt
        ValueError: The user does not belong to a family
    """
    family_id = await store.get_family_id_for_user(user_id)
    if not family_id:
        raise ValueError(f"User {user_id} does not belong to a family")

    migrator = EncryptionMigrator(
        store,
        audit_logger=audit_logger,
        progress_callback=progress_callback,
        user_id=user_id,
    )
    return await migrator.migrate_family_data(family_id, user_id)
