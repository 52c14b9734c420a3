"""
Tests for the encryption migration.

Test strategy:
1. Idempotence: a second run finds nothing to do
2. Partial failure accounting: failures are counted, never fatal
3. Fatal configuration errors abort before any row is touched
"""

import asyncio
from decimal import Decimal

import pytest

from famvault.crypto import (
    ConfigurationError,
    MissingSaltError,
    decrypt_financial_amount,
    decrypt_user_pii,
)
from famvault.migration import EncryptionMigrator, migrate_current_family_data
from famvault.models import (
    EncryptedFinancialData,
    EncryptedUserPII,
    HealthStatus,
    MigrationStatus,
)
from famvault.orchestrator import create_app_components
from famvault.services.storage import EncryptedTable


FAMILY_ID = "fam-1"
USER_ID = "user-1"
USER_SALT = "abc123"


@pytest.fixture
def migrator(store, audit_logger):
    return EncryptionMigrator(store, audit_logger=audit_logger, batch_delay=0, user_id=USER_ID)


class TestAccountMigration:
    """Tests for account balance migration."""

    async def test_encrypts_all_accounts(self, migrator, store, family_key):
        store.add_account("acc-1", Decimal("100.50"), name="Checking")
        store.add_account("acc-2", 2500, name="Savings")

        result = await migrator.migrate_account_balances(FAMILY_ID, family_key)

        assert result.success
        assert result.status == MigrationStatus.COMPLETED
        assert (result.processed, result.encrypted, result.failed) == (2, 2, 0)

        row = store.rows[EncryptedTable.FINANCIAL_ACCOUNTS]["acc-1"]
        envelope = EncryptedFinancialData.model_validate(row["balance_encrypted"])
        assert decrypt_financial_amount(envelope, family_key).amount == Decimal("100.50")
        assert row["encryption_version"] == 1
        assert row["balance_encrypted_at"] is not None

    async def test_second_run_is_a_no_op(self, migrator, store, family_key):
        store.add_account("acc-1", 10)
        await migrator.migrate_account_balances(FAMILY_ID, family_key)

        result = await migrator.migrate_account_balances(FAMILY_ID, family_key)

        assert result.success
        assert result.processed == 0
        assert store.save_calls == ["acc-1"]

    async def test_partial_failure_accounting(self, migrator, store, family_key, audit_storage):
        """N rows, M failures: counts add up and the run continues."""
        store.add_account("acc-1", 10, name="Good")
        store.add_account("acc-2", -50, name="Overdrawn")
        store.add_account("acc-3", 30, name="Rejected")
        store.add_account("acc-4", 40, name="Good too")
        store.failing_saves.add("acc-3")

        result = await migrator.migrate_account_balances(FAMILY_ID, family_key)

        assert result.processed == 4
        assert result.failed == 2
        assert result.encrypted == 2
        assert len(result.errors) == 2
        assert not result.success
        assert result.status == MigrationStatus.PARTIALLY_FAILED
        assert result.errors[0].startswith("Account Overdrawn (acc-2): ")
        assert result.errors[1] == "Account Rejected (acc-3): write rejected"

        outcomes = [(r.record_id, r.success) for r in audit_storage.encryption_records]
        assert outcomes == [("acc-1", True), ("acc-2", False), ("acc-3", False), ("acc-4", True)]

    async def test_only_family_rows(self, migrator, store, family_key):
        store.add_account("acc-1", 10)
        store.add_account("acc-9", 10, family_id="fam-2")

        result = await migrator.migrate_account_balances(FAMILY_ID, family_key)

        assert result.processed == 1
        assert store.rows[EncryptedTable.FINANCIAL_ACCOUNTS]["acc-9"]["balance_encrypted"] is None

    async def test_audit_outage_does_not_fail_rows(self, migrator, store, family_key, audit_storage):
        audit_storage.fail = True
        store.add_account("acc-1", 10)

        result = await migrator.migrate_account_balances(FAMILY_ID, family_key)

        assert result.success
        assert result.encrypted == 1

    async def test_progress_reported_per_row(self, store, audit_logger, family_key):
        updates = []
        migrator = EncryptionMigrator(
            store,
            audit_logger=audit_logger,
            progress_callback=updates.append,
            batch_delay=0,
        )
        store.add_account("acc-1", 10, name="Checking")
        store.add_account("acc-2", 20, name="Savings")

        await migrator.migrate_account_balances(FAMILY_ID, family_key)

        assert [u.current for u in updates] == [0, 1, 2]
        assert updates[-1].percentage == 100
        assert updates[1].current_item == "Account: Checking"
        assert {u.stage for u in updates} == {"Encrypting account balances"}

    async def test_failing_progress_callback_does_not_stop_run(self, store, audit_logger, family_key):
        def broken_callback(progress):
            raise RuntimeError("ui went away")

        migrator = EncryptionMigrator(
            store,
            audit_logger=audit_logger,
            progress_callback=broken_callback,
            batch_delay=0,
        )
        store.add_account("acc-1", 10, name="Checking")
        store.add_account("acc-2", 20, name="Savings")

        result = await migrator.migrate_account_balances(FAMILY_ID, family_key)

        assert result.success
        assert result.encrypted == 2

    async def test_row_without_id_is_a_row_failure(self, migrator, store, family_key, monkeypatch):
        store.add_account("acc-1", 10, name="Checking")
        store.add_account("acc-2", 20, name="Savings")

        async def rows_with_ghost(table, family_id, limit=None, after_id=None):
            real = dict(store.rows[EncryptedTable.FINANCIAL_ACCOUNTS]["acc-1"])
            return [real, {"family_id": FAMILY_ID, "name": "Ghost", "balance": 5}]

        monkeypatch.setattr(store, "list_unencrypted", rows_with_ghost)

        result = await migrator.migrate_account_balances(FAMILY_ID, family_key)

        assert result.status == MigrationStatus.PARTIALLY_FAILED
        assert (result.processed, result.encrypted, result.failed) == (2, 1, 1)
        assert result.errors[0].startswith("Account Ghost (None): ")


class TestTransactionMigration:
    """Tests for batched transaction migration."""

    async def test_batches_with_keyset_pagination(self, store, audit_logger, family_key):
        migrator = EncryptionMigrator(store, audit_logger=audit_logger, batch_size=2, batch_delay=0)
        for i in range(5):
            store.add_transaction(f"tx-{i}", Decimal("1.25") * (i + 1))

        result = await migrator.migrate_transaction_amounts(FAMILY_ID, family_key)

        assert result.success
        assert result.encrypted == 5
        assert [call["after_id"] for call in store.list_calls] == [None, "tx-1", "tx-3"]
        assert all(call["limit"] == 2 for call in store.list_calls)

    async def test_failed_rows_are_not_refetched(self, store, audit_logger, family_key):
        migrator = EncryptionMigrator(store, audit_logger=audit_logger, batch_size=2, batch_delay=0)
        for i in range(4):
            store.add_transaction(f"tx-{i}", 10)
        store.failing_saves.update({"tx-0", "tx-1"})

        result = await migrator.migrate_transaction_amounts(FAMILY_ID, family_key)

        assert result.processed == 4
        assert result.failed == 2
        assert store.save_calls == ["tx-0", "tx-1", "tx-2", "tx-3"]

    async def test_default_batch_size(self, store, audit_logger, family_key):
        migrator = EncryptionMigrator(store, audit_logger=audit_logger, batch_delay=0)
        for i in range(3):
            store.add_transaction(f"tx-{i}", 10)

        await migrator.migrate_transaction_amounts(FAMILY_ID, family_key)

        assert store.list_calls[0]["limit"] == 50

    async def test_error_message_uses_description(self, migrator, store, family_key):
        store.add_transaction("tx-1", Decimal("1.005"), description="Coffee")

        result = await migrator.migrate_transaction_amounts(FAMILY_ID, family_key)

        assert result.errors == [
            "Transaction Coffee (tx-1): Amount must have at most 2 decimal places"
        ]

    async def test_fetch_failure_stops_run(self, store, audit_logger, family_key):
        migrator = EncryptionMigrator(store, audit_logger=audit_logger, batch_size=2, batch_delay=0)
        for i in range(5):
            store.add_transaction(f"tx-{i}", 10)
        store.fail_listing_after = 1

        result = await migrator.migrate_transaction_amounts(FAMILY_ID, family_key)

        assert result.processed == 2
        assert result.encrypted == 2
        assert result.failed == 0
        assert result.errors == ["Transaction migration failed: connection reset"]
        assert result.status == MigrationStatus.PARTIALLY_FAILED
        assert not result.success

    async def test_cancellation_between_rows(self, store, audit_logger, family_key):
        cancel = asyncio.Event()

        def cancel_after_first(progress):
            if progress.current == 1:
                cancel.set()

        migrator = EncryptionMigrator(
            store,
            audit_logger=audit_logger,
            progress_callback=cancel_after_first,
            batch_delay=0,
        )
        for i in range(3):
            store.add_transaction(f"tx-{i}", 10)

        result = await migrator.migrate_transaction_amounts(FAMILY_ID, family_key, cancel)

        assert result.status == MigrationStatus.CANCELLED
        assert result.processed == 1
        assert result.encrypted == 1

        # Resuming picks up where the cancelled run stopped
        resumed = await migrator.migrate_transaction_amounts(FAMILY_ID, family_key)
        assert resumed.processed == 2
        assert resumed.success


class TestPIIMigration:
    """Tests for profile PII migration."""

    async def test_encrypts_pii_and_skips_empty_profiles(self, migrator, store, family_key):
        store.add_profile("user-1", full_name="Ada Lovelace", phone_number=5550100)
        store.add_profile("user-2")

        result = await migrator.migrate_user_pii(FAMILY_ID, family_key)

        assert result.success
        assert (result.processed, result.encrypted, result.skipped) == (2, 1, 1)

        row = store.rows[EncryptedTable.PROFILES]["user-1"]
        pii = decrypt_user_pii(EncryptedUserPII.model_validate(row["pii_encrypted"]), family_key)
        assert pii.full_name == "Ada Lovelace"
        assert pii.phone_number == "5550100"
        assert store.rows[EncryptedTable.PROFILES]["user-2"]["pii_encrypted"] is None


class TestFamilyMigration:
    """Tests for the whole-family run."""

    async def test_full_run(self, migrator, store, family_key):
        store.add_profile(USER_ID, salt=USER_SALT, full_name="Ada Lovelace")
        store.add_account("acc-1", 100)
        store.add_transaction("tx-1", 12)
        store.add_transaction("tx-2", Decimal("12.345"))

        report = await migrator.migrate_family_data(FAMILY_ID)

        assert not report.success
        assert report.results.accounts.success
        assert report.results.pii.encrypted == 1
        assert report.summary.total_processed == 4
        assert report.summary.total_encrypted == 3
        assert report.summary.total_failed == 1
        assert len(report.summary.total_errors) == 1

        # Same family key as the fixture: derived from the stored salt
        row = store.rows[EncryptedTable.TRANSACTIONS]["tx-1"]
        envelope = EncryptedFinancialData.model_validate(row["amount_encrypted"])
        assert decrypt_financial_amount(envelope, family_key).amount == Decimal("12")

    async def test_missing_salt_touches_nothing(self, migrator, store, master_key):
        store.add_profile(USER_ID)
        store.add_account("acc-1", 100)

        with pytest.raises(MissingSaltError):
            await migrator.migrate_family_data(FAMILY_ID)

        assert store.list_calls == []
        assert store.save_calls == []

    async def test_missing_master_key_touches_nothing(self, migrator, store, monkeypatch):
        monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
        store.add_profile(USER_ID, salt=USER_SALT)
        store.add_account("acc-1", 100)

        with pytest.raises(ConfigurationError):
            await migrator.migrate_family_data(FAMILY_ID)

        assert store.save_calls == []

    async def test_migrate_current_family_data(self, store, audit_logger, master_key):
        store.add_profile(USER_ID, salt=USER_SALT, full_name="Ada")
        store.add_account("acc-1", 100)

        report = await migrate_current_family_data(store, USER_ID, audit_logger=audit_logger)

        assert report.success
        assert report.results.accounts.encrypted == 1

    async def test_migrate_current_family_data_without_family(self, store, master_key):
        with pytest.raises(ValueError):
            await migrate_current_family_data(store, "nobody")


class TestHealthAndLivePath:
    """Tests for health reporting and single-row encryption."""

    async def test_encryption_health(self, migrator, store, family_key):
        store.add_account("acc-1", 10)
        store.add_transaction("tx-1", 10)
        store.add_transaction("tx-2", 20)
        await migrator.migrate_account_balances(FAMILY_ID, family_key)

        health = {h.table_name: h for h in await migrator.get_encryption_health(FAMILY_ID)}

        assert health["financial_accounts"].health_status == HealthStatus.FULLY_ENCRYPTED
        assert health["financial_accounts"].latest_encryption is not None
        assert health["transactions"].health_status == HealthStatus.NOT_ENCRYPTED
        assert health["profiles"].total_records == 0

    async def test_encrypt_transaction_amount(self, migrator, store, family_key, audit_storage):
        store.add_transaction("tx-1", 10)

        assert await migrator.encrypt_transaction_amount(FAMILY_ID, family_key, "tx-1", Decimal("10"))
        assert store.rows[EncryptedTable.TRANSACTIONS]["tx-1"]["amount_encrypted"] is not None
        assert audit_storage.encryption_records[0].success

    async def test_encrypt_account_balance_failure(self, migrator, store, family_key, audit_storage):
        assert not await migrator.encrypt_account_balance(FAMILY_ID, family_key, "missing", 10)
        assert not audit_storage.encryption_records[0].success


class TestAppComponents:
    """Tests for the component factory."""

    def test_with_injected_storage(self, store, audit_storage):
        components = create_app_components(store=store, audit_storage=audit_storage)
        assert components.migrator is not None
        assert components.audit_logger.storage is audit_storage
        assert components.sheets_client is None

    def test_without_storage(self):
        components = create_app_components(use_storage=False)
        assert components.store is None
        assert components.migrator is None
        assert components.audit_logger.storage is None
