"""
Tests for the audit logger.

The logger must never raise because of its storage: every test that
simulates an outage checks that a null result comes back instead.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from famvault.audit import AuditLogger, configure_audit_logger, get_audit_logger
from famvault.models.audit import (
    SYSTEM_FAMILY_ID,
    SYSTEM_USER_ID,
    AuditAction,
    AuditLogEntry,
    AuditLogFilters,
    EncryptionOperationRecord,
    RiskLevel,
    SecurityDashboard,
)
from famvault.crypto import create_data_checksum


class TestLogFinancialOperation:
    """Tests for the core logging call."""

    async def test_returns_audit_id(self, audit_logger, audit_storage):
        audit_id = await audit_logger.log_financial_operation(AuditLogEntry(
            family_id="fam-1",
            user_id="user-1",
            action=AuditAction.CREATE,
            table_name="transactions",
        ))
        assert audit_id == audit_storage.logs[0].id

    async def test_storage_failure_is_swallowed(self, audit_logger, audit_storage):
        """An audit outage returns None instead of raising."""
        audit_storage.fail = True
        audit_id = await audit_logger.log_financial_operation(AuditLogEntry(
            family_id="fam-1",
            user_id="user-1",
            action=AuditAction.CREATE,
            table_name="transactions",
        ))
        assert audit_id is None

    async def test_local_only_without_storage(self):
        assert await AuditLogger().log_financial_operation(AuditLogEntry(
            family_id="fam-1",
            user_id="user-1",
            action=AuditAction.VIEW,
            table_name="security_events",
        )) is None

    async def test_request_context_fills_blanks(self, audit_logger, audit_storage):
        audit_logger.set_request_context(ip_address="10.0.0.1", user_agent="pytest")
        await audit_logger.log_financial_operation(AuditLogEntry(
            family_id="fam-1",
            user_id="user-1",
            action=AuditAction.VIEW,
            table_name="security_events",
            user_agent="explicit",
        ))
        log = audit_storage.logs[0]
        assert log.ip_address == "10.0.0.1"
        assert log.user_agent == "explicit"

    async def test_clear_request_context(self, audit_logger, audit_storage):
        audit_logger.set_request_context(ip_address="10.0.0.1")
        audit_logger.clear_request_context()
        await audit_logger.log_security_event("fam-1", "user-1", "export")
        assert audit_storage.logs[0].ip_address is None

    async def test_critical_entry_creates_pending_approval(self, audit_logger, audit_storage):
        await audit_logger.log_transaction(
            AuditAction.CREATE, "fam-1", "user-1", "tx-1",
            new_data={"amount": 12000},
        )
        assert audit_storage.logs[0].risk_level == RiskLevel.CRITICAL
        pending = await audit_logger.get_pending_approvals("fam-1")
        assert len(pending) == 1
        assert pending[0].operation_type == "transaction-management"

    async def test_low_entry_creates_no_sensitive_operation(self, audit_logger, audit_storage):
        await audit_logger.log_transaction(
            AuditAction.CREATE, "fam-1", "user-1", "tx-1",
            new_data={"amount": 12},
        )
        assert audit_storage.operations == []


class TestConvenienceLoggers:
    """Tests for the per-entity wrappers."""

    async def test_log_transaction_uses_new_amount(self, audit_logger, audit_storage):
        await audit_logger.log_transaction(
            AuditAction.UPDATE, "fam-1", "user-1", "tx-1",
            old_data={"amount": 10}, new_data={"amount": 500},
        )
        log = audit_storage.logs[0]
        assert log.table_name == "transactions"
        assert log.operation_context == "transaction-management"
        assert log.amount == Decimal("500")
        assert log.risk_level == RiskLevel.MEDIUM
        assert log.changes == {"amount": {"old": 10, "new": 500}}

    async def test_log_budget(self, audit_logger, audit_storage):
        await audit_logger.log_budget(
            AuditAction.DELETE, "fam-1", "user-1", "b-1",
            old_data={"amount": 50},
        )
        log = audit_storage.logs[0]
        assert log.table_name == "budgets"
        assert log.amount == Decimal("50")

    async def test_log_account_uses_balance_change(self, audit_logger, audit_storage):
        await audit_logger.log_account(
            AuditAction.UPDATE, "fam-1", "user-1", "acc-1",
            old_data={"balance": 1000}, new_data={"balance": 7000},
        )
        log = audit_storage.logs[0]
        assert log.amount == Decimal("6000")
        assert log.risk_level == RiskLevel.CRITICAL
        assert log.operation_context == "account-management"

    async def test_log_recurring_transaction_defaults_amount(self, audit_logger, audit_storage):
        await audit_logger.log_recurring_transaction(
            AuditAction.CREATE, "fam-1", "user-1", "r-1", new_data={"name": "Rent"},
        )
        assert audit_storage.logs[0].amount == Decimal("0")
        assert audit_storage.logs[0].table_name == "recurring_transactions"

    @pytest.mark.parametrize("status,amount,expected", [
        ("failed", 10, RiskLevel.HIGH),
        ("success", 1500, RiskLevel.MEDIUM),
        ("success", 1000, RiskLevel.LOW),
    ])
    async def test_recurring_execution_risk(self, audit_logger, audit_storage,
                                            status, amount, expected):
        await audit_logger.log_recurring_transaction_execution(
            "fam-1", "user-1", "r-1",
            {"scheduled_date": "2024-01-01", "execution_status": status, "amount": amount},
        )
        log = audit_storage.logs[0]
        assert log.action == AuditAction.EXECUTE
        assert log.risk_level == expected

    @pytest.mark.parametrize("failed,total,expected", [
        (1, 0, RiskLevel.HIGH),
        (0, 20000, RiskLevel.MEDIUM),
        (0, 500, RiskLevel.LOW),
    ])
    async def test_bulk_processing_risk(self, audit_logger, audit_storage,
                                        failed, total, expected):
        await audit_logger.log_bulk_recurring_processing({
            "processed_count": 3,
            "failed_count": failed,
            "error_messages": [],
            "families_affected": [],
            "total_amount_processed": total,
        })
        log = audit_storage.logs[0]
        assert log.risk_level == expected
        assert log.user_id == SYSTEM_USER_ID
        assert log.family_id == SYSTEM_FAMILY_ID
        assert log.record_id.startswith("bulk_processing_")

    async def test_security_event_is_view(self, audit_logger, audit_storage):
        await audit_logger.log_security_event("fam-1", "user-1", "data-export", {"rows": 10})
        log = audit_storage.logs[0]
        assert log.action == AuditAction.VIEW
        assert log.table_name == "security_events"
        assert log.operation_context == "data-export"

    async def test_suspicious_activity(self, audit_logger, audit_storage):
        await audit_logger.log_suspicious_activity("fam-1", "user-1", "rapid-logins")
        log = audit_storage.logs[0]
        assert log.table_name == "suspicious_activities"
        assert log.risk_level == RiskLevel.HIGH
        assert "detected_at" in log.new_data

    async def test_authentication_without_family(self, audit_logger, audit_storage):
        await audit_logger.log_authentication("user-1", AuditAction.LOGIN)
        log = audit_storage.logs[0]
        assert log.table_name == "auth_events"
        assert log.family_id == SYSTEM_FAMILY_ID

    async def test_encryption_operation(self, audit_logger, audit_storage):
        ok = await audit_logger.log_encryption_operation(EncryptionOperationRecord(
            family_id="fam-1",
            table_name="transactions",
            record_id="tx-1",
            success=False,
            error_message="boom",
        ))
        assert ok
        assert audit_storage.encryption_records[0].error_message == "boom"

    async def test_encryption_operation_failure_swallowed(self, audit_logger, audit_storage):
        audit_storage.fail = True
        ok = await audit_logger.log_encryption_operation(EncryptionOperationRecord(
            family_id="fam-1",
            table_name="transactions",
            record_id="tx-1",
            success=True,
        ))
        assert not ok

    async def test_invalid_context_is_logged_not_raised(self, audit_logger, audit_storage):
        audit_id = await audit_logger.log_security_event("fam-1", "user-1", "x" * 150, {})
        assert audit_id is None
        assert audit_storage.logs == []

    async def test_empty_user_is_logged_not_raised(self, audit_logger, audit_storage):
        assert await audit_logger.log_authentication("", AuditAction.LOGIN) is None
        assert audit_storage.logs == []

    async def test_record_data_checksum(self, audit_logger, audit_storage):
        data = {"amount": "10.00", "currency": "USD"}
        checksum = await audit_logger.record_data_checksum("transactions", "tx-1", "fam-1", data)
        assert checksum == create_data_checksum(data)
        assert audit_storage.checksums[("transactions", "tx-1")]["checksum"] == checksum


class TestReadPaths:
    """Tests for audit reads."""

    async def test_get_audit_logs_filters(self, audit_logger):
        await audit_logger.log_transaction(AuditAction.CREATE, "fam-1", "user-1", "tx-1")
        await audit_logger.log_budget(AuditAction.CREATE, "fam-1", "user-1", "b-1")
        await audit_logger.log_budget(AuditAction.CREATE, "fam-2", "user-2", "b-2")

        logs = await audit_logger.get_audit_logs("fam-1", AuditLogFilters(table_name="budgets"))
        assert [log.record_id for log in logs] == ["b-1"]

    async def test_get_audit_logs_newest_first(self, audit_logger):
        for i in range(3):
            await audit_logger.log_transaction(AuditAction.CREATE, "fam-1", "user-1", f"tx-{i}")
        logs = await audit_logger.get_audit_logs("fam-1")
        times = [log.created_at for log in logs]
        assert times == sorted(times, reverse=True)

    async def test_get_audit_logs_with_aware_dates(self, audit_logger):
        await audit_logger.log_transaction(AuditAction.CREATE, "fam-1", "user-1", "tx-1")
        since = datetime.now(timezone.utc) - timedelta(hours=1)
        logs = await audit_logger.get_audit_logs("fam-1", AuditLogFilters(start_date=since))
        assert [log.record_id for log in logs] == ["tx-1"]

    async def test_get_audit_logs_failure_returns_empty(self, audit_logger, audit_storage):
        audit_storage.fail = True
        assert await audit_logger.get_audit_logs("fam-1") == []

    async def test_dashboard_default_when_no_history(self, audit_logger):
        dashboard = await audit_logger.get_security_dashboard("fam-1")
        assert dashboard == SecurityDashboard.empty()

    async def test_dashboard_counts(self, audit_logger):
        await audit_logger.log_transaction(
            AuditAction.CREATE, "fam-1", "user-1", "tx-1", new_data={"amount": 20000},
        )
        await audit_logger.log_transaction(
            AuditAction.CREATE, "fam-1", "user-1", "tx-2", new_data={"amount": 5},
        )
        dashboard = await audit_logger.get_security_dashboard("fam-1")
        assert dashboard.total_operations == 2
        assert dashboard.critical_operations == 1
        assert dashboard.high_risk_last_24h == 1

    async def test_dashboard_read_failure_returns_none(self, audit_logger, audit_storage):
        audit_storage.fail = True
        assert await audit_logger.get_security_dashboard("fam-1") is None

    async def test_pending_approvals_failure_returns_empty(self, audit_logger, audit_storage):
        audit_storage.fail = True
        assert await audit_logger.get_pending_approvals("fam-1") == []


class TestProcessWideLogger:
    """Tests for the cached audit logger."""

    def test_same_instance(self):
        assert get_audit_logger() is get_audit_logger()

    def test_configure_installs_storage(self, audit_storage):
        configured = configure_audit_logger(audit_storage)
        assert configured is get_audit_logger()
        assert configured.storage is audit_storage
