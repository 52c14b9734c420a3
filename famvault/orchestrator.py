"""
Component wiring for famvault

This module ties together storage, the audit logger and the migrator.

DESIGN DECISION: The factory is the only place that knows about concrete
backends. Everything else depends on the abstract storage interfaces, so
tests and scripts can hand in their own store.
"""

from typing import NamedTuple, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from famvault.audit import AuditLogger, configure_audit_logger
from famvault.migration import EncryptionMigrator
from famvault.migration.migrator import ProgressCallback
from famvault.services.storage import (
    AuditStorageInterface,
    FinancialDataStore,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsFinancialStore,
    StorageError,
)


logger = structlog.get_logger(__name__)


class AppComponents(NamedTuple):
    store: Optional[FinancialDataStore]
    audit_logger: AuditLogger
    migrator: Optional[EncryptionMigrator]
    sheets_client: Optional[GoogleSheetsClient]


def create_app_components(
    use_storage: bool = True,
    store: Optional[FinancialDataStore] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage when no
                    store is passed in. Set to False for local-only runs.
        store: Data store to use instead of Google Sheets
        audit_storage: Audit backend to use instead of Google Sheets
        progress_callback: Passed to the migrator

    The process-wide audit logger is configured with the chosen audit
    backend. Without a data store there is no migrator.
    """
    sheets_client = None

    if use_storage and (store is None or audit_storage is None):
        try:
            sheets_client = GoogleSheetsClient()
            store = store or GoogleSheetsFinancialStore(sheets_client)
            audit_storage = audit_storage or GoogleSheetsAuditStorage(sheets_client)
        except (PydanticValidationError, StorageError) as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None

    audit_logger = configure_audit_logger(audit_storage)

    migrator = None
    if store is not None:
        migrator = EncryptionMigrator(
            store,
            audit_logger=audit_logger,
            progress_callback=progress_callback,
        )

    return AppComponents(
        store=store,
        audit_logger=audit_logger,
        migrator=migrator,
        sheets_client=sheets_client,
    )
