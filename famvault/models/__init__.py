"""
Data Models Package

This package contains all Pydantic models used in famvault.
All data flowing through the encryption, audit and migration layers
must conform to these schemas.
"""

from famvault.models.encryption import (
    AccountType,
    BankAccountCredentials,
    DecryptedBankAccount,
    DecryptedFinancialData,
    DecryptedUserPII,
    EncryptedBankAccount,
    EncryptedDataType,
    EncryptedEnvelope,
    EncryptedFinancialData,
    EncryptedUserPII,
    UserPIIData,
)
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
    calculate_risk_level,
    compute_changes,
)
from famvault.models.migration import (
    EncryptionHealth,
    FamilyMigrationReport,
    FamilyMigrationResults,
    HealthStatus,
    MigrationProgress,
    MigrationResult,
    MigrationStatus,
    MigrationSummary,
)

__all__ = [
    # Encryption models
    "AccountType",
    "BankAccountCredentials",
    "DecryptedBankAccount",
    "DecryptedFinancialData",
    "DecryptedUserPII",
    "EncryptedBankAccount",
    "EncryptedDataType",
    "EncryptedEnvelope",
    "EncryptedFinancialData",
    "EncryptedUserPII",
    "UserPIIData",
    # Audit models
    "SYSTEM_FAMILY_ID",
    "SYSTEM_USER_ID",
    "AuditAction",
    "AuditLogEntry",
    "AuditLogFilters",
    "EncryptionOperationRecord",
    "RequestContext",
    "RiskLevel",
    "SecurityDashboard",
    "SensitiveOperation",
    "StoredAuditLog",
    "calculate_risk_level",
    "compute_changes",
    # Migration models
    "EncryptionHealth",
    "FamilyMigrationReport",
    "FamilyMigrationResults",
    "HealthStatus",
    "MigrationProgress",
    "MigrationResult",
    "MigrationStatus",
    "MigrationSummary",
]
