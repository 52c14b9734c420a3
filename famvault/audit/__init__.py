"""Audit logging package."""

from famvault.audit.logger import AuditLogger, configure_audit_logger, get_audit_logger

__all__ = ["AuditLogger", "configure_audit_logger", "get_audit_logger"]
