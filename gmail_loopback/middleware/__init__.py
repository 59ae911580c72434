"""Cross-cutting concerns for gmail_loopback."""

from gmail_loopback.middleware.audit_logger import AuditEntry, AuditLogger, audit_logger

__all__ = [
    "AuditEntry",
    "AuditLogger",
    "audit_logger",
]
