"""Audit trail: models, SQLite store, typed logger and query CLI."""

from bookswap.audit.logger import AuditLogger
from bookswap.audit.models import AuditEntry, EventType
from bookswap.audit.store import init_audit_table, insert_audit_entry, query_audit_trail

__all__ = [
    "AuditEntry",
    "AuditLogger",
    "EventType",
    "init_audit_table",
    "insert_audit_entry",
    "query_audit_trail",
]
