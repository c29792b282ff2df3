"""
Compliance audit trail for retention and secure deletion.

Provides a buffered logger that flushes encrypted batches to pluggable
storage backends (memory, JSONL files, SQL).
"""

from .logger import ComplianceAuditLogger, redact_token
from .models import (
    AuditBatch,
    AuditEvent,
    AuditLevel,
    AuditLogEntry,
    ComplianceRecord,
    SystemInfo,
)
from .storage import (
    AuditStorage,
    FileAuditStorage,
    MemoryAuditStorage,
    SQLAuditStorage,
    get_audit_storage,
)

__all__ = [
    "ComplianceAuditLogger",
    "redact_token",
    "AuditEvent",
    "AuditLevel",
    "AuditLogEntry",
    "AuditBatch",
    "ComplianceRecord",
    "SystemInfo",
    "AuditStorage",
    "MemoryAuditStorage",
    "FileAuditStorage",
    "SQLAuditStorage",
    "get_audit_storage",
]
