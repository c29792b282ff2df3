"""
Data models for the compliance audit trail.

Entries are buffered in memory and flushed as encrypted batches. Each entry
carries a checksum over its canonical JSON form so tampering can be detected
after decryption.
"""

import hashlib
import json
import os
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .. import __version__


class AuditEvent(str, Enum):
    """Audit events emitted by the retention subsystem."""

    # Retention
    OBJECT_STORED = "OBJECT_STORED"
    RETENTION_SCHEDULED = "RETENTION_SCHEDULED"
    EXTERNAL_SIGNAL_RECEIVED = "EXTERNAL_SIGNAL_RECEIVED"

    # Deletion
    DELETION_PASS = "DELETION_PASS"
    DELETION_COMPLETED = "DELETION_COMPLETED"
    DELETION_FAILED = "DELETION_FAILED"
    DELETION_RETRY_SCHEDULED = "DELETION_RETRY_SCHEDULED"

    # Access tokens
    TOKEN_GENERATED = "TOKEN_GENERATED"
    TOKEN_ACCESS = "TOKEN_ACCESS"
    TOKEN_REVOKED = "TOKEN_REVOKED"

    # System
    SYSTEM_START = "SYSTEM_START"
    SYSTEM_STOP = "SYSTEM_STOP"
    KEY_ROTATED = "KEY_ROTATED"
    REPORT_GENERATED = "REPORT_GENERATED"


class AuditLevel(str, Enum):
    """Severity of an audit entry."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    @classmethod
    def from_name(cls, name: str) -> "AuditLevel":
        """Parse a level name such as ``info`` or ``warning``."""
        normalized = name.strip().upper()
        if normalized == "WARNING":
            normalized = "WARN"
        return cls(normalized)


_LEVEL_RANK = {
    AuditLevel.DEBUG: 0,
    AuditLevel.INFO: 1,
    AuditLevel.WARN: 2,
    AuditLevel.ERROR: 3,
}


class SystemInfo(BaseModel):
    """Process identity recorded with every entry."""

    node_id: str = Field("retention-node", description="Node identifier")
    process_id: int = Field(default_factory=os.getpid, description="Process ID")
    version: str = Field(__version__, description="Toolkit version")


class AuditLogEntry(BaseModel):
    """A single compliance audit entry."""

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="UTC timestamp of the event",
    )
    event: str = Field(..., description="Event name")
    level: AuditLevel = Field(AuditLevel.INFO, description="Severity")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Event data")
    session_id: str = Field(
        default_factory=lambda: os.urandom(8).hex(),
        description="Random identifier correlating the entry",
    )
    system_info: SystemInfo = Field(default_factory=SystemInfo)
    checksum: Optional[str] = Field(None, description="SHA-256 over canonical JSON")

    def calculate_checksum(self) -> str:
        """
        Calculate checksum for the entry.

        Returns:
            Hex digest over every field except the checksum itself
        """
        data = self.model_dump(mode="json", exclude={"checksum"})
        json_str = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(json_str.encode("utf-8")).hexdigest()

    def verify_checksum(self) -> bool:
        """Check the stored checksum against the entry contents."""
        return self.checksum is not None and self.checksum == self.calculate_checksum()


class AuditBatch(BaseModel):
    """An encrypted batch of audit entries as persisted by audit storage."""

    batch_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    entry_count: int = Field(..., ge=0)
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None
    encrypted_payload: str = Field(..., description="Encryption token of the batch")


class ComplianceRecord(BaseModel):
    """An encrypted deletion record kept for compliance evidence."""

    record_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    object_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    frameworks: list = Field(default_factory=list)
    witness_hash: str = ""
    encrypted_payload: str = Field(..., description="Encryption token of the record")
