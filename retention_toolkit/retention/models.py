"""
Data models for retention scheduling and secure deletion.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class JobPriority(str, Enum):
    """Deletion job priority."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Sort rank, lower is served first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    JobPriority.CRITICAL: 0,
    JobPriority.HIGH: 1,
    JobPriority.NORMAL: 2,
    JobPriority.LOW: 3,
}


class DeletionMethod(str, Enum):
    """How a deletion was initiated."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"
    EXTERNAL_SIGNAL = "external_signal"
    POLICY_TRIGGER = "policy_trigger"
    USER_REQUEST = "user_request"


class RetentionPolicy(BaseModel):
    """Immutable snapshot of the retention applied to one object."""

    model_config = ConfigDict(frozen=True)

    object_id: str
    job_id: str
    tier: str
    retention_hours: float
    delete_at: datetime
    overwrite_passes: int
    audit_required: bool
    priority: JobPriority


class DeletionJob(BaseModel):
    """A scheduled deletion, owned by the queue until claimed."""

    id: str = Field(default_factory=lambda: f"job_{uuid.uuid4().hex}")
    object_id: str
    tier: str
    scheduled_for: datetime
    retry_count: int = Field(0, ge=0)
    priority: JobPriority = JobPriority.NORMAL
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PassRecord:
    """Record of one overwrite pass."""

    pass_number: int
    pattern: str
    checksum: str
    success: bool
    bytes_written: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


@dataclass
class VerificationCheck:
    """Result of a single verification method."""

    method: str
    success: bool
    reason: str


@dataclass
class VerificationResult:
    """Outcome of post-deletion verification."""

    verified: bool
    checks: List[VerificationCheck] = field(default_factory=list)
    confidence: str = "unknown"
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verified": self.verified,
            "checks": [asdict(c) for c in self.checks],
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class DeletionResult:
    """Outcome of a secure deletion."""

    success: bool
    object_id: str
    deleted_at: datetime
    verified: bool
    method: str
    tier: Optional[str] = None
    reason: Optional[str] = None
    passes: List[PassRecord] = field(default_factory=list)
    frameworks: List[str] = field(default_factory=list)
    retention_met: bool = False
    witness_hash: str = ""
    audit_trail: str = ""
    duration_ms: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting the encrypted audit trail."""
        return {
            "success": self.success,
            "object_id": self.object_id,
            "deleted_at": self.deleted_at.isoformat(),
            "verified": self.verified,
            "method": self.method,
            "tier": self.tier,
            "reason": self.reason,
            "passes": [p.to_dict() for p in self.passes],
            "frameworks": list(self.frameworks),
            "retention_met": self.retention_met,
            "witness_hash": self.witness_hash,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


@dataclass
class JobCompleted:
    """A deletion job finished successfully."""

    job: DeletionJob
    result: DeletionResult
    outcome: str = "completed"


@dataclass
class JobRetried:
    """A deletion job failed and was rescheduled."""

    job: DeletionJob
    error: str
    backoff_ms: int
    outcome: str = "retried"


@dataclass
class JobFailed:
    """A deletion job failed terminally."""

    job: DeletionJob
    error: str
    reason: str  # compliance_blocked | retries_exhausted
    outcome: str = "failed"


WorkerOutcome = Union[JobCompleted, JobRetried, JobFailed]
