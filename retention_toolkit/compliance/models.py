"""
Compliance decision models.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

APPROVAL_SYSTEM_ID = "retention-compliance-gate"

REASON_APPROVED = "All compliance requirements met"
REASON_REJECTED = "Compliance requirements not satisfied"
REASON_NO_FRAMEWORKS = "no frameworks configured"


@dataclass(frozen=True)
class FrameworkResult:
    """Result of evaluating one framework or custom requirement."""

    framework: str
    approved: bool
    checks: Dict[str, bool]
    reason: str

    @property
    def failed_checks(self) -> List[str]:
        return [name for name, passed in self.checks.items() if not passed]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "framework": self.framework,
            "approved": self.approved,
            "checks": dict(self.checks),
            "reason": self.reason,
        }


def compute_approval_hash(
    timestamp: datetime, frameworks: List[FrameworkResult]
) -> str:
    """SHA-256 over the decision timestamp and per-framework results."""
    approval_data = {
        "timestamp": timestamp.isoformat(),
        "frameworks": [
            {"framework": r.framework, "approved": r.approved, "checks": r.checks}
            for r in frameworks
        ],
        "system_id": APPROVAL_SYSTEM_ID,
    }
    canonical = json.dumps(approval_data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ComplianceDecision:
    """Outcome of the compliance gate for one deletion."""

    approved: bool
    frameworks: List[FrameworkResult]
    approval_hash: str
    reason: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(
        cls,
        frameworks: List[FrameworkResult],
        timestamp: datetime,
        reason: str = "",
    ) -> "ComplianceDecision":
        approved = all(r.approved for r in frameworks)
        if not reason:
            reason = REASON_APPROVED if approved else REASON_REJECTED
        return cls(
            approved=approved,
            frameworks=list(frameworks),
            approval_hash=compute_approval_hash(timestamp, frameworks),
            reason=reason,
            timestamp=timestamp,
        )

    @property
    def failed_frameworks(self) -> List[str]:
        """Names of frameworks that rejected the deletion."""
        return [r.framework for r in self.frameworks if not r.approved]

    def verify_hash(self) -> bool:
        """Recompute the approval hash and compare."""
        return compute_approval_hash(self.timestamp, self.frameworks) == self.approval_hash

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "approved": self.approved,
            "frameworks": [r.to_dict() for r in self.frameworks],
            "approval_hash": self.approval_hash,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }
