"""
System metrics for the retention service.

Counters are process-local and reset on restart.
"""

import os
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass
class UploadMetrics:
    count: int = 0
    total_bytes: int = 0


@dataclass
class DeletionMetrics:
    count: int = 0
    successful: int = 0
    failed: int = 0


@dataclass
class TokenMetrics:
    generated: int = 0
    revoked: int = 0
    denied: int = 0


@dataclass
class ComplianceMetrics:
    audits: int = 0
    violations: int = 0


@dataclass
class SystemMetrics:
    """Counters for uploads, deletions, tokens and compliance checks."""

    uploads: UploadMetrics = field(default_factory=UploadMetrics)
    deletions: DeletionMetrics = field(default_factory=DeletionMetrics)
    tokens: TokenMetrics = field(default_factory=TokenMetrics)
    compliance: ComplianceMetrics = field(default_factory=ComplianceMetrics)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _started_monotonic: float = field(default_factory=time.monotonic, repr=False)

    def record_upload(self, size: int) -> None:
        self.uploads.count += 1
        self.uploads.total_bytes += size

    def record_deletion(self, success: bool) -> None:
        self.deletions.count += 1
        if success:
            self.deletions.successful += 1
        else:
            self.deletions.failed += 1

    def record_token_generated(self) -> None:
        self.tokens.generated += 1

    def record_token_revoked(self) -> None:
        self.tokens.revoked += 1

    def record_token_denied(self) -> None:
        self.tokens.denied += 1

    def record_compliance_check(self, approved: bool) -> None:
        self.compliance.audits += 1
        if not approved:
            self.compliance.violations += 1

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._started_monotonic

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of all counters with process information."""
        return {
            "uploads": asdict(self.uploads),
            "deletions": asdict(self.deletions),
            "tokens": asdict(self.tokens),
            "compliance": asdict(self.compliance),
            "process_id": os.getpid(),
            "started_at": self.started_at.isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 3),
        }

    def get_compliance_metrics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Compliance-relevant counters for a reporting period.

        Counters cover the lifetime of the process; the period is echoed
        for the report header.
        """
        deletions = self.deletions
        success_rate = (
            deletions.successful / deletions.count if deletions.count else 1.0
        )
        return {
            "period": {
                "start": start_date.isoformat() if start_date else None,
                "end": end_date.isoformat() if end_date else None,
            },
            "total_deletions": deletions.count,
            "successful_deletions": deletions.successful,
            "failed_deletions": deletions.failed,
            "deletion_success_rate": round(success_rate, 4),
            "compliance_audits": self.compliance.audits,
            "compliance_violations": self.compliance.violations,
            "tokens_generated": self.tokens.generated,
            "tokens_revoked": self.tokens.revoked,
        }
