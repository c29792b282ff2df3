"""
Retention scheduler.

Turns an upload into a deletion job with a deadline derived from the
object's tier and hands it to the durable queue.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from ..audit_trail import ComplianceAuditLogger
from ..compliance import ComplianceGate
from ..config import (
    FEATURE_IMMEDIATE_POST_SIGNAL_DELETION,
    FEATURE_PRIORITY_PROCESSING,
    RetentionConfig,
    TierConfig,
)
from .models import DeletionJob, JobPriority, RetentionPolicy

if TYPE_CHECKING:
    from ..adapters.queue import QueueAdapter

logger = logging.getLogger(__name__)


def determine_priority(tier_config: TierConfig) -> JobPriority:
    """
    Priority of deletion jobs for a tier.

    critical: tier deletes immediately after an external signal
    high: tier retains for an hour or less, or has priority processing
    normal: everything else
    """
    if tier_config.has_feature(FEATURE_IMMEDIATE_POST_SIGNAL_DELETION):
        return JobPriority.CRITICAL
    if tier_config.has_feature(FEATURE_PRIORITY_PROCESSING):
        return JobPriority.HIGH
    if tier_config.retention_hours <= 1:
        return JobPriority.HIGH
    return JobPriority.NORMAL


class RetentionScheduler:
    """Schedules deletion jobs for newly stored objects."""

    def __init__(
        self,
        config: RetentionConfig,
        queue: "QueueAdapter",
        audit_logger: ComplianceAuditLogger,
        compliance: ComplianceGate,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.queue = queue
        self.audit_logger = audit_logger
        self.compliance = compliance
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def schedule_retention(
        self,
        object_id: str,
        tier: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RetentionPolicy:
        """
        Schedule deletion of an object according to its tier.

        Args:
            object_id: Object to schedule
            tier: Tier the object was stored under
            metadata: Caller metadata stored on the job

        Returns:
            Snapshot of the applied retention policy

        Raises:
            UnknownTierError: If the tier is not configured
            TransientQueueError: If the job could not be enqueued
        """
        tier_config = self.config.get_tier(tier)
        now = self.clock()
        delete_at = now + timedelta(hours=tier_config.retention_hours)
        priority = determine_priority(tier_config)

        job_metadata = dict(metadata or {})
        job_metadata.setdefault("upload_time", now.isoformat())
        job_metadata["retention_hours"] = tier_config.retention_hours

        job = DeletionJob(
            object_id=object_id,
            tier=tier,
            scheduled_for=delete_at,
            priority=priority,
            metadata=job_metadata,
            created_at=now,
        )
        await self.queue.enqueue(job)

        self.audit_logger.log_retention_scheduled(
            object_id=object_id,
            tier=tier,
            retention_hours=tier_config.retention_hours,
            scheduled_deletion=delete_at,
            frameworks=list(self.config.compliance.frameworks),
            metadata=job_metadata,
            job_id=job.id,
        )

        logger.info(
            f"Scheduled deletion of {object_id} at {delete_at.isoformat()} "
            f"(tier={tier}, priority={priority.value})"
        )

        return RetentionPolicy(
            object_id=object_id,
            job_id=job.id,
            tier=tier,
            retention_hours=tier_config.retention_hours,
            delete_at=delete_at,
            overwrite_passes=self.config.overwrite_passes_for(tier),
            audit_required=self.compliance.requires_audit(),
            priority=priority,
        )
