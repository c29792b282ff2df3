"""
Tests for retention scheduling.
"""

from datetime import datetime, timedelta, timezone

import pytest

from retention_toolkit.adapters import InMemoryQueueAdapter
from retention_toolkit.audit_trail import ComplianceAuditLogger, MemoryAuditStorage
from retention_toolkit.compliance import ComplianceGate
from retention_toolkit.config import RetentionConfig, TierConfig
from retention_toolkit.encryption import EncryptionManager, LocalKeyProvider
from retention_toolkit.exceptions import TransientQueueError, UnknownTierError
from retention_toolkit.retention import JobPriority, RetentionScheduler, determine_priority

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

CONFIG = {
    "user_tiers": {
        "demo": {"retention_hours": 120000 / 3_600_000, "max_file_size": 1000},
        "free": {"retention_hours": 2, "max_file_size": 1000},
        "enterprise": {
            "retention_hours": 720,
            "max_file_size": 1000,
            "overwrite_passes": 7,
            "features": ["priority_processing"],
        },
        "secret": {
            "retention_hours": 168,
            "max_file_size": 1000,
            "features": ["immediate_post_signal_deletion"],
        },
    },
    "compliance": {"frameworks": ["GDPR"], "audit_level": "enhanced"},
}


def make_scheduler(queue=None):
    config = RetentionConfig.load(CONFIG)
    audit = ComplianceAuditLogger(
        config,
        encryption=EncryptionManager(provider=LocalKeyProvider()),
        storage=MemoryAuditStorage(),
    )
    queue = queue or InMemoryQueueAdapter(clock=lambda: NOW)
    scheduler = RetentionScheduler(
        config, queue, audit, ComplianceGate(config), clock=lambda: NOW
    )
    return scheduler, queue, audit


class TestDeterminePriority:
    """Test job priority derivation."""

    def test_priorities(self):
        """Test each priority rule."""

        def tier(hours, features=()):
            return TierConfig(
                retention_hours=hours, max_file_size=1, features=list(features)
            )

        assert determine_priority(tier(24)) == JobPriority.NORMAL
        assert determine_priority(tier(1)) == JobPriority.HIGH
        assert determine_priority(tier(24, ["priority_processing"])) == JobPriority.HIGH
        assert (
            determine_priority(tier(0.5, ["immediate_post_signal_deletion"]))
            == JobPriority.CRITICAL
        )


class TestRetentionScheduler:
    """Test scheduling deletion jobs."""

    @pytest.mark.asyncio
    async def test_schedule_sets_deadline(self):
        """Test the deadline is upload time plus tier retention."""
        scheduler, queue, _ = make_scheduler()

        policy = await scheduler.schedule_retention("v1", "demo")

        assert policy.delete_at == NOW + timedelta(milliseconds=120000)
        assert policy.priority == JobPriority.HIGH
        assert policy.overwrite_passes == 3
        assert policy.audit_required is True
        assert await queue.get_queue_length() == 1

    @pytest.mark.asyncio
    async def test_job_metadata(self):
        """Test the job carries caller metadata plus retention context."""
        scheduler, queue, _ = make_scheduler()

        policy = await scheduler.schedule_retention(
            "obj-1", "free", {"organization": "acme"}
        )
        queue.clock = lambda: NOW + timedelta(hours=2)
        job = await queue.dequeue()

        assert job.id == policy.job_id
        assert job.tier == "free"
        assert job.metadata == {
            "organization": "acme",
            "upload_time": NOW.isoformat(),
            "retention_hours": 2.0,
        }

    @pytest.mark.asyncio
    async def test_tier_overrides(self):
        """Test tier-specific passes and priority."""
        scheduler, _, _ = make_scheduler()

        enterprise = await scheduler.schedule_retention("obj-1", "enterprise")
        secret = await scheduler.schedule_retention("obj-2", "secret")

        assert enterprise.overwrite_passes == 7
        assert enterprise.priority == JobPriority.HIGH
        assert secret.priority == JobPriority.CRITICAL

    @pytest.mark.asyncio
    async def test_schedule_is_audited(self):
        """Test a RETENTION_SCHEDULED entry is written."""
        scheduler, _, audit = make_scheduler()

        policy = await scheduler.schedule_retention("obj-1", "free")

        await audit.flush_logs()
        entries = await audit.read_entries()
        assert [e.event for e in entries] == ["RETENTION_SCHEDULED"]
        payload = entries[0].payload
        assert payload["job_id"] == policy.job_id
        assert payload["compliance_frameworks"] == ["GDPR"]

    @pytest.mark.asyncio
    async def test_unknown_tier(self):
        """Test unknown tiers schedule nothing."""
        scheduler, queue, audit = make_scheduler()

        with pytest.raises(UnknownTierError):
            await scheduler.schedule_retention("obj-1", "platinum")

        assert await queue.get_queue_length() == 0
        assert audit.buffer_size == 0

    @pytest.mark.asyncio
    async def test_queue_failure_propagates(self):
        """Test enqueue failures surface and are not audited as scheduled."""
        queue = InMemoryQueueAdapter()
        await queue.stop()
        scheduler, _, audit = make_scheduler(queue)

        with pytest.raises(TransientQueueError):
            await scheduler.schedule_retention("obj-1", "free")
        assert audit.buffer_size == 0
