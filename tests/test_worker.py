"""
Tests for the deletion worker.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from retention_toolkit.adapters import InMemoryQueueAdapter, InMemoryStorageAdapter
from retention_toolkit.audit_trail import ComplianceAuditLogger, MemoryAuditStorage
from retention_toolkit.compliance import ComplianceGate
from retention_toolkit.config import RetentionConfig
from retention_toolkit.encryption import EncryptionManager, LocalKeyProvider
from retention_toolkit.metrics import SystemMetrics
from retention_toolkit.retention import (
    DeletionEngine,
    DeletionJob,
    DeletionWorker,
    JobCompleted,
    JobFailed,
    JobRetried,
)

START = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class Harness:
    """Worker wired to in-memory collaborators."""

    def __init__(self, frameworks=(), audit_level="basic", poll_interval=0.01):
        self.clock = FakeClock()
        self.config = RetentionConfig.load(
            {
                "user_tiers": {"demo": {"retention_hours": 1, "max_file_size": 1000}},
                "compliance": {
                    "frameworks": list(frameworks),
                    "audit_level": audit_level,
                },
                "security": {"deletion": {"pass_buffer_size": 16}},
                "queue": {
                    "poll_interval_seconds": poll_interval,
                    "error_backoff_seconds": poll_interval,
                },
            }
        )
        self.encryption = EncryptionManager(provider=LocalKeyProvider())
        self.audit = ComplianceAuditLogger(
            self.config, encryption=self.encryption, storage=MemoryAuditStorage()
        )
        self.storage = InMemoryStorageAdapter()
        self.queue = InMemoryQueueAdapter(clock=self.clock)
        self.metrics = SystemMetrics()
        self.engine = DeletionEngine(
            self.config,
            self.storage,
            ComplianceGate(self.config, clock=self.clock),
            self.audit,
            self.encryption,
            metrics=self.metrics,
            clock=self.clock,
        )
        self.worker = DeletionWorker(
            self.config, self.queue, self.engine, self.audit, metrics=self.metrics
        )
        self.outcomes = []
        self.worker.subscribe(self.outcomes.append)

    async def enqueue(self, object_id, content=b"data"):
        if content is not None:
            await self.storage.upload_object(object_id, content)
        job = DeletionJob(object_id=object_id, tier="demo", scheduled_for=self.clock())
        await self.queue.enqueue(job)
        return job

    async def events(self):
        await self.audit.flush_logs()
        return [e.event for e in await self.audit.read_entries()]


@pytest.fixture
def harness():
    """Create a worker harness."""
    return Harness()


class TestProcessJob:
    """Test outcomes of single job attempts."""

    @pytest.mark.asyncio
    async def test_completed(self, harness):
        """Test a due job deletes the object and emits one completion."""
        await harness.enqueue("v1")
        job = await harness.queue.dequeue()

        outcome = await harness.worker.process_job(job)

        assert isinstance(outcome, JobCompleted)
        assert outcome.result.success
        assert harness.outcomes == [outcome]
        assert await harness.storage.verify_deletion("v1")
        assert await harness.queue.get_queue_length() == 0
        events = await harness.events()
        assert events.count("DELETION_COMPLETED") == 1
        assert "DELETION_FAILED" not in events
        assert harness.metrics.deletions.successful == 1

    @pytest.mark.asyncio
    async def test_transient_failure_then_completion(self):
        """Test a failed delete is retried once and then completes."""
        harness = Harness(frameworks=["GDPR"], audit_level="enhanced")
        await harness.enqueue("obj-1")
        real_delete = harness.storage.delete_object
        harness.storage.delete_object = AsyncMock(side_effect=[False, True])

        first = await harness.worker.process_job(await harness.queue.dequeue())
        assert isinstance(first, JobRetried)
        assert first.job.retry_count == 1

        await real_delete("obj-1")
        harness.clock.advance(milliseconds=first.backoff_ms)
        second = await harness.worker.process_job(await harness.queue.dequeue())

        assert isinstance(second, JobCompleted)
        assert second.job.retry_count == 1
        assert [o.outcome for o in harness.outcomes] == ["retried", "completed"]
        events = await harness.events()
        assert events.count("DELETION_RETRY_SCHEDULED") == 1
        assert events.count("DELETION_COMPLETED") == 1

    @pytest.mark.asyncio
    async def test_retries_then_dead_letters(self, harness):
        """Test exponential backoff and failure at the retry limit."""
        await harness.enqueue("stuck")
        harness.storage.delete_object = AsyncMock(return_value=False)

        backoffs = []
        for _ in range(3):
            job = await harness.queue.dequeue()
            outcome = await harness.worker.process_job(job)
            assert isinstance(outcome, JobRetried)
            assert outcome.job.scheduled_for == harness.clock() + timedelta(
                milliseconds=outcome.backoff_ms
            )
            backoffs.append(outcome.backoff_ms)
            assert await harness.queue.dequeue() is None
            harness.clock.advance(milliseconds=outcome.backoff_ms)

        job = await harness.queue.dequeue()
        assert job.retry_count == 3
        outcome = await harness.worker.process_job(job)

        assert backoffs == [1000, 2000, 4000]
        assert isinstance(outcome, JobFailed)
        assert outcome.reason == "retries_exhausted"
        assert [o.outcome for o in harness.outcomes] == [
            "retried",
            "retried",
            "retried",
            "failed",
        ]
        assert await harness.queue.get_queue_length() == 0
        events = await harness.events()
        assert events.count("DELETION_RETRY_SCHEDULED") == 3
        assert events.count("DELETION_FAILED") == 1
        assert harness.metrics.deletions.failed == 4
        assert await harness.storage.get_metadata("stuck") is not None

    @pytest.mark.asyncio
    async def test_redelivered_job_for_deleted_object_completes(self, harness):
        """Test a job whose object was deleted before the ack completes."""
        await harness.enqueue("v1")
        await harness.storage.delete_object("v1")
        job = await harness.queue.dequeue()

        outcome = await harness.worker.process_job(job)

        assert isinstance(outcome, JobCompleted)
        assert outcome.result.verified
        assert await harness.queue.get_queue_length() == 0
        events = await harness.events()
        assert events.count("DELETION_COMPLETED") == 1
        assert "DELETION_FAILED" not in events
        assert "DELETION_RETRY_SCHEDULED" not in events

    @pytest.mark.asyncio
    async def test_compliance_blocked_fails_immediately(self):
        """Test rejected deletions are not retried."""
        harness = Harness(frameworks=["DoD-8570"], audit_level="forensic")
        await harness.enqueue("obj-1")
        job = await harness.queue.dequeue()

        outcome = await harness.worker.process_job(job)

        assert isinstance(outcome, JobFailed)
        assert outcome.reason == "compliance_blocked"
        assert await harness.queue.get_queue_length() == 0
        assert await harness.storage.download_object("obj-1") == b"data"
        assert await harness.events() == ["DELETION_FAILED"]

    @pytest.mark.asyncio
    async def test_in_flight_job_is_skipped(self, harness):
        """Test a job already being processed is not run twice."""
        await harness.enqueue("obj-1")
        job = await harness.queue.dequeue()

        entered = asyncio.Event()
        release = asyncio.Event()
        original = harness.engine.execute_secure_deletion

        async def slow_deletion(*args, **kwargs):
            entered.set()
            await release.wait()
            return await original(*args, **kwargs)

        harness.engine.execute_secure_deletion = slow_deletion
        first = asyncio.create_task(harness.worker.process_job(job))
        await entered.wait()

        assert harness.worker.in_flight == {("obj-1", job.id)}
        assert await harness.worker.process_job(job) is None

        release.set()
        assert isinstance(await first, JobCompleted)
        assert harness.worker.in_flight == set()

    @pytest.mark.asyncio
    async def test_observer_errors_are_swallowed(self, harness):
        """Test failing observers do not affect the outcome or other observers."""
        failing = Mock(side_effect=RuntimeError("observer down"))
        async_observer = AsyncMock()
        harness.worker.subscribe(failing)
        harness.worker.subscribe(async_observer)
        await harness.enqueue("obj-1")

        outcome = await harness.worker.process_job(await harness.queue.dequeue())

        assert isinstance(outcome, JobCompleted)
        failing.assert_called_once_with(outcome)
        async_observer.assert_awaited_once_with(outcome)

    @pytest.mark.asyncio
    async def test_unsubscribe(self, harness):
        """Test removed observers are not called."""
        observer = Mock()
        harness.worker.subscribe(observer)
        harness.worker.unsubscribe(observer)
        await harness.enqueue("obj-1")

        await harness.worker.process_job(await harness.queue.dequeue())

        observer.assert_not_called()


class TestWorkerLoop:
    """Test the polling loop and shutdown."""

    @pytest.mark.asyncio
    async def test_loop_processes_due_jobs(self, harness):
        """Test the running worker drains the queue."""
        await harness.enqueue("obj-1")
        await harness.enqueue("obj-2")

        harness.worker.start()
        for _ in range(200):
            if len(harness.outcomes) == 2:
                break
            await asyncio.sleep(0.01)

        assert harness.worker.is_running
        await harness.worker.shutdown(drain_seconds=1)

        assert not harness.worker.is_running
        assert sorted(o.job.object_id for o in harness.outcomes) == ["obj-1", "obj-2"]
        assert await harness.queue.dequeue() is None

    @pytest.mark.asyncio
    async def test_loop_survives_queue_errors(self, harness):
        """Test unexpected loop errors are logged and polling continues."""
        harness.queue.dequeue = AsyncMock(
            side_effect=[ConnectionError("down")] + [None] * 1000
        )

        harness.worker.start()
        for _ in range(200):
            if harness.queue.dequeue.await_count >= 2:
                break
            await asyncio.sleep(0.01)

        assert harness.worker.is_running
        await harness.worker.shutdown(drain_seconds=1)

    @pytest.mark.asyncio
    async def test_shutdown_cancels_after_drain_window(self, harness):
        """Test work still running after the drain window is cancelled."""
        await harness.enqueue("obj-1")
        started = asyncio.Event()

        async def hang(*args, **kwargs):
            started.set()
            await asyncio.Event().wait()

        harness.engine.execute_secure_deletion = hang
        task = harness.worker.start()
        await started.wait()

        await harness.worker.shutdown(drain_seconds=0.05)

        assert task.cancelled()
        assert harness.worker.in_flight == set()
        assert harness.outcomes == []
