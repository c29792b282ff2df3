"""
Deletion worker loop.

Claims due jobs from the queue, runs them through the deletion engine and
resolves each attempt into exactly one outcome: completed, retried with
exponential backoff, or failed terminally.

Note:
    The in-flight set is process-local. Running several worker processes
    against one queue relies on the queue's claim semantics alone.
"""

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Set, Tuple

from ..audit_trail import ComplianceAuditLogger
from ..config import RetentionConfig
from ..exceptions import ComplianceBlockedError
from ..metrics import SystemMetrics
from .engine import DeletionEngine
from .models import (
    DeletionJob,
    DeletionMethod,
    DeletionResult,
    JobCompleted,
    JobFailed,
    JobRetried,
    WorkerOutcome,
)

if TYPE_CHECKING:
    from ..adapters.queue import QueueAdapter

logger = logging.getLogger(__name__)

OutcomeObserver = Callable[[WorkerOutcome], Any]

REASON_COMPLIANCE_BLOCKED = "compliance_blocked"
REASON_RETRIES_EXHAUSTED = "retries_exhausted"


class DeletionWorker:
    """Polls the deletion queue and executes due jobs.

    Example:
        >>> worker = DeletionWorker(config, queue, engine, audit_logger)
        >>> worker.subscribe(lambda outcome: print(outcome.outcome))
        >>> worker.start()
        >>> ...
        >>> await worker.shutdown()
    """

    def __init__(
        self,
        config: RetentionConfig,
        queue: "QueueAdapter",
        engine: DeletionEngine,
        audit_logger: ComplianceAuditLogger,
        metrics: Optional[SystemMetrics] = None,
    ):
        self.config = config
        self.queue = queue
        self.engine = engine
        self.audit_logger = audit_logger
        self.metrics = metrics
        self.retry_policy = config.queue.retry_policy
        self.poll_interval = config.queue.poll_interval_seconds
        self.error_backoff = config.queue.error_backoff_seconds

        self._in_flight: Set[Tuple[str, str]] = set()
        self._observers: List[OutcomeObserver] = []
        self._running = False
        self._stop_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task[None]] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> Set[Tuple[str, str]]:
        """Keys (object_id, job_id) of jobs currently being processed."""
        return set(self._in_flight)

    def subscribe(self, observer: OutcomeObserver) -> None:
        """Register a sync or async callback for job outcomes."""
        self._observers.append(observer)

    def unsubscribe(self, observer: OutcomeObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    async def _emit(self, outcome: WorkerOutcome) -> None:
        for observer in list(self._observers):
            try:
                result = observer(outcome)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Outcome observer failed for job {outcome.job.id}: {e}")

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early when shutdown is requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def start(self) -> asyncio.Task[None]:
        """Run the loop as a task on the running event loop."""
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.get_running_loop().create_task(self.run())
        return self._loop_task

    async def run(self) -> None:
        """Poll the queue until shutdown. Errors are logged, never raised."""
        self._running = True
        self._stop_event.clear()
        logger.info("Deletion worker started")

        while self._running:
            try:
                job = await self.queue.dequeue()
                if job is None:
                    await self._sleep(self.poll_interval)
                    continue
                await self.process_job(job)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Deletion worker loop error: {e}")
                await self._sleep(self.error_backoff)

        logger.info("Deletion worker stopped")

    async def process_job(self, job: DeletionJob) -> Optional[WorkerOutcome]:
        """
        Execute one claimed job.

        Args:
            job: Job returned by the queue

        Returns:
            The outcome, or None if the same job is already in flight
        """
        key = (job.object_id, job.id)
        if key in self._in_flight:
            logger.debug(f"Job {job.id} for {job.object_id} already in flight")
            return None

        self._in_flight.add(key)
        result: Optional[DeletionResult] = None
        try:
            try:
                result = await self.engine.execute_secure_deletion(
                    job.object_id,
                    job.tier,
                    method=DeletionMethod.AUTOMATIC.value,
                    reason="retention_expired",
                    job=job,
                )
            except ComplianceBlockedError as e:
                return await self._fail(job, e, REASON_COMPLIANCE_BLOCKED)
            except Exception as e:
                return await self._handle_failure(job, e)

            await self.queue.delete_job(job)
            completed = JobCompleted(job=job, result=result)
            await self._emit(completed)
            return completed
        finally:
            if self.metrics is not None:
                self.metrics.record_deletion(result is not None and result.success)
            self._in_flight.discard(key)

    async def _handle_failure(self, job: DeletionJob, error: Exception) -> WorkerOutcome:
        if job.retry_count >= self.retry_policy.max_retries:
            return await self._fail(job, error, REASON_RETRIES_EXHAUSTED)

        backoff_ms = self.retry_policy.backoff_for(job.retry_count)
        updated = await self.queue.requeue_job(job, backoff_ms)
        logger.warning(
            f"Deletion of {job.object_id} failed, retry {updated.retry_count}/"
            f"{self.retry_policy.max_retries} in {backoff_ms}ms: {error}"
        )
        self.audit_logger.log_deletion_retry(
            object_id=job.object_id,
            job_id=job.id,
            retry_count=updated.retry_count,
            backoff_ms=backoff_ms,
            error=str(error),
        )
        retried = JobRetried(job=updated, error=str(error), backoff_ms=backoff_ms)
        await self._emit(retried)
        return retried

    async def _fail(
        self, job: DeletionJob, error: Exception, reason: str
    ) -> WorkerOutcome:
        await self.queue.delete_job(job)
        logger.error(f"Deletion of {job.object_id} failed permanently ({reason}): {error}")
        self.audit_logger.log_deletion_failed(
            object_id=job.object_id,
            error=str(error),
            method=DeletionMethod.AUTOMATIC.value,
            compliance_impact=self.engine.assess_compliance_impact(error),
            reason=reason,
            job_id=job.id,
        )
        failed = JobFailed(job=job, error=str(error), reason=reason)
        await self._emit(failed)
        return failed

    def stop(self) -> None:
        """Stop claiming new jobs."""
        self._running = False
        self._stop_event.set()

    async def shutdown(self, drain_seconds: Optional[float] = None) -> None:
        """
        Stop the loop, wait for in-flight work, then stop the queue.

        Jobs still running after the drain window are cancelled and left to
        queue redelivery; their overwrite passes restart from pass one.

        Args:
            drain_seconds: Drain window, defaults to the configured value
        """
        if drain_seconds is None:
            drain_seconds = self.config.queue.shutdown_drain_seconds

        self.stop()

        task = self._loop_task
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=drain_seconds)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Drain window elapsed with {len(self._in_flight)} job(s) in flight"
                )
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._loop_task = None

        await self.queue.stop()
