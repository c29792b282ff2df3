"""
Durable queue adapters for deletion jobs.

A claimed job is leased for a visibility timeout. Jobs that are neither
acknowledged (:meth:`QueueAdapter.delete_job`) nor rescheduled
(:meth:`QueueAdapter.requeue_job`) before the lease ends are delivered
again. Due jobs are served by priority, then by scheduled time.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy import JSON, Column, DateTime, Integer, String, create_engine, or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from ..exceptions import ConfigurationError, TransientQueueError
from ..retention.models import DeletionJob, JobPriority

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_VISIBILITY_TIMEOUT_SECONDS = 300.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueAdapter(ABC):
    """Abstract base class for deletion job queues."""

    name: str = "abstract"

    async def initialize(self) -> None:
        """Prepare the queue backend."""
        return None

    @abstractmethod
    async def enqueue(self, job: DeletionJob) -> None:
        """
        Add a job to the queue.

        Args:
            job: Job to enqueue; it becomes visible at ``job.scheduled_for``
        """
        pass

    @abstractmethod
    async def dequeue(self) -> Optional[DeletionJob]:
        """
        Claim the next due job.

        Returns:
            The claimed job, or None if no job is due
        """
        pass

    @abstractmethod
    async def delete_job(self, job: DeletionJob) -> None:
        """Acknowledge a job, removing it permanently."""
        pass

    @abstractmethod
    async def requeue_job(self, job: DeletionJob, delay_ms: int) -> DeletionJob:
        """
        Release a claimed job for another attempt.

        Increments ``retry_count`` and moves ``scheduled_for`` to now plus
        the delay.

        Returns:
            The rescheduled job
        """
        pass

    @abstractmethod
    async def get_queue_length(self) -> int:
        """Number of jobs held by the queue, claimed or not."""
        pass

    async def stop(self) -> None:
        """Stop serving jobs."""
        return None


@dataclass
class _QueueEntry:
    job: DeletionJob
    seq: int
    leased_until: Optional[datetime] = None


class InMemoryQueueAdapter(QueueAdapter):
    """Process-local queue for development, tests and single-node use."""

    name = "memory"

    def __init__(
        self,
        visibility_timeout_seconds: float = DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
        clock: Optional[Clock] = None,
    ):
        self.visibility_timeout = timedelta(seconds=visibility_timeout_seconds)
        self.clock = clock or _utcnow
        self._entries: Dict[str, _QueueEntry] = {}
        self._seq = itertools.count()
        self._stopped = False

    async def enqueue(self, job: DeletionJob) -> None:
        if self._stopped:
            raise TransientQueueError("Queue is stopped", job.object_id)
        self._entries[job.id] = _QueueEntry(job=job, seq=next(self._seq))

    async def dequeue(self) -> Optional[DeletionJob]:
        if self._stopped:
            return None

        now = self.clock()
        candidates = [
            entry
            for entry in self._entries.values()
            if entry.job.scheduled_for <= now
            and (entry.leased_until is None or entry.leased_until <= now)
        ]
        if not candidates:
            return None

        entry = min(
            candidates,
            key=lambda e: (
                JobPriority(e.job.priority).rank,
                e.job.scheduled_for,
                e.seq,
            ),
        )
        entry.leased_until = now + self.visibility_timeout
        return entry.job.model_copy(deep=True)

    async def delete_job(self, job: DeletionJob) -> None:
        self._entries.pop(job.id, None)

    async def requeue_job(self, job: DeletionJob, delay_ms: int) -> DeletionJob:
        updated = job.model_copy(
            update={
                "retry_count": job.retry_count + 1,
                "scheduled_for": self.clock() + timedelta(milliseconds=delay_ms),
            }
        )
        self._entries[job.id] = _QueueEntry(job=updated, seq=next(self._seq))
        return updated

    async def get_queue_length(self) -> int:
        return len(self._entries)

    async def stop(self) -> None:
        self._stopped = True


QueueBase = declarative_base()


class DeletionJobDB(QueueBase):  # type: ignore[valid-type,misc]
    """SQLAlchemy model for queued deletion jobs."""

    __tablename__ = "deletion_jobs"

    id = Column(String(64), primary_key=True)
    object_id = Column(String(200), nullable=False, index=True)
    tier = Column(String(100), nullable=False)
    # Naive UTC timestamps
    scheduled_for = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)
    retry_count = Column(Integer, nullable=False, default=0)
    priority = Column(String(20), nullable=False)
    priority_rank = Column(Integer, nullable=False, index=True)
    job_metadata = Column("metadata", JSON, nullable=True)
    claimed_until = Column(DateTime, nullable=True)


def _to_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _to_aware(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class SQLQueueAdapter(QueueAdapter):
    """
    Queue backed by a SQL table.

    Claims use a conditional UPDATE on ``claimed_until`` so concurrent
    workers sharing the database never claim the same job twice.
    """

    name = "sql"

    def __init__(
        self,
        connection_string: str,
        visibility_timeout_seconds: float = DEFAULT_VISIBILITY_TIMEOUT_SECONDS,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize SQL queue.

        Args:
            connection_string: Database connection string
            visibility_timeout_seconds: Lease duration for claimed jobs
            clock: Optional clock returning aware UTC datetimes
        """
        self.connection_string = connection_string
        self.visibility_timeout = timedelta(seconds=visibility_timeout_seconds)
        self.clock = clock or _utcnow
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None  # type: ignore[type-arg]
        self._stopped = False

    async def initialize(self) -> None:
        """Create the engine and the jobs table."""
        if self.engine is not None:
            return

        if self.connection_string.startswith("sqlite"):
            # SQLite doesn't support pool_size and max_overflow
            self.engine = create_engine(self.connection_string, pool_pre_ping=True)
        else:
            self.engine = create_engine(
                self.connection_string,
                pool_pre_ping=True,
                pool_size=5,
                max_overflow=10,
            )

        QueueBase.metadata.create_all(bind=self.engine)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )

    def _session(self) -> Any:
        if self.SessionLocal is None:  # nosec B101
            raise RuntimeError("Queue not initialized. Call initialize() first.")
        return self.SessionLocal()

    @staticmethod
    def _job_to_db(job: DeletionJob) -> DeletionJobDB:
        priority = JobPriority(job.priority)
        return DeletionJobDB(
            id=job.id,
            object_id=job.object_id,
            tier=job.tier,
            scheduled_for=_to_naive(job.scheduled_for),
            created_at=_to_naive(job.created_at),
            retry_count=job.retry_count,
            priority=priority.value,
            priority_rank=priority.rank,
            job_metadata=job.metadata,
            claimed_until=None,
        )

    @staticmethod
    def _db_to_job(row: DeletionJobDB) -> DeletionJob:
        return DeletionJob(
            id=row.id,
            object_id=row.object_id,
            tier=row.tier,
            scheduled_for=_to_aware(row.scheduled_for),
            created_at=_to_aware(row.created_at),
            retry_count=row.retry_count,
            priority=JobPriority(row.priority),
            metadata=row.job_metadata or {},
        )

    async def enqueue(self, job: DeletionJob) -> None:
        if self._stopped:
            raise TransientQueueError("Queue is stopped", job.object_id)
        try:
            with self._session() as session:
                session.merge(self._job_to_db(job))
                session.commit()
        except SQLAlchemyError as e:
            raise TransientQueueError(f"Enqueue failed: {e}", job.object_id) from e

    async def dequeue(self) -> Optional[DeletionJob]:
        if self._stopped:
            return None

        now = _to_naive(self.clock())
        lease_until = now + self.visibility_timeout
        try:
            with self._session() as session:
                candidates = (
                    session.query(DeletionJobDB)
                    .filter(DeletionJobDB.scheduled_for <= now)
                    .filter(
                        or_(
                            DeletionJobDB.claimed_until.is_(None),
                            DeletionJobDB.claimed_until <= now,
                        )
                    )
                    .order_by(
                        DeletionJobDB.priority_rank.asc(),
                        DeletionJobDB.scheduled_for.asc(),
                    )
                    .limit(10)
                    .all()
                )

                for row in candidates:
                    result = session.execute(
                        update(DeletionJobDB)
                        .where(DeletionJobDB.id == row.id)
                        .where(
                            or_(
                                DeletionJobDB.claimed_until.is_(None),
                                DeletionJobDB.claimed_until <= now,
                            )
                        )
                        .values(claimed_until=lease_until)
                        .execution_options(synchronize_session=False)
                    )
                    session.commit()
                    if result.rowcount == 1:
                        return self._db_to_job(row)
        except SQLAlchemyError as e:
            raise TransientQueueError(f"Dequeue failed: {e}") from e

        return None

    async def delete_job(self, job: DeletionJob) -> None:
        try:
            with self._session() as session:
                session.query(DeletionJobDB).filter(DeletionJobDB.id == job.id).delete()
                session.commit()
        except SQLAlchemyError as e:
            raise TransientQueueError(f"Delete failed: {e}", job.object_id) from e

    async def requeue_job(self, job: DeletionJob, delay_ms: int) -> DeletionJob:
        updated = job.model_copy(
            update={
                "retry_count": job.retry_count + 1,
                "scheduled_for": self.clock() + timedelta(milliseconds=delay_ms),
            }
        )
        try:
            with self._session() as session:
                session.merge(self._job_to_db(updated))
                session.commit()
        except SQLAlchemyError as e:
            raise TransientQueueError(f"Requeue failed: {e}", job.object_id) from e
        return updated

    async def get_queue_length(self) -> int:
        with self._session() as session:
            return int(session.query(DeletionJobDB).count())

    async def stop(self) -> None:
        self._stopped = True
        if self.engine is not None:
            self.engine.dispose()


QueueAdapterFactory = Callable[[Dict[str, Any]], QueueAdapter]

_queue_adapters: Dict[str, QueueAdapterFactory] = {
    "memory": lambda config: InMemoryQueueAdapter(
        visibility_timeout_seconds=config.get(
            "visibility_timeout_seconds", DEFAULT_VISIBILITY_TIMEOUT_SECONDS
        )
    ),
    "sql": lambda config: SQLQueueAdapter(
        connection_string=config.get("connection_string", "sqlite:///retention_queue.db"),
        visibility_timeout_seconds=config.get(
            "visibility_timeout_seconds", DEFAULT_VISIBILITY_TIMEOUT_SECONDS
        ),
    ),
}


def register_queue_adapter(provider: str, factory: QueueAdapterFactory) -> None:
    """
    Register a queue adapter factory.

    Args:
        provider: Identifier used in ``queue.provider``
        factory: Callable receiving ``queue.config``
    """
    _queue_adapters[provider] = factory


def create_queue_adapter(
    provider: str, config: Optional[Dict[str, Any]] = None
) -> QueueAdapter:
    """
    Create a queue adapter by provider identifier.

    Raises:
        ConfigurationError: If the provider is not registered
    """
    factory = _queue_adapters.get(provider)
    if factory is None:
        raise ConfigurationError(
            f"Unsupported queue provider: {provider}. "
            f"Available: {', '.join(sorted(_queue_adapters))}"
        )
    return factory(config or {})
