"""
Storage backends for encrypted audit batches and compliance records.

Audit payloads arrive already encrypted; storage backends only persist the
opaque tokens and a few plaintext index fields (timestamps, counts, object
identifiers) used for reporting.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .models import AuditBatch, ComplianceRecord

Base = declarative_base()


class AuditBatchDB(Base):  # type: ignore[valid-type,misc]
    """SQLAlchemy model for encrypted audit batches."""

    __tablename__ = "audit_batches"

    batch_id = Column(String(50), primary_key=True)
    created_at = Column(DateTime, nullable=False, index=True)
    entry_count = Column(Integer, nullable=False)
    first_timestamp = Column(DateTime, nullable=True)
    last_timestamp = Column(DateTime, nullable=True)
    encrypted_payload = Column(Text, nullable=False)


class ComplianceRecordDB(Base):  # type: ignore[valid-type,misc]
    """SQLAlchemy model for encrypted compliance records."""

    __tablename__ = "compliance_records"

    record_id = Column(String(50), primary_key=True)
    object_id = Column(String(200), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)
    frameworks = Column(JSON, nullable=True)
    witness_hash = Column(String(64), nullable=False)
    encrypted_payload = Column(Text, nullable=False)

    __table_args__ = (
        Index("idx_compliance_object_created", object_id, created_at),
    )


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _aware_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _in_range(
    value: datetime, start: Optional[datetime], end: Optional[datetime]
) -> bool:
    value = _aware_utc(value)  # type: ignore[assignment]
    if start is not None and value < _aware_utc(start):  # type: ignore[operator]
        return False
    if end is not None and value > _aware_utc(end):  # type: ignore[operator]
        return False
    return True


class AuditStorage(ABC):
    """Abstract base class for audit storage backends."""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the storage backend."""
        pass

    @abstractmethod
    async def store_batch(self, batch: AuditBatch) -> None:
        """
        Persist an encrypted audit batch.

        Args:
            batch: Batch to store

        Raises:
            Exception: Backend errors propagate so the caller can re-buffer
        """
        pass

    @abstractmethod
    async def store_compliance_record(self, record: ComplianceRecord) -> None:
        """
        Persist an encrypted compliance record.

        Args:
            record: Record to store
        """
        pass

    @abstractmethod
    async def list_batches(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[AuditBatch]:
        """
        List stored batches created within a date range.

        Args:
            start_date: Inclusive lower bound
            end_date: Inclusive upper bound

        Returns:
            Batches ordered by creation time
        """
        pass

    @abstractmethod
    async def list_compliance_records(
        self,
        object_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[ComplianceRecord]:
        """
        List stored compliance records.

        Args:
            object_id: Restrict to one object
            start_date: Inclusive lower bound
            end_date: Inclusive upper bound

        Returns:
            Records ordered by creation time
        """
        pass


class MemoryAuditStorage(AuditStorage):
    """In-memory audit storage for development and testing."""

    def __init__(self) -> None:
        self.batches: List[AuditBatch] = []
        self.compliance_records: List[ComplianceRecord] = []

    async def initialize(self) -> None:
        return None

    async def store_batch(self, batch: AuditBatch) -> None:
        self.batches.append(batch)

    async def store_compliance_record(self, record: ComplianceRecord) -> None:
        self.compliance_records.append(record)

    async def list_batches(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[AuditBatch]:
        return [b for b in self.batches if _in_range(b.created_at, start_date, end_date)]

    async def list_compliance_records(
        self,
        object_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[ComplianceRecord]:
        return [
            r
            for r in self.compliance_records
            if (object_id is None or r.object_id == object_id)
            and _in_range(r.created_at, start_date, end_date)
        ]


class SQLAuditStorage(AuditStorage):
    """SQL database storage backend for audit batches."""

    def __init__(self, connection_string: str):
        """
        Initialize SQL audit storage.

        Args:
            connection_string: Database connection string
        """
        self.connection_string = connection_string
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None  # type: ignore[type-arg]

    async def initialize(self) -> None:
        """Initialize the database."""
        if self.connection_string.startswith("sqlite"):
            # SQLite doesn't support pool_size and max_overflow
            self.engine = create_engine(self.connection_string, pool_pre_ping=True)
        else:
            # PostgreSQL, MySQL, etc.
            self.engine = create_engine(
                self.connection_string,
                pool_pre_ping=True,
                pool_size=10,
                max_overflow=20,
            )

        Base.metadata.create_all(bind=self.engine)

        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )

    async def store_batch(self, batch: AuditBatch) -> None:
        if self.SessionLocal is None:  # nosec B101
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        with self.SessionLocal() as session:
            session.add(
                AuditBatchDB(
                    batch_id=batch.batch_id,
                    created_at=_naive_utc(batch.created_at),
                    entry_count=batch.entry_count,
                    first_timestamp=_naive_utc(batch.first_timestamp),
                    last_timestamp=_naive_utc(batch.last_timestamp),
                    encrypted_payload=batch.encrypted_payload,
                )
            )
            session.commit()

    async def store_compliance_record(self, record: ComplianceRecord) -> None:
        if self.SessionLocal is None:  # nosec B101
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        with self.SessionLocal() as session:
            session.add(
                ComplianceRecordDB(
                    record_id=record.record_id,
                    object_id=record.object_id,
                    created_at=_naive_utc(record.created_at),
                    frameworks=record.frameworks,
                    witness_hash=record.witness_hash,
                    encrypted_payload=record.encrypted_payload,
                )
            )
            session.commit()

    async def list_batches(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[AuditBatch]:
        if self.SessionLocal is None:  # nosec B101
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        with self.SessionLocal() as session:
            q = session.query(AuditBatchDB)
            if start_date:
                q = q.filter(AuditBatchDB.created_at >= _naive_utc(start_date))
            if end_date:
                q = q.filter(AuditBatchDB.created_at <= _naive_utc(end_date))
            rows = q.order_by(AuditBatchDB.created_at.asc()).all()
            return [
                AuditBatch(
                    batch_id=row.batch_id,
                    created_at=_aware_utc(row.created_at),
                    entry_count=row.entry_count,
                    first_timestamp=_aware_utc(row.first_timestamp),
                    last_timestamp=_aware_utc(row.last_timestamp),
                    encrypted_payload=row.encrypted_payload,
                )
                for row in rows
            ]

    async def list_compliance_records(
        self,
        object_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[ComplianceRecord]:
        if self.SessionLocal is None:  # nosec B101
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        with self.SessionLocal() as session:
            q = session.query(ComplianceRecordDB)
            if object_id:
                q = q.filter(ComplianceRecordDB.object_id == object_id)
            if start_date:
                q = q.filter(ComplianceRecordDB.created_at >= _naive_utc(start_date))
            if end_date:
                q = q.filter(ComplianceRecordDB.created_at <= _naive_utc(end_date))
            rows = q.order_by(ComplianceRecordDB.created_at.asc()).all()
            return [
                ComplianceRecord(
                    record_id=row.record_id,
                    object_id=row.object_id,
                    created_at=_aware_utc(row.created_at),
                    frameworks=row.frameworks or [],
                    witness_hash=row.witness_hash,
                    encrypted_payload=row.encrypted_payload,
                )
                for row in rows
            ]


class FileAuditStorage(AuditStorage):
    """File-based storage backend writing daily JSONL files."""

    def __init__(self, storage_path: str):
        """
        Initialize file-based audit storage.

        Args:
            storage_path: Directory path for storing audit files
        """
        self.storage_path = Path(storage_path)
        self.file_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the file storage."""
        self.storage_path.mkdir(parents=True, exist_ok=True)

    def _file_path(self, prefix: str, when: datetime) -> Path:
        return self.storage_path / f"{prefix}_{when.strftime('%Y%m%d')}.jsonl"

    async def _append(self, path: Path, record: Dict[str, Any]) -> None:
        async with self.file_lock:
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, default=str) + "\n")

    def _read_all(self, prefix: str) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        for path in sorted(self.storage_path.glob(f"{prefix}_*.jsonl")):
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line:
                        records.append(json.loads(line))
        return records

    async def store_batch(self, batch: AuditBatch) -> None:
        await self._append(
            self._file_path("audit", batch.created_at), batch.model_dump(mode="json")
        )

    async def store_compliance_record(self, record: ComplianceRecord) -> None:
        await self._append(
            self._file_path("compliance", record.created_at),
            record.model_dump(mode="json"),
        )

    async def list_batches(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[AuditBatch]:
        batches = [AuditBatch.model_validate(r) for r in self._read_all("audit")]
        return sorted(
            (b for b in batches if _in_range(b.created_at, start_date, end_date)),
            key=lambda b: b.created_at,
        )

    async def list_compliance_records(
        self,
        object_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[ComplianceRecord]:
        records = [
            ComplianceRecord.model_validate(r) for r in self._read_all("compliance")
        ]
        return sorted(
            (
                r
                for r in records
                if (object_id is None or r.object_id == object_id)
                and _in_range(r.created_at, start_date, end_date)
            ),
            key=lambda r: r.created_at,
        )


_storage_instances: Dict[str, AuditStorage] = {}


async def get_audit_storage(backend: str = "memory", **kwargs: Any) -> AuditStorage:
    """
    Get or create an audit storage instance.

    Args:
        backend: Storage backend type (memory, file, sqlite, postgresql)
        **kwargs: Backend-specific parameters

    Returns:
        Initialized audit storage instance
    """
    if backend == "memory":
        storage: AuditStorage = MemoryAuditStorage()
        await storage.initialize()
        return storage

    cache_key = f"{backend}:{json.dumps(kwargs, sort_keys=True, default=str)}"

    if cache_key not in _storage_instances:
        if backend in ("postgresql", "sqlite"):
            connection_string = kwargs.get("connection_string")
            if not connection_string and backend == "sqlite":
                connection_string = "sqlite:///retention_audit.db"
            if not connection_string:
                raise ValueError(f"connection_string is required for {backend} backend")
            storage = SQLAuditStorage(connection_string)
        elif backend == "file":
            storage_path = kwargs.get("storage_path")
            if not storage_path:
                raise ValueError("storage_path is required for file backend")
            storage = FileAuditStorage(storage_path)
        else:
            raise ValueError(f"Unknown storage backend: {backend}")

        await storage.initialize()
        _storage_instances[cache_key] = storage

    return _storage_instances[cache_key]
