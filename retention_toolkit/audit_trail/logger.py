"""
Compliance audit logger.

Audit entries are written synchronously into an in-memory buffer and flushed
as encrypted batches to audit storage, either when the buffer reaches the
flush threshold or on a periodic timer.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union

from ..config import RetentionConfig
from ..encryption import EncryptionManager
from .models import (
    AuditBatch,
    AuditEvent,
    AuditLevel,
    AuditLogEntry,
    ComplianceRecord,
    SystemInfo,
)
from .storage import AuditStorage, get_audit_storage

logger = logging.getLogger(__name__)

_PYTHON_LEVELS = {
    AuditLevel.DEBUG: logging.DEBUG,
    AuditLevel.INFO: logging.INFO,
    AuditLevel.WARN: logging.WARNING,
    AuditLevel.ERROR: logging.ERROR,
}


def redact_token(token: str) -> str:
    """Shorten an access token for audit output."""
    return f"{token[:8]}..."


class ComplianceAuditLogger:
    """Buffered, encrypted audit logger for retention and deletion events.

    Entries are appended synchronously so callers never wait on storage.
    Flushing is single-flight: at most one batch is being persisted at a
    time. A batch that fails to persist is put back at the front of the
    buffer, ahead of entries written in the meantime.

    Attributes:
        config (RetentionConfig): Active configuration.
        encryption (EncryptionManager): Encrypts batches and records.
        storage (AuditStorage): Backend for flushed batches. Created from
            ``config.audit`` on first flush if not supplied.
        flush_threshold (int): Buffer size that triggers a flush.
        flush_interval (float): Seconds between periodic flushes.

    Example:
        >>> audit = ComplianceAuditLogger(config, encryption=manager)
        >>> audit.start()
        >>> audit.log_retention_scheduled("obj-1", "free", 24, delete_at, [], {})
        >>> await audit.close()
    """

    def __init__(
        self,
        config: RetentionConfig,
        encryption: Optional[EncryptionManager] = None,
        storage: Optional[AuditStorage] = None,
    ):
        self.config = config
        self.encryption = encryption or EncryptionManager(config.security.encryption)
        self.storage = storage
        self.flush_threshold = config.audit.flush_threshold
        self.flush_interval = config.audit.flush_interval_seconds
        self.min_level = AuditLevel.from_name(config.monitoring.log_level)
        self.system_info = SystemInfo(node_id=config.node_id)

        self._buffer: List[AuditLogEntry] = []
        self._flushing = False
        self._timer_task: Optional[asyncio.Task[None]] = None
        self._pending: Set[asyncio.Task[int]] = set()

        self.flushed_batches = 0
        self.flushed_entries = 0

    @property
    def buffer_size(self) -> int:
        """Number of entries waiting to be flushed."""
        return len(self._buffer)

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    async def _ensure_storage(self) -> AuditStorage:
        if self.storage is None:
            audit = self.config.audit
            self.storage = await get_audit_storage(
                backend=audit.storage_backend.value,
                connection_string=audit.connection_string,
                storage_path=audit.storage_path,
            )
        return self.storage

    def _should_log(self, level: AuditLevel) -> bool:
        return level.rank >= self.min_level.rank

    def write_audit_log(
        self,
        event: Union[str, AuditEvent],
        payload: Optional[Dict[str, Any]] = None,
        level: Union[str, AuditLevel] = AuditLevel.INFO,
    ) -> AuditLogEntry:
        """
        Append an audit entry to the buffer.

        Args:
            event: Event name
            payload: Event data
            level: Severity (DEBUG, INFO, WARN, ERROR)

        Returns:
            The buffered entry
        """
        level = AuditLevel.from_name(level.value if isinstance(level, Enum) else level)
        event_name = event.value if isinstance(event, Enum) else event

        entry = AuditLogEntry(
            event=event_name,
            level=level,
            payload=payload or {},
            system_info=self.system_info,
        )
        entry.checksum = entry.calculate_checksum()
        self._buffer.append(entry)

        if self._should_log(level):
            logger.log(
                _PYTHON_LEVELS[level],
                f"{event_name}: {json.dumps(entry.model_dump(mode='json')['payload'], sort_keys=True)}",
            )

        if len(self._buffer) >= self.flush_threshold:
            self._trigger_flush()

        return entry

    def _trigger_flush(self) -> None:
        """Take the current batch and persist it in the background."""
        if self._flushing or not self._buffer:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop, the next explicit flush picks the entries up
            return

        batch = self._buffer
        self._buffer = []
        self._flushing = True
        task = loop.create_task(self._persist(batch))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush_logs(self) -> int:
        """
        Flush buffered entries to audit storage.

        Returns:
            Number of entries persisted, 0 if nothing was flushed or a flush
            was already in progress
        """
        if self._flushing or not self._buffer:
            return 0

        batch = self._buffer
        self._buffer = []
        self._flushing = True
        return await self._persist(batch)

    async def _persist(self, batch: List[AuditLogEntry]) -> int:
        try:
            storage = await self._ensure_storage()
            serialized = json.dumps([e.model_dump(mode="json") for e in batch])
            token = await self.encryption.encrypt(serialized)
            await storage.store_batch(
                AuditBatch(
                    entry_count=len(batch),
                    first_timestamp=batch[0].timestamp,
                    last_timestamp=batch[-1].timestamp,
                    encrypted_payload=token,
                )
            )
        except Exception as e:
            logger.error(f"Failed to flush audit logs: {e}")
            self._buffer[0:0] = batch
            return 0
        finally:
            self._flushing = False

        self.flushed_batches += 1
        self.flushed_entries += len(batch)
        logger.debug(f"Flushed {len(batch)} encrypted audit logs to compliance storage")
        return len(batch)

    def start(self) -> None:
        """Start the periodic flush timer on the running event loop."""
        if self._timer_task is None or self._timer_task.done():
            self._timer_task = asyncio.get_running_loop().create_task(
                self._periodic_flush()
            )

    async def _periodic_flush(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            self._trigger_flush()

    async def drain(self) -> int:
        """
        Wait for background flushes, then flush what is still buffered.

        Returns:
            Number of entries persisted by the final flush
        """
        while self._pending:
            await asyncio.gather(*list(self._pending))
        return await self.flush_logs()

    async def close(self) -> None:
        """Stop the timer, wait for background flushes and flush the rest."""
        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        await self.drain()

    async def store_compliance_record(
        self,
        object_id: str,
        record: Dict[str, Any],
        frameworks: Optional[List[str]] = None,
        witness_hash: str = "",
    ) -> ComplianceRecord:
        """
        Encrypt and persist a deletion record.

        Args:
            object_id: Deleted object
            record: Record contents
            frameworks: Frameworks the record is evidence for
            witness_hash: Witness hash of the deletion

        Returns:
            The stored record
        """
        storage = await self._ensure_storage()
        token = await self.encryption.encrypt(json.dumps(record, default=str))
        compliance_record = ComplianceRecord(
            object_id=object_id,
            frameworks=list(frameworks or []),
            witness_hash=witness_hash,
            encrypted_payload=token,
        )
        await storage.store_compliance_record(compliance_record)
        logger.info(f"Compliance record stored for {object_id}")
        return compliance_record

    async def read_entries(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[AuditLogEntry]:
        """
        Decrypt flushed batches and return their entries.

        Entries whose checksum does not match are logged and skipped.
        """
        storage = await self._ensure_storage()
        entries: List[AuditLogEntry] = []
        for batch in await storage.list_batches(start_date, end_date):
            raw = await self.encryption.decrypt(batch.encrypted_payload)
            for data in json.loads(raw):
                entry = AuditLogEntry.model_validate(data)
                if not entry.verify_checksum():
                    logger.error(f"Audit entry {entry.id} failed checksum verification")
                    continue
                entries.append(entry)
        return entries

    async def list_compliance_records(
        self,
        object_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[ComplianceRecord]:
        """Stored deletion records, still encrypted."""
        storage = await self._ensure_storage()
        return await storage.list_compliance_records(
            object_id=object_id, start_date=start_date, end_date=end_date
        )

    # Typed helpers

    def log_object_stored(
        self, object_id: str, tier: str, size: int, metadata: Dict[str, Any]
    ) -> AuditLogEntry:
        return self.write_audit_log(
            AuditEvent.OBJECT_STORED,
            {"object_id": object_id, "tier": tier, "size": size, "metadata": metadata},
        )

    def log_retention_scheduled(
        self,
        object_id: str,
        tier: str,
        retention_hours: float,
        scheduled_deletion: datetime,
        frameworks: List[str],
        metadata: Dict[str, Any],
        job_id: Optional[str] = None,
    ) -> AuditLogEntry:
        return self.write_audit_log(
            AuditEvent.RETENTION_SCHEDULED,
            {
                "object_id": object_id,
                "tier": tier,
                "retention_hours": retention_hours,
                "scheduled_deletion": scheduled_deletion,
                "compliance_frameworks": frameworks,
                "metadata": metadata,
                "job_id": job_id,
            },
        )

    def log_deletion_pass(
        self,
        object_id: str,
        pass_number: int,
        pattern: str,
        checksum: str,
        frameworks: List[str],
    ) -> AuditLogEntry:
        return self.write_audit_log(
            AuditEvent.DELETION_PASS,
            {
                "object_id": object_id,
                "pass": pass_number,
                "pattern": pattern,
                "checksum": checksum,
                "compliance_frameworks": frameworks,
            },
        )

    def log_deletion_completed(
        self,
        object_id: str,
        method: str,
        tier: Optional[str],
        duration_ms: float,
        verified: bool,
        frameworks: List[str],
        witness_hash: str,
    ) -> AuditLogEntry:
        return self.write_audit_log(
            AuditEvent.DELETION_COMPLETED,
            {
                "object_id": object_id,
                "method": method,
                "tier": tier,
                "duration_ms": duration_ms,
                "verified": verified,
                "compliance_frameworks": frameworks,
                "witness_hash": witness_hash,
            },
        )

    def log_deletion_failed(
        self,
        object_id: str,
        error: str,
        method: str,
        compliance_impact: List[str],
        reason: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> AuditLogEntry:
        return self.write_audit_log(
            AuditEvent.DELETION_FAILED,
            {
                "object_id": object_id,
                "error": error,
                "method": method,
                "compliance_impact": compliance_impact,
                "reason": reason,
                "job_id": job_id,
                "timestamp": datetime.now(timezone.utc),
            },
            level=AuditLevel.ERROR,
        )

    def log_deletion_retry(
        self,
        object_id: str,
        job_id: str,
        retry_count: int,
        backoff_ms: int,
        error: str,
    ) -> AuditLogEntry:
        return self.write_audit_log(
            AuditEvent.DELETION_RETRY_SCHEDULED,
            {
                "object_id": object_id,
                "job_id": job_id,
                "retry_count": retry_count,
                "backoff_ms": backoff_ms,
                "error": error,
            },
            level=AuditLevel.WARN,
        )

    def log_external_signal(
        self, object_id: str, system_id: str, results: Dict[str, Any]
    ) -> AuditLogEntry:
        return self.write_audit_log(
            AuditEvent.EXTERNAL_SIGNAL_RECEIVED,
            {
                "object_id": object_id,
                "system_id": system_id,
                "results": results,
                "timestamp": datetime.now(timezone.utc),
            },
        )

    def log_token_generated(
        self,
        object_id: str,
        tier: str,
        issuer_id: str,
        permissions: List[str],
        expires_at: datetime,
        frameworks: List[str],
    ) -> AuditLogEntry:
        return self.write_audit_log(
            AuditEvent.TOKEN_GENERATED,
            {
                "object_id": object_id,
                "tier": tier,
                "issuer_id": issuer_id,
                "permissions": permissions,
                "expires_at": expires_at,
                "compliance_frameworks": frameworks,
            },
        )

    def log_token_access(
        self,
        token: str,
        object_id: str,
        action: str,
        issuer_id: str,
        request_count: int,
    ) -> AuditLogEntry:
        return self.write_audit_log(
            AuditEvent.TOKEN_ACCESS,
            {
                "token": redact_token(token),
                "object_id": object_id,
                "action": action,
                "issuer_id": issuer_id,
                "request_count": request_count,
            },
        )

    def log_token_revoked(
        self,
        object_id: str,
        issuer_id: str,
        reason: str,
        usage_count: int,
    ) -> AuditLogEntry:
        return self.write_audit_log(
            AuditEvent.TOKEN_REVOKED,
            {
                "object_id": object_id,
                "issuer_id": issuer_id,
                "reason": reason,
                "revoked_at": datetime.now(timezone.utc),
                "usage_count": usage_count,
            },
        )

    def log_system_event(
        self,
        event: Union[str, AuditEvent],
        payload: Optional[Dict[str, Any]] = None,
        level: Union[str, AuditLevel] = AuditLevel.INFO,
    ) -> AuditLogEntry:
        return self.write_audit_log(event, payload, level)
