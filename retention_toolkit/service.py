"""
Retention service facade.

Wires configuration, adapters, encryption, auditing, the compliance gate,
the scheduler, the deletion engine, the worker loop and the token manager
into one object with a start/stop lifecycle.
"""

import inspect
import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .access_tokens import AccessToken, AccessTokenManager
from .adapters.queue import QueueAdapter, create_queue_adapter
from .adapters.storage import ObjectMetadata, StorageAdapter, create_storage_adapter
from .audit_trail import AuditEvent, AuditStorage, ComplianceAuditLogger
from .compliance import ComplianceGate
from .config import FEATURE_IMMEDIATE_POST_SIGNAL_DELETION, RetentionConfig
from .encryption import EncryptionManager, KeyManagementProvider
from .exceptions import ObjectTooLargeError
from .metrics import SystemMetrics
from .retention import (
    DeletionEngine,
    DeletionJob,
    DeletionMethod,
    DeletionResult,
    DeletionWorker,
    JobRetried,
    RetentionPolicy,
    RetentionScheduler,
    WorkerOutcome,
)

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    """Result of storing an object under retention."""

    object_id: str
    metadata: ObjectMetadata
    policy: RetentionPolicy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "object_id": self.object_id,
            "metadata": self.metadata.to_dict(),
            "policy": self.policy.model_dump(mode="json"),
        }


class RetentionService:
    """
    Time-bound retention with secure deletion, auditing and scoped access.

    Example:
        >>> service = RetentionService(config, key_provider=LocalKeyProvider())
        >>> async with service:
        ...     stored = await service.store_object(b"...", tier="free")
        ...     token = await service.generate_access_token(stored.object_id, "free")
    """

    def __init__(
        self,
        config: Union[RetentionConfig, Dict[str, Any]],
        storage: Optional[StorageAdapter] = None,
        queue: Optional[QueueAdapter] = None,
        key_provider: Optional[KeyManagementProvider] = None,
        audit_storage: Optional[AuditStorage] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Build the service. Invalid configuration fails here.

        Args:
            config: Configuration or raw configuration data
            storage: Storage adapter, defaults to ``deployment.storage_provider``
            queue: Queue adapter, defaults to ``queue.provider``
            key_provider: Key provider, defaults to ``security.encryption``
            audit_storage: Audit storage, defaults to ``audit.storage_backend``
            clock: Clock returning aware UTC datetimes

        Raises:
            ConfigurationError: If the configuration or an adapter selection
                is invalid
        """
        self.config = RetentionConfig.load(config)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.metrics: Optional[SystemMetrics] = (
            SystemMetrics() if self.config.monitoring.enable_metrics else None
        )

        deployment = self.config.deployment
        self.storage = storage or create_storage_adapter(
            deployment.storage_provider, deployment.storage_config
        )
        self.queue = queue or create_queue_adapter(
            self.config.queue.provider, self.config.queue.config
        )

        self.encryption = EncryptionManager(
            self.config.security.encryption, provider=key_provider
        )
        self.audit_logger = ComplianceAuditLogger(
            self.config, encryption=self.encryption, storage=audit_storage
        )
        self.compliance = ComplianceGate(self.config, clock=self.clock)
        self.scheduler = RetentionScheduler(
            self.config, self.queue, self.audit_logger, self.compliance, clock=self.clock
        )
        self.engine = DeletionEngine(
            self.config,
            self.storage,
            self.compliance,
            self.audit_logger,
            self.encryption,
            metrics=self.metrics,
            clock=self.clock,
        )
        self.tokens = AccessTokenManager(
            self.config, self.audit_logger, metrics=self.metrics, clock=self.clock
        )
        self.worker = DeletionWorker(
            self.config, self.queue, self.engine, self.audit_logger, metrics=self.metrics
        )
        self.worker.subscribe(self._forward_outcome)

        self._observers: List[Callable[[WorkerOutcome], Any]] = []
        self._policies: Dict[str, RetentionPolicy] = {}
        self._started = False

    # Lifecycle

    async def start(self, run_worker: bool = True) -> None:
        """Initialize the queue, start the audit timer and the worker loop."""
        if self._started:
            return
        await self.queue.initialize()
        self.audit_logger.start()
        if run_worker:
            self.worker.start()
        self._started = True
        self.audit_logger.log_system_event(
            AuditEvent.SYSTEM_START,
            {
                "application": self.config.application_name,
                "tiers": list(self.config.user_tiers),
                "frameworks": list(self.config.compliance.frameworks),
            },
        )
        logger.info(f"{self.config.application_name} started")

    async def stop(self, drain_seconds: Optional[float] = None) -> None:
        """Drain the worker, stop the queue and flush the audit trail."""
        if not self._started:
            return
        await self.worker.shutdown(drain_seconds)
        self.audit_logger.log_system_event(
            AuditEvent.SYSTEM_STOP, {"metrics": self._metrics_snapshot()}
        )
        await self.audit_logger.close()
        self._started = False
        logger.info(f"{self.config.application_name} stopped")

    async def __aenter__(self) -> "RetentionService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    def subscribe(self, observer: Callable[[WorkerOutcome], Any]) -> None:
        """Register a sync or async callback for worker outcomes."""
        self._observers.append(observer)

    async def _forward_outcome(self, outcome: WorkerOutcome) -> None:
        if not isinstance(outcome, JobRetried):
            self._policies.pop(outcome.job.object_id, None)
        for observer in list(self._observers):
            try:
                result = observer(outcome)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Service observer failed for job {outcome.job.id}: {e}")

    # Upstream operations

    async def store_object(
        self,
        data: bytes,
        tier: str,
        object_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredObject:
        """
        Store an object and schedule its deletion.

        Args:
            data: Object content
            tier: Tier to store under
            object_id: Identifier, generated if omitted
            metadata: Metadata stored with the object and its job

        Returns:
            Stored object with its retention policy

        Raises:
            UnknownTierError: If the tier is not configured
            ObjectTooLargeError: If the object exceeds the tier limit
        """
        tier_config = self.config.get_tier(tier)
        if len(data) > tier_config.max_file_size:
            raise ObjectTooLargeError(len(data), tier_config.max_file_size, tier)

        object_id = object_id or f"obj_{uuid.uuid4().hex}"
        object_metadata = await self.storage.upload_object(object_id, data, metadata)
        if self.metrics is not None:
            self.metrics.record_upload(len(data))
        self.audit_logger.log_object_stored(
            object_id, tier, len(data), dict(metadata or {})
        )

        try:
            policy = await self.scheduler.schedule_retention(object_id, tier, metadata)
        except Exception:
            # Never keep an object without a scheduled deletion
            await self.storage.delete_object(object_id)
            raise

        self._policies[object_id] = policy
        return StoredObject(object_id=object_id, metadata=object_metadata, policy=policy)

    async def schedule_retention(
        self,
        object_id: str,
        tier: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RetentionPolicy:
        """Schedule deletion of an object stored elsewhere."""
        policy = await self.scheduler.schedule_retention(object_id, tier, metadata)
        self._policies[object_id] = policy
        return policy

    async def _cancel_scheduled_deletion(self, object_id: str) -> None:
        """Acknowledge the queued job of an object deleted out of band."""
        policy = self._policies.pop(object_id, None)
        if policy is None:
            return
        await self.queue.delete_job(
            DeletionJob(
                id=policy.job_id,
                object_id=object_id,
                tier=policy.tier,
                scheduled_for=policy.delete_at,
            )
        )
        logger.info(f"Cancelled scheduled deletion job {policy.job_id} for {object_id}")

    async def signal_processing_complete(
        self,
        object_id: str,
        tier: str,
        system_id: str,
        results: Optional[Dict[str, Any]] = None,
    ) -> Optional[DeletionResult]:
        """
        Record that an external system finished processing an object.

        Objects in tiers with ``immediate_post_signal_deletion`` are deleted
        right away; everything else keeps its scheduled deletion.

        Returns:
            Deletion result, or None if the retention policy is unchanged
        """
        self.audit_logger.log_external_signal(object_id, system_id, dict(results or {}))
        tier_config = self.config.get_tier(tier)

        if not tier_config.has_feature(FEATURE_IMMEDIATE_POST_SIGNAL_DELETION):
            logger.info(f"Processing signal for {object_id} logged, retention unchanged")
            return None

        logger.info(f"Triggering immediate deletion of {object_id} after {system_id}")
        result = await self.engine.delete_now(
            object_id,
            tier,
            method=DeletionMethod.EXTERNAL_SIGNAL.value,
            reason=f"processing_complete_{system_id}",
        )
        if self.metrics is not None:
            self.metrics.record_deletion(result.success)
        if result.success:
            await self._cancel_scheduled_deletion(object_id)
        return result

    async def delete_object(
        self,
        object_id: str,
        tier: str,
        reason: str = "user_request",
        method: str = DeletionMethod.USER_REQUEST.value,
    ) -> DeletionResult:
        """Delete an object immediately, outside its schedule."""
        result = await self.engine.delete_now(
            object_id, tier, method=method, reason=reason
        )
        if self.metrics is not None:
            self.metrics.record_deletion(result.success)
        if result.success:
            await self._cancel_scheduled_deletion(object_id)
        return result

    async def generate_access_token(
        self,
        object_id: str,
        tier: str,
        requested_permissions: Iterable[str] = ("read",),
        issuer_id: str = "system",
    ) -> AccessToken:
        return await self.tokens.generate_access_token(
            object_id, tier, requested_permissions, issuer_id
        )

    async def validate_access(self, token: str, action: str) -> AccessToken:
        return await self.tokens.validate_access(token, action)

    async def revoke_token(
        self, token: str, reason: str = "manual_revocation"
    ) -> Dict[str, Any]:
        return await self.tokens.revoke(token, reason)

    async def rotate_key(self, key_id: Optional[str] = None) -> str:
        """Rotate the key-encryption key."""
        new_key_id = await self.encryption.rotate_key(key_id)
        self.audit_logger.log_system_event(AuditEvent.KEY_ROTATED, {"key_id": new_key_id})
        return new_key_id

    # Reporting

    def _metrics_snapshot(self) -> Dict[str, Any]:
        return self.metrics.get_metrics() if self.metrics is not None else {}

    async def get_system_health(self) -> Dict[str, Any]:
        """Status of the worker, queue, audit buffer and token registry."""
        queue_length: Optional[int]
        try:
            queue_length = await self.queue.get_queue_length()
        except Exception as e:
            logger.error(f"Queue length unavailable: {e}")
            queue_length = None

        return {
            "status": "healthy" if queue_length is not None else "degraded",
            "timestamp": self.clock().isoformat(),
            "worker": {
                "running": self.worker.is_running,
                "in_flight": len(self.worker.in_flight),
            },
            "queue": {"provider": self.config.queue.provider, "length": queue_length},
            "storage": {"provider": self.config.deployment.storage_provider},
            "encryption": {
                "algorithm": self.encryption.algorithm,
                "key_provider": self.encryption.provider.name,
            },
            "audit": {
                "buffered": self.audit_logger.buffer_size,
                "flushed_batches": self.audit_logger.flushed_batches,
            },
            "tokens": {"active": self.tokens.active_token_count},
            "metrics": self._metrics_snapshot(),
        }

    async def generate_compliance_report(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Summarize audit evidence for a period.

        Buffered and in-flight audit entries are persisted first so the
        report covers them.
        """
        await self.audit_logger.drain()
        entries = await self.audit_logger.read_entries(start_date, end_date)
        records = await self.audit_logger.list_compliance_records(
            start_date=start_date, end_date=end_date
        )

        event_counts = Counter(entry.event for entry in entries)
        report = {
            "generated_at": self.clock().isoformat(),
            "frameworks": list(self.config.compliance.frameworks),
            "audit_level": self.config.compliance.audit_level.value,
            "audit_entries": len(entries),
            "events": dict(event_counts),
            "deletions_completed": event_counts.get(AuditEvent.DELETION_COMPLETED.value, 0),
            "deletions_failed": event_counts.get(AuditEvent.DELETION_FAILED.value, 0),
            "compliance_records": len(records),
            "metrics": (
                self.metrics.get_compliance_metrics(start_date, end_date)
                if self.metrics is not None
                else {}
            ),
        }
        self.audit_logger.log_system_event(
            AuditEvent.REPORT_GENERATED,
            {"audit_entries": len(entries), "compliance_records": len(records)},
        )
        return report
