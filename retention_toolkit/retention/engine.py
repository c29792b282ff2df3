"""
Secure deletion engine.

Runs the compliance gate, overwrites the object in a rotating sequence of
patterns, deletes it, verifies the deletion and records encrypted
compliance evidence.
"""

import hashlib
import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..adapters.storage import StorageAdapter
from ..audit_trail import ComplianceAuditLogger
from ..compliance import ComplianceDecision, ComplianceGate
from ..config import RetentionConfig
from ..encryption import EncryptionManager
from ..exceptions import ComplianceBlockedError, TransientStorageError
from ..metrics import SystemMetrics
from .models import (
    DeletionJob,
    DeletionMethod,
    DeletionResult,
    PassRecord,
    VerificationCheck,
    VerificationResult,
)

logger = logging.getLogger(__name__)

PATTERN_NAMES = [
    "zeros",
    "ones",
    "random",
    "dod_pattern_1",
    "dod_pattern_2",
    "gutmann_pass",
]

GUTMANN_BYTES = [
    0x55, 0xAA, 0x92, 0x49, 0x24, 0x00, 0x11, 0x22, 0x33, 0x44, 0x55,
    0x66, 0x77, 0x88, 0x99, 0xAA, 0xBB, 0xCC, 0xDD, 0xEE, 0xFF,
]  # fmt: skip

COMPLIANCE_IMPACTS = {
    "HIPAA": "Potential PHI retention violation",
    "GDPR": "Right to erasure non-compliance",
    "NIST-800-53": "Data sanitization control failure",
}


def generate_pattern(pass_number: int, size: int) -> Tuple[str, bytes]:
    """
    Pattern buffer for an overwrite pass.

    Args:
        pass_number: 1-based pass number
        size: Buffer size in bytes

    Returns:
        Pattern name and buffer
    """
    name = PATTERN_NAMES[pass_number % len(PATTERN_NAMES)]
    if name == "zeros":
        return name, bytes(size)
    if name == "ones":
        return name, b"\xff" * size
    if name == "random":
        return name, os.urandom(size)
    if name == "dod_pattern_1":
        return name, b"\x55" * size
    if name == "dod_pattern_2":
        return name, b"\xaa" * size
    return name, bytes([GUTMANN_BYTES[pass_number % len(GUTMANN_BYTES)]]) * size


class DeletionEngine:
    """Executes secure deletions and produces their compliance evidence."""

    def __init__(
        self,
        config: RetentionConfig,
        storage: StorageAdapter,
        compliance: ComplianceGate,
        audit_logger: ComplianceAuditLogger,
        encryption: EncryptionManager,
        metrics: Optional[SystemMetrics] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.storage = storage
        self.compliance = compliance
        self.audit_logger = audit_logger
        self.encryption = encryption
        self.metrics = metrics
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def frameworks(self) -> List[str]:
        return list(self.config.compliance.frameworks)

    async def execute_secure_deletion(
        self,
        object_id: str,
        tier: str,
        method: str = DeletionMethod.MANUAL.value,
        reason: str = "user_request",
        job: Optional[DeletionJob] = None,
    ) -> DeletionResult:
        """
        Securely delete an object.

        Args:
            object_id: Object to delete
            tier: Tier the object was stored under
            method: Deletion method, evaluated by the compliance gate
            reason: Free-form reason recorded in the evidence
            job: Queue job driving the deletion, if any

        Returns:
            Deletion result

        Raises:
            ComplianceBlockedError: If the compliance gate rejects the deletion
            TransientStorageError: If an overwrite pass or the delete fails.
                A queued job whose object is already gone completes instead.
        """
        if isinstance(method, DeletionMethod):
            method = method.value
        started = time.monotonic()
        logger.info(f"Starting secure deletion of {object_id}")

        decision = await self.compliance.validate_deletion(object_id, tier, method)
        if self.metrics is not None:
            self.metrics.record_compliance_check(decision.approved)
        if not decision.approved:
            raise ComplianceBlockedError(object_id, decision)

        passes: List[PassRecord] = []
        for pass_number in range(1, self.config.overwrite_passes_for(tier) + 1):
            record = await self._overwrite_pass(object_id, pass_number)
            if not record.success:
                raise TransientStorageError(
                    f"Overwrite pass {pass_number} failed", object_id
                )
            passes.append(record)
            self.audit_logger.log_deletion_pass(
                object_id=object_id,
                pass_number=pass_number,
                pattern=record.pattern,
                checksum=record.checksum,
                frameworks=self.frameworks,
            )

        if not await self.storage.delete_object(object_id):
            # A redelivered job may find its object deleted by an earlier attempt
            if job is None or not await self.storage.verify_deletion(object_id):
                raise TransientStorageError("Storage deletion failed", object_id)
            logger.info(f"{object_id} already deleted, completing job {job.id}")

        verification = await self.verify_deletion(object_id)
        if not verification.verified:
            logger.warning(
                f"Deletion of {object_id} could not be verified: "
                f"{[c.reason for c in verification.checks]}"
            )

        deleted_at = self.clock()
        witness_hash = self.generate_witness_hash(passes)
        audit_trail = await self._generate_audit_trail(
            object_id, tier, passes, decision, verification, witness_hash, job
        )
        duration_ms = round((time.monotonic() - started) * 1000, 3)

        result = DeletionResult(
            success=True,
            object_id=object_id,
            deleted_at=deleted_at,
            verified=verification.verified,
            method=method,
            tier=tier,
            reason=reason,
            passes=passes,
            frameworks=self.frameworks,
            retention_met=True,
            witness_hash=witness_hash,
            audit_trail=audit_trail,
            duration_ms=duration_ms,
        )

        record = result.to_dict()
        record["verification"] = verification.to_dict()
        record["approval_hash"] = decision.approval_hash
        record["audit_trail"] = audit_trail
        # Object is already deleted, record storage failures are logged only
        try:
            await self.audit_logger.store_compliance_record(
                object_id, record, frameworks=self.frameworks, witness_hash=witness_hash
            )
        except Exception as e:
            logger.error(f"Failed to store compliance record for {object_id}: {e}")

        self.audit_logger.log_deletion_completed(
            object_id=object_id,
            method=method,
            tier=tier,
            duration_ms=duration_ms,
            verified=verification.verified,
            frameworks=self.frameworks,
            witness_hash=witness_hash,
        )
        logger.info(f"Secure deletion of {object_id} completed in {duration_ms}ms")
        return result

    async def delete_now(
        self,
        object_id: str,
        tier: str,
        method: str = DeletionMethod.MANUAL.value,
        reason: str = "user_request",
    ) -> DeletionResult:
        """
        Delete an object outside the queue.

        Failures are recorded with a single DELETION_FAILED audit entry and
        returned as an unsuccessful result instead of being raised.
        """
        try:
            return await self.execute_secure_deletion(object_id, tier, method, reason)
        except Exception as e:
            logger.error(f"Secure deletion of {object_id} failed: {e}")
            self.audit_logger.log_deletion_failed(
                object_id=object_id,
                error=str(e),
                method=method,
                compliance_impact=self.assess_compliance_impact(e),
                reason=(
                    "compliance_blocked"
                    if isinstance(e, ComplianceBlockedError)
                    else "deletion_error"
                ),
            )
            return DeletionResult(
                success=False,
                object_id=object_id,
                deleted_at=self.clock(),
                verified=False,
                method=method,
                tier=tier,
                reason=reason,
                frameworks=self.frameworks,
                error=str(e),
            )

    async def _overwrite_pass(self, object_id: str, pass_number: int) -> PassRecord:
        pattern_name, data = generate_pattern(
            pass_number, self.config.security.deletion.pass_buffer_size
        )
        result = await self.storage.secure_overwrite(object_id, data, pass_number)
        return PassRecord(
            pass_number=pass_number,
            pattern=pattern_name,
            checksum=result.checksum,
            success=result.success,
            bytes_written=result.bytes_written,
            timestamp=self.clock(),
        )

    async def verify_deletion(self, object_id: str) -> VerificationResult:
        """
        Verify that an object is gone.

        Both the adapter's own verification and a metadata lookup must
        confirm the deletion. A check that raises counts as not verified.
        """
        checks: List[VerificationCheck] = []

        try:
            gone = await self.storage.verify_deletion(object_id)
            checks.append(
                VerificationCheck(
                    method="storage_adapter_verification",
                    success=gone is True,
                    reason="deletion_verified" if gone else "deletion_not_verified",
                )
            )
        except Exception as e:
            checks.append(
                VerificationCheck(
                    method="storage_adapter_verification",
                    success=False,
                    reason=f"verification_error: {e}",
                )
            )

        try:
            metadata = await self.storage.get_metadata(object_id)
            checks.append(
                VerificationCheck(
                    method="metadata_lookup",
                    success=metadata is None,
                    reason=(
                        "metadata_not_found"
                        if metadata is None
                        else "metadata_still_exists"
                    ),
                )
            )
        except Exception as e:
            checks.append(
                VerificationCheck(
                    method="metadata_lookup",
                    success=False,
                    reason=f"verification_error: {e}",
                )
            )

        verified = all(c.success for c in checks)
        return VerificationResult(
            verified=verified,
            checks=checks,
            confidence="high" if verified else "low",
            timestamp=self.clock(),
        )

    def generate_witness_hash(self, passes: List[PassRecord]) -> str:
        """SHA-256 over the pass records and the identity of this process."""
        witness_data = {
            "timestamp": self.clock().isoformat(),
            "deletion_passes": [
                {
                    "pass": p.pass_number,
                    "checksum": p.checksum,
                    "timestamp": p.timestamp.isoformat(),
                }
                for p in passes
            ],
            "system_state": {
                "node_id": self.config.node_id,
                "process_id": os.getpid(),
            },
        }
        canonical = json.dumps(witness_data, sort_keys=True)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    async def _generate_audit_trail(
        self,
        object_id: str,
        tier: str,
        passes: List[PassRecord],
        decision: ComplianceDecision,
        verification: VerificationResult,
        witness_hash: str,
        job: Optional[DeletionJob],
    ) -> str:
        job_metadata: Dict[str, Any] = job.metadata if job else {}
        audit_data = {
            "object_id": object_id,
            "timeline": {
                "uploaded": job_metadata.get("upload_time"),
                "scheduled": job.scheduled_for.isoformat() if job else None,
                "deleted": self.clock().isoformat(),
                "retention_hours": job_metadata.get("retention_hours"),
            },
            "context": {
                "tier": tier,
                "organization": job_metadata.get("organization"),
                "classification": job_metadata.get("classification"),
            },
            "deletion_process": {
                "passes": len(passes),
                "patterns": [p.pattern for p in passes],
                "checksums": [p.checksum for p in passes],
                "timestamps": [p.timestamp.isoformat() for p in passes],
            },
            "compliance": {
                "frameworks": self.frameworks,
                "approval_hash": decision.approval_hash,
                "witness_signature": witness_hash,
            },
            "verification": verification.to_dict(),
        }
        return await self.encryption.encrypt(json.dumps(audit_data, default=str))

    def assess_compliance_impact(self, error: BaseException) -> List[str]:
        """Describe the regulatory impact of a failed deletion per framework."""
        return [
            COMPLIANCE_IMPACTS.get(framework, f"{framework} compliance at risk")
            for framework in self.frameworks
        ]
