"""
Compliance gate evaluated before every deletion.

Each configured framework maps to a table of named checks computed from the
active configuration and the deletion context. Custom requirements add
caller-supplied predicates. A deletion is approved only if every framework
and every custom requirement passes.
"""

import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from ..config import (
    CipherAlgorithm,
    ComplianceAuditLevel,
    ComplianceRequirement,
    RetentionConfig,
    TierConfig,
)
from .models import REASON_NO_FRAMEWORKS, ComplianceDecision, FrameworkResult

logger = logging.getLogger(__name__)

UNAUTHORIZED_METHODS = {"unauthorized", "breach", "compromised"}
ERASURE_METHODS = {"user_request", "automatic", "policy_trigger"}
MAX_GDPR_RETENTION_HOURS = 8760  # One year


@dataclass
class ComplianceContext:
    """Inputs available to framework checks."""

    object_id: str
    tier: str
    method: str
    timestamp: datetime
    config: RetentionConfig

    @property
    def tier_config(self) -> Optional[TierConfig]:
        return self.config.user_tiers.get(self.tier)

    @property
    def audit_level(self) -> str:
        return ComplianceAuditLevel(self.config.compliance.audit_level).value

    @property
    def has_cipher(self) -> bool:
        return bool(self.config.security.encryption.algorithm)


def _hipaa_checks(ctx: ComplianceContext) -> Dict[str, bool]:
    tier = ctx.tier_config
    security = ctx.config.security
    return {
        "encryption_required": CipherAlgorithm(security.encryption.algorithm)
        == CipherAlgorithm.AES_256_GCM,
        "audit_trail_required": ctx.audit_level in ("enhanced", "forensic"),
        "retention_limits_enforced": tier is not None and tier.retention_hours > 0,
        "authorized_access_only": ctx.method not in UNAUTHORIZED_METHODS,
        "multi_factor_authentication": security.access.require_mfa,
        "deletion_verified": ctx.config.overwrite_passes_for(ctx.tier) >= 1,
    }


def _gdpr_checks(ctx: ComplianceContext) -> Dict[str, bool]:
    tier = ctx.tier_config
    return {
        "right_to_erasure": ctx.method in ERASURE_METHODS,
        "data_minimization": tier is not None,
        "storage_limit": tier is not None
        and tier.retention_hours <= MAX_GDPR_RETENTION_HOURS,
        "lawful_basis": ctx.method != "unauthorized",
        "technical_measures": ctx.has_cipher and ctx.audit_level != "basic",
    }


def _nist_checks(ctx: ComplianceContext) -> Dict[str, bool]:
    return {
        "sanitization_controls": ctx.config.overwrite_passes_for(ctx.tier) >= 1,
        "access_controls": ctx.method != "unauthorized",
        "audit_and_accountability": ctx.audit_level != "basic",
        "configuration_management": True,
        "cryptographic_protection": ctx.has_cipher,
        "data_at_rest_protection": True,
        "identification_authentication": True,
    }


def _fedramp_checks(ctx: ComplianceContext) -> Dict[str, bool]:
    return {
        "cryptographic_protection": ctx.has_cipher,
        "media_protection": True,
        "system_and_communications_protection": True,
        "audit_and_accountability": ctx.audit_level == "forensic",
        "access_control": ctx.method != "unauthorized",
        "identification_and_authentication": ctx.config.security.access.require_mfa,
        "system_and_information_integrity": True,
        "government_cloud_compliance": True,
        "continuous_monitoring": True,
        "incident_response": True,
    }


def _dod_checks(ctx: ComplianceContext) -> Dict[str, bool]:
    return {
        "information_assurance": True,
        "risk_management_framework": ctx.audit_level != "basic",
        "security_categorization": ctx.tier != "unknown",
        "continuous_monitoring": True,
        "stig_compliance": ctx.config.security.encryption.require_hsm,
        "common_criteria": True,
    }


FRAMEWORK_CHECKS: Dict[str, Callable[[ComplianceContext], Dict[str, bool]]] = {
    "HIPAA": _hipaa_checks,
    "GDPR": _gdpr_checks,
    "NIST-800-53": _nist_checks,
    "FedRAMP-High": _fedramp_checks,
    "DoD-8570": _dod_checks,
}

FRAMEWORK_LABELS = {
    "HIPAA": "HIPAA Security Rule",
    "GDPR": "GDPR",
    "NIST-800-53": "NIST 800-53",
    "FedRAMP-High": "FedRAMP High baseline",
    "DoD-8570": "DoD 8570",
}


class ComplianceGate:
    """
    Evaluates regulatory frameworks and custom requirements for deletions.

    Example:
        >>> gate = ComplianceGate(config)
        >>> decision = await gate.validate_deletion("obj-1", "free", "automatic")
        >>> decision.approved
        True
    """

    def __init__(
        self,
        config: RetentionConfig,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.frameworks: List[str] = list(config.compliance.frameworks)
        self.custom_requirements: List[ComplianceRequirement] = list(
            config.compliance.custom_requirements
        )
        logger.info(
            f"Compliance gate initialized: {', '.join(self.frameworks) or 'no frameworks'}"
        )

    def requires_audit(self) -> bool:
        """Whether deletions need an audit trail under this configuration."""
        audit_level = ComplianceAuditLevel(self.config.compliance.audit_level)
        return audit_level != ComplianceAuditLevel.BASIC or bool(self.frameworks)

    def evaluate_framework(
        self, framework: str, context: ComplianceContext
    ) -> FrameworkResult:
        """Evaluate one framework against a context."""
        check_fn = FRAMEWORK_CHECKS.get(framework)
        if check_fn is None:
            return FrameworkResult(
                framework=framework,
                approved=True,
                checks={},
                reason=f"No specific requirements configured for {framework}",
            )

        checks = check_fn(context)
        failed = [name for name, passed in checks.items() if not passed]
        label = FRAMEWORK_LABELS.get(framework, framework)
        return FrameworkResult(
            framework=framework,
            approved=not failed,
            checks=checks,
            reason=(
                f"{label} requirements satisfied"
                if not failed
                else f"{framework} violations: {', '.join(failed)}"
            ),
        )

    async def evaluate_custom_requirement(
        self, requirement: ComplianceRequirement, context: ComplianceContext
    ) -> FrameworkResult:
        """Evaluate a custom requirement; a raising predicate counts as failure."""
        framework = f"custom_{requirement.name}"
        if requirement.predicate is None:
            return FrameworkResult(
                framework=framework,
                approved=True,
                checks={},
                reason=f"Custom requirement {requirement.name} has no predicate",
            )

        predicate_context = {
            "object_id": context.object_id,
            "tier": context.tier,
            "method": context.method,
        }
        try:
            result = requirement.predicate(predicate_context, requirement.value)
            if inspect.isawaitable(result):
                result = await result
            passed = bool(result)
        except Exception as e:
            logger.error(f"Custom validation error for {requirement.name}: {e}")
            return FrameworkResult(
                framework=framework,
                approved=False,
                checks={requirement.name: False},
                reason=f"Custom validation error: {e}",
            )

        return FrameworkResult(
            framework=framework,
            approved=passed,
            checks={requirement.name: passed},
            reason=(
                f"Custom requirement {requirement.name} satisfied"
                if passed
                else f"Custom requirement {requirement.name} failed"
            ),
        )

    async def validate_deletion(
        self, object_id: str, tier: str, method: str
    ) -> ComplianceDecision:
        """
        Decide whether a deletion may proceed.

        Args:
            object_id: Object to be deleted
            tier: Tier the object was stored under
            method: Deletion method (automatic, manual, external_signal, ...)

        Returns:
            Compliance decision with per-framework results and approval hash
        """
        timestamp = self.clock()
        context = ComplianceContext(
            object_id=object_id,
            tier=tier,
            method=method,
            timestamp=timestamp,
            config=self.config,
        )

        if not self.frameworks and not self.custom_requirements:
            return ComplianceDecision.create([], timestamp, reason=REASON_NO_FRAMEWORKS)

        results = [self.evaluate_framework(fw, context) for fw in self.frameworks]
        for requirement in self.custom_requirements:
            results.append(await self.evaluate_custom_requirement(requirement, context))

        decision = ComplianceDecision.create(results, timestamp)
        if not decision.approved:
            logger.warning(
                f"Deletion of {object_id} rejected by: "
                f"{', '.join(decision.failed_frameworks)}"
            )
        return decision
