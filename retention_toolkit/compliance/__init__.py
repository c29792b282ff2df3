"""
Compliance gate for secure deletion.

Evaluates HIPAA, GDPR, NIST-800-53, FedRAMP-High and DoD-8570 checks plus
custom requirements before any deletion proceeds.
"""

from .gate import FRAMEWORK_CHECKS, ComplianceContext, ComplianceGate
from .models import (
    REASON_APPROVED,
    REASON_NO_FRAMEWORKS,
    REASON_REJECTED,
    ComplianceDecision,
    FrameworkResult,
    compute_approval_hash,
)

__all__ = [
    "ComplianceGate",
    "ComplianceContext",
    "ComplianceDecision",
    "FrameworkResult",
    "FRAMEWORK_CHECKS",
    "compute_approval_hash",
    "REASON_APPROVED",
    "REASON_REJECTED",
    "REASON_NO_FRAMEWORKS",
]
