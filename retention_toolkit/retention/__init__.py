"""
Retention scheduling and secure deletion.
"""

from .models import (
    DeletionJob,
    DeletionMethod,
    DeletionResult,
    JobCompleted,
    JobFailed,
    JobPriority,
    JobRetried,
    PassRecord,
    RetentionPolicy,
    VerificationCheck,
    VerificationResult,
    WorkerOutcome,
)
from .scheduler import RetentionScheduler, determine_priority
from .engine import DeletionEngine, generate_pattern
from .worker import DeletionWorker

__all__ = [
    "DeletionJob",
    "DeletionMethod",
    "DeletionResult",
    "JobCompleted",
    "JobFailed",
    "JobPriority",
    "JobRetried",
    "PassRecord",
    "RetentionPolicy",
    "VerificationCheck",
    "VerificationResult",
    "WorkerOutcome",
    "RetentionScheduler",
    "determine_priority",
    "DeletionEngine",
    "generate_pattern",
    "DeletionWorker",
]
