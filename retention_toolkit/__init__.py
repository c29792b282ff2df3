"""
Retention Toolkit - Time-bound retention and secure deletion for stored objects.

This toolkit stores objects under tier-specific retention windows and deletes
them when the window elapses: multi-pass overwrite, verification, a witness
hash and an encrypted, tamper-evident audit trail. A compliance gate evaluates
regulatory frameworks before any deletion proceeds.

Key Features
------------
* **Retention Scheduling**: Tier-based deadlines and priorities on a durable queue
* **Secure Deletion**: Multi-pass overwrite, verification and witness hashes
* **Compliance Gate**: HIPAA, GDPR, NIST-800-53, FedRAMP-High, DoD-8570 and
  custom requirements
* **Audit Trail**: Buffered, checksummed entries flushed as encrypted batches
* **Envelope Encryption**: Azure Key Vault, Azure Managed HSM or a local provider
* **Access Tokens**: Scoped, expiring, usage-capped tokens for consumers

Quick Start
-----------
>>> from retention_toolkit import RetentionService, get_profile
>>> from retention_toolkit.encryption import LocalKeyProvider
>>>
>>> config = get_profile("enterprise")
>>> service = RetentionService(config, key_provider=LocalKeyProvider())
>>> async with service:
...     stored = await service.store_object(b"payload", tier="free")
...     token = await service.generate_access_token(stored.object_id, "free")

Note: The compliance gate implements checks commonly required by the named
frameworks. Users remain responsible for validating it in their environment.
"""

__version__ = "1.0.0"
__author__ = "Manuel Knott"
__email__ = "manuel.knott@curevac.com"

from .access_tokens import AccessToken, AccessTokenManager, TokenPermission
from .audit_trail import AuditEvent, ComplianceAuditLogger
from .compliance import ComplianceDecision, ComplianceGate
from .config import RetentionConfig, TierConfig, configure, get_config, set_config
from .encryption import EncryptionManager
from .exceptions import (
    ComplianceBlockedError,
    ConfigurationError,
    ObjectTooLargeError,
    RetentionError,
    TokenError,
    UnknownTierError,
)
from .metrics import SystemMetrics
from .profiles import get_profile
from .retention import (
    DeletionEngine,
    DeletionJob,
    DeletionResult,
    DeletionWorker,
    RetentionPolicy,
    RetentionScheduler,
)
from .service import RetentionService, StoredObject

__all__ = [
    # Service
    "RetentionService",
    "StoredObject",
    # Configuration
    "RetentionConfig",
    "TierConfig",
    "get_config",
    "set_config",
    "configure",
    "get_profile",
    # Retention
    "RetentionScheduler",
    "RetentionPolicy",
    "DeletionJob",
    "DeletionEngine",
    "DeletionResult",
    "DeletionWorker",
    # Compliance and audit
    "ComplianceGate",
    "ComplianceDecision",
    "ComplianceAuditLogger",
    "AuditEvent",
    # Encryption
    "EncryptionManager",
    # Access tokens
    "AccessToken",
    "AccessTokenManager",
    "TokenPermission",
    # Metrics
    "SystemMetrics",
    # Errors
    "RetentionError",
    "ConfigurationError",
    "UnknownTierError",
    "ObjectTooLargeError",
    "ComplianceBlockedError",
    "TokenError",
]
