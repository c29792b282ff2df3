"""
Configuration module for the Retention Toolkit.

Provides centralized, construction-time configuration for tiers, security,
compliance, deployment adapters, the deletion queue, audit output and
monitoring. Configuration is immutable once a service has been built from it.
"""

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigurationError, UnknownTierError


class CipherAlgorithm(str, Enum):
    """Supported authenticated ciphers for envelope encryption."""

    AES_256_GCM = "AES-256-GCM"
    CHACHA20_POLY1305 = "ChaCha20-Poly1305"


class KMSProvider(str, Enum):
    """Supported key-management providers."""

    AZURE = "azure"
    HSM = "hsm"
    LOCAL = "local"  # Development only


class ComplianceAuditLevel(str, Enum):
    """Depth of the audit trail required by the compliance configuration."""

    BASIC = "basic"
    ENHANCED = "enhanced"
    FORENSIC = "forensic"


class DeploymentEnvironment(str, Enum):
    """Deployment environments."""

    CLOUD = "cloud"
    ON_PREMISE = "on-premise"
    HYBRID = "hybrid"
    AIR_GAPPED = "air-gapped"


class StorageBackend(str, Enum):
    """Supported storage backends for flushed audit batches."""

    MEMORY = "memory"
    FILE = "file"
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class RequirementType(str, Enum):
    """Categories of custom compliance requirements."""

    RETENTION_LIMIT = "retention_limit"
    DELETION_METHOD = "deletion_method"
    ACCESS_CONTROL = "access_control"
    ENCRYPTION = "encryption"
    AUDIT = "audit"


# Tier feature flags understood by the toolkit
FEATURE_IMMEDIATE_POST_SIGNAL_DELETION = "immediate_post_signal_deletion"
FEATURE_PRIORITY_PROCESSING = "priority_processing"
FEATURE_MODIFICATION_ALLOWED = "modification_allowed"
FEATURE_TRANSCODING_ALLOWED = "transcoding_allowed"
FEATURE_UNLIMITED_ACCESS = "unlimited_access"
FEATURE_RESTRICTED_BANDWIDTH = "restricted_bandwidth"


class TierConfig(BaseModel):
    """Retention and access settings for one class of uploader."""

    model_config = ConfigDict(frozen=True)

    retention_hours: float = Field(
        ..., description="Hours an object is retained before deletion", gt=0
    )
    max_file_size: int = Field(..., description="Maximum object size in bytes", gt=0)
    concurrent_uploads: int = Field(1, description="Concurrent uploads allowed", gt=0)
    features: List[str] = Field(
        default_factory=list, description="Feature flags enabled for the tier"
    )
    overwrite_passes: Optional[int] = Field(
        None, description="Tier override for the number of overwrite passes", ge=1
    )

    def has_feature(self, feature: str) -> bool:
        """Check whether the tier enables a feature flag."""
        return feature in self.features


class EncryptionSettings(BaseModel):
    """Envelope encryption and key-management settings."""

    algorithm: CipherAlgorithm = Field(
        CipherAlgorithm.AES_256_GCM, description="Authenticated cipher for payloads"
    )
    key_rotation_hours: int = Field(
        24, description="Hours between key-encryption-key rotations", gt=0
    )
    require_hsm: bool = Field(
        False, description="Require a hardware-security-module key provider"
    )
    kms_provider: KMSProvider = Field(
        KMSProvider.AZURE, description="Key-management provider"
    )
    kms_config: Dict[str, Any] = Field(
        default_factory=dict,
        description="Provider settings (vault_url, key_name, key_size)",
    )


class AccessSettings(BaseModel):
    """Settings for machine-to-machine access tokens."""

    token_expiry_minutes: int = Field(30, description="Token lifetime", gt=0)
    max_concurrent_access: int = Field(
        5, description="Concurrent consumers allowed per token", gt=0
    )
    ip_whitelist: List[str] = Field(
        default_factory=list, description="Client addresses allowed to use tokens"
    )
    require_mfa: bool = Field(False, description="Require MFA for token issuers")
    default_usage_cap: int = Field(
        100, description="Requests allowed per token unless unlimited", gt=0
    )


class DeletionSettings(BaseModel):
    """Secure deletion settings."""

    overwrite_passes: int = Field(3, description="Overwrite passes per object", ge=1)
    require_confirmation: bool = Field(
        False, description="Require operator confirmation for manual deletion"
    )
    audit_retention_days: int = Field(
        2555, description="Days to retain deletion audit records", gt=0
    )
    pass_buffer_size: int = Field(
        64 * 1024, description="Size of the pattern buffer for each pass", gt=0
    )


class SecuritySettings(BaseModel):
    """Grouped security settings."""

    encryption: EncryptionSettings = Field(default_factory=EncryptionSettings)
    access: AccessSettings = Field(default_factory=AccessSettings)
    deletion: DeletionSettings = Field(default_factory=DeletionSettings)


class ComplianceRequirement(BaseModel):
    """Custom compliance requirement evaluated before every deletion.

    The predicate receives the evaluation context (object_id, tier, method)
    and the configured value, and returns a boolean or an awaitable of one.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(..., description="Requirement name", min_length=1)
    type: RequirementType = Field(..., description="Requirement category")
    value: Any = Field(None, description="Value handed to the predicate")
    predicate: Optional[Callable[..., Any]] = Field(
        None, description="Predicate returning bool or Awaitable[bool]"
    )


class ComplianceSettings(BaseModel):
    """Regulatory frameworks and custom requirements."""

    frameworks: List[str] = Field(
        default_factory=list, description="Compliance frameworks to evaluate"
    )
    custom_requirements: List[ComplianceRequirement] = Field(
        default_factory=list, description="Additional predicates"
    )
    audit_level: ComplianceAuditLevel = Field(
        ComplianceAuditLevel.BASIC, description="Audit depth"
    )


class DeploymentSettings(BaseModel):
    """Deployment and storage adapter selection."""

    environment: DeploymentEnvironment = Field(DeploymentEnvironment.CLOUD)
    storage_provider: str = Field("memory", description="Storage adapter identifier")
    storage_config: Dict[str, Any] = Field(
        default_factory=dict, description="Storage adapter settings"
    )
    regions: List[str] = Field(default_factory=lambda: ["us-east-1"])
    redundancy: str = Field(
        "regional", description="Redundancy", pattern="^(none|regional|global)$"
    )


class RetryPolicy(BaseModel):
    """Exponential backoff policy for deletion jobs."""

    max_retries: int = Field(3, description="Retries before dead-lettering", ge=0)
    backoff_ms: int = Field(1000, description="Base backoff in milliseconds", ge=0)
    max_backoff_ms: int = Field(30000, description="Backoff cap in milliseconds", ge=0)

    def backoff_for(self, retry_count: int) -> int:
        """Backoff delay for a job that has been retried ``retry_count`` times."""
        return int(min(self.backoff_ms * (2**retry_count), self.max_backoff_ms))


class QueueSettings(BaseModel):
    """Durable queue adapter and worker loop settings."""

    provider: str = Field("memory", description="Queue adapter identifier")
    config: Dict[str, Any] = Field(
        default_factory=dict, description="Queue adapter settings"
    )
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    poll_interval_seconds: float = Field(
        5.0, description="Idle time when the queue is empty", ge=0
    )
    error_backoff_seconds: float = Field(
        10.0, description="Idle time after an unexpected loop error", ge=0
    )
    shutdown_drain_seconds: float = Field(
        30.0, description="Time to wait for in-flight jobs on shutdown", ge=0
    )


class AuditSettings(BaseModel):
    """Audit buffer and durable audit storage settings."""

    storage_backend: StorageBackend = Field(StorageBackend.MEMORY)
    storage_path: Optional[str] = Field(
        "./audit_logs", description="Directory for file-based audit storage"
    )
    connection_string: Optional[str] = Field(
        None, description="Database URL for SQL audit storage"
    )
    flush_threshold: int = Field(
        100, description="Buffer size that triggers a flush", gt=0, le=10000
    )
    flush_interval_seconds: float = Field(
        30.0, description="Periodic flush interval", gt=0
    )


class MonitoringSettings(BaseModel):
    """Monitoring settings."""

    enable_metrics: bool = Field(True, description="Collect system metrics")
    log_level: str = Field(
        "info", description="Monitoring log level", pattern="^(debug|info|warn|error)$"
    )


def _default_tiers() -> Dict[str, TierConfig]:
    return {
        "standard": TierConfig(
            retention_hours=24,
            max_file_size=100 * 1024 * 1024,
            concurrent_uploads=5,
            features=[],
        )
    }


class RetentionConfig(BaseModel):
    """Central configuration for the retention and secure-deletion subsystem.

    Configuration Sources (in order of precedence):
        1. Programmatic settings
        2. Environment variables (RETENTION_ prefix, ``__`` for nesting)
        3. Configuration files (JSON or YAML)
        4. Default values

    Example:
        >>> config = RetentionConfig.load({
        ...     "user_tiers": {
        ...         "demo": {"retention_hours": 2, "max_file_size": 10_000_000}
        ...     },
        ...     "compliance": {"frameworks": ["GDPR"], "audit_level": "enhanced"},
        ... })
        >>> config.get_tier("demo").retention_hours
        2.0

    Note:
        Invalid configuration is fatal at construction and surfaces as
        ConfigurationError from :meth:`load`, :meth:`from_file` and
        :meth:`from_env`.
    """

    application_name: str = Field(
        "Retention Service", description="Name recorded in audit system info"
    )
    node_id: str = Field("retention-node", description="Node identity for audits")
    user_tiers: Dict[str, TierConfig] = Field(default_factory=_default_tiers)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    compliance: ComplianceSettings = Field(default_factory=ComplianceSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("user_tiers")
    @classmethod
    def validate_tiers(cls, v: Dict[str, TierConfig]) -> Dict[str, TierConfig]:
        """At least one tier must be configured."""
        if not v:
            raise ValueError("At least one user tier must be configured")
        return v

    def get_tier(self, tier: str) -> TierConfig:
        """Look up a tier, raising UnknownTierError if it is not configured."""
        try:
            return self.user_tiers[tier]
        except KeyError:
            raise UnknownTierError(tier, list(self.user_tiers)) from None

    def overwrite_passes_for(self, tier: Optional[str]) -> int:
        """Number of overwrite passes for a tier (tier override or global)."""
        tier_config = self.user_tiers.get(tier) if tier else None
        if tier_config is not None and tier_config.overwrite_passes:
            return tier_config.overwrite_passes
        return self.security.deletion.overwrite_passes

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a JSON-compatible dictionary."""
        return self.model_dump(
            mode="json", exclude={"compliance": {"custom_requirements": {"__all__": {"predicate"}}}}
        )

    @classmethod
    def load(cls, data: Union["RetentionConfig", Dict[str, Any]]) -> "RetentionConfig":
        """Validate configuration data, raising ConfigurationError on failure."""
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "RetentionConfig":
        """
        Load configuration from a JSON or YAML file.

        Args:
            path: Path to a .json, .yaml or .yml file

        Returns:
            Configuration instance
        """
        file_path = Path(path)
        if not file_path.exists():
            raise ConfigurationError(f"Configuration file not found: {file_path}")

        with open(file_path, "r", encoding="utf-8") as f:
            if file_path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                try:
                    data = json.load(f)
                except json.JSONDecodeError as e:
                    raise ConfigurationError(f"Invalid JSON in {file_path}: {e}") from e

        return cls.load(data)

    @classmethod
    def from_env(
        cls,
        prefix: str = "RETENTION_",
        base: Optional[Dict[str, Any]] = None,
    ) -> "RetentionConfig":
        """
        Load configuration from environment variables.

        Nested settings use a double underscore, e.g.
        ``RETENTION_QUEUE__RETRY_POLICY__MAX_RETRIES=5``. Values are parsed
        as YAML scalars so ``true``, ``5`` and ``[GDPR, HIPAA]`` keep their
        types.

        Args:
            prefix: Prefix for environment variables
            base: Optional base configuration the variables are layered onto

        Returns:
            Configuration instance
        """
        config_dict: Dict[str, Any] = dict(base or {})

        for env_var, raw in os.environ.items():
            if not env_var.startswith(prefix):
                continue
            path = [p.lower() for p in env_var[len(prefix) :].split("__") if p]
            if not path:
                continue

            try:
                value = yaml.safe_load(raw)
            except yaml.YAMLError:
                value = raw

            target = config_dict
            for part in path[:-1]:
                existing = target.get(part)
                if not isinstance(existing, dict):
                    existing = {}
                    target[part] = existing
                target = existing
            target[path[-1]] = value

        return cls.load(config_dict)


# Global configuration instance
_config: Optional[RetentionConfig] = None


def get_config() -> RetentionConfig:
    """
    Get the global configuration instance.

    Returns:
        Global configuration
    """
    global _config

    if _config is None:
        _config = RetentionConfig.from_env()

    return _config


def set_config(config: RetentionConfig) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Configuration to set
    """
    global _config
    _config = config


def configure(**kwargs: Any) -> RetentionConfig:
    """
    Configure the toolkit with keyword arguments.

    Args:
        **kwargs: Top-level configuration sections

    Returns:
        Updated configuration
    """
    global _config

    if _config is None:
        _config = RetentionConfig.load(kwargs)
    else:
        config_dict = _config.model_dump()
        config_dict.update(kwargs)
        _config = RetentionConfig.load(config_dict)

    return _config
