"""
Canned configuration profiles.

Profiles are plain dictionaries merged under caller overrides and validated
through :meth:`RetentionConfig.load`. Remote key providers still need a
``vault_url`` in ``security.encryption.kms_config`` before a service can be
built from them.
"""

import copy
from typing import Any, Callable, Dict, Optional

from .config import RetentionConfig
from .exceptions import ConfigurationError

MB = 1024 * 1024
GB = 1024 * MB


def government_profile() -> Dict[str, Any]:
    """Classified-data tiers, HSM keys, seven overwrite passes, forensic audit."""
    return {
        "user_tiers": {
            "unclassified": {
                "retention_hours": 24,
                "max_file_size": 100 * MB,
                "concurrent_uploads": 5,
                "features": [],
            },
            "confidential": {
                "retention_hours": 72,
                "max_file_size": 500 * MB,
                "concurrent_uploads": 3,
                "features": [],
            },
            "secret": {
                "retention_hours": 168,
                "max_file_size": 1 * GB,
                "concurrent_uploads": 1,
                "features": ["immediate_post_signal_deletion"],
            },
            "top_secret": {
                "retention_hours": 1,
                "max_file_size": 2 * GB,
                "concurrent_uploads": 1,
                "features": ["immediate_post_signal_deletion", "restricted_bandwidth"],
            },
        },
        "security": {
            "encryption": {
                "algorithm": "AES-256-GCM",
                "key_rotation_hours": 1,
                "require_hsm": True,
                "kms_provider": "hsm",
            },
            "access": {
                "token_expiry_minutes": 15,
                "max_concurrent_access": 1,
                "require_mfa": True,
            },
            "deletion": {
                "overwrite_passes": 7,
                "require_confirmation": True,
                "audit_retention_days": 3650,
            },
        },
        "compliance": {
            "frameworks": ["NIST-800-53", "FedRAMP-High", "DoD-8570"],
            "audit_level": "forensic",
        },
        "deployment": {
            "environment": "air-gapped",
            "storage_provider": "filesystem",
            "regions": ["us-gov-east-1"],
            "redundancy": "none",
        },
        "queue": {
            "provider": "sql",
            "retry_policy": {"max_retries": 5, "backoff_ms": 2000, "max_backoff_ms": 60000},
        },
        "audit": {"storage_backend": "sqlite"},
    }


def enterprise_profile() -> Dict[str, Any]:
    """Free/pro/enterprise tiers under GDPR with enhanced auditing."""
    return {
        "user_tiers": {
            "free": {
                "retention_hours": 2,
                "max_file_size": 50 * MB,
                "concurrent_uploads": 2,
                "features": [],
            },
            "pro": {
                "retention_hours": 168,
                "max_file_size": 500 * MB,
                "concurrent_uploads": 5,
                "features": ["modification_allowed"],
            },
            "enterprise": {
                "retention_hours": 720,
                "max_file_size": 5 * GB,
                "concurrent_uploads": 10,
                "features": [
                    "modification_allowed",
                    "transcoding_allowed",
                    "priority_processing",
                    "unlimited_access",
                ],
            },
        },
        "security": {
            "encryption": {"algorithm": "AES-256-GCM", "key_rotation_hours": 24},
            "access": {"token_expiry_minutes": 60, "max_concurrent_access": 10},
            "deletion": {"overwrite_passes": 3, "audit_retention_days": 1095},
        },
        "compliance": {"frameworks": ["GDPR"], "audit_level": "enhanced"},
        "deployment": {
            "environment": "cloud",
            "regions": ["us-east-1", "eu-west-1"],
            "redundancy": "global",
        },
    }


def healthcare_profile() -> Dict[str, Any]:
    """Patient/provider/research tiers under HIPAA with HSM keys and MFA."""
    return {
        "user_tiers": {
            "patient": {
                "retention_hours": 24,
                "max_file_size": 100 * MB,
                "concurrent_uploads": 1,
                "features": [],
            },
            "provider": {
                "retention_hours": 168,
                "max_file_size": 1 * GB,
                "concurrent_uploads": 5,
                "features": [],
            },
            "research": {
                "retention_hours": 8760,
                "max_file_size": 10 * GB,
                "concurrent_uploads": 10,
                "features": [],
            },
        },
        "security": {
            "encryption": {
                "algorithm": "AES-256-GCM",
                "key_rotation_hours": 24,
                "require_hsm": True,
                "kms_provider": "hsm",
            },
            "access": {
                "token_expiry_minutes": 30,
                "max_concurrent_access": 3,
                "require_mfa": True,
            },
            "deletion": {
                "overwrite_passes": 3,
                "require_confirmation": True,
                "audit_retention_days": 2190,
            },
        },
        "compliance": {"frameworks": ["HIPAA"], "audit_level": "enhanced"},
        "deployment": {"environment": "hybrid"},
    }


PROFILES: Dict[str, Callable[[], Dict[str, Any]]] = {
    "government": government_profile,
    "enterprise": enterprise_profile,
    "healthcare": healthcare_profile,
}


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_profile(
    name: str, overrides: Optional[Dict[str, Any]] = None
) -> RetentionConfig:
    """
    Build a configuration from a named profile.

    Args:
        name: Profile name (government, enterprise, healthcare)
        overrides: Nested settings merged over the profile

    Returns:
        Validated configuration
    """
    builder = PROFILES.get(name)
    if builder is None:
        raise ConfigurationError(
            f"Unknown profile: {name}. Available profiles: {', '.join(PROFILES)}"
        )
    return RetentionConfig.load(_deep_merge(builder(), overrides or {}))
