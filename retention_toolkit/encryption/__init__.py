"""
Envelope encryption for the Retention Toolkit.

Payloads are encrypted with fresh per-call data keys; data keys are wrapped
by a key-management provider (Azure Key Vault, Azure Managed HSM, or a local
development provider).
"""

from .manager import EncryptionManager
from .models import DataKey, EncryptionEnvelope, WrappedKey
from .providers import (
    AzureKeyVaultProvider,
    AzureManagedHSMProvider,
    KeyManagementProvider,
    LocalKeyProvider,
    create_key_provider,
)

__all__ = [
    "EncryptionManager",
    "EncryptionEnvelope",
    "DataKey",
    "WrappedKey",
    "KeyManagementProvider",
    "AzureKeyVaultProvider",
    "AzureManagedHSMProvider",
    "LocalKeyProvider",
    "create_key_provider",
]
