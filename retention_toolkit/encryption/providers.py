"""
Key-management providers for envelope encryption.

Key-encryption keys never leave the provider. Data keys are generated
locally and wrapped by the provider:

- Azure Key Vault (software-protected RSA keys, RSA-OAEP-256 wrapping)
- Azure Managed HSM (hardware-protected RSA keys)
- Local AES key wrap (development and testing only)
"""

import asyncio
import logging
import os
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from azure.core.exceptions import ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.keyvault.keys import KeyClient, KeyVaultKey
from azure.keyvault.keys.crypto import CryptographyClient, KeyWrapAlgorithm
from cryptography.hazmat.primitives.keywrap import (
    InvalidUnwrap,
    aes_key_unwrap_with_padding,
    aes_key_wrap_with_padding,
)

from ..config import EncryptionSettings, KMSProvider
from ..exceptions import ConfigurationError, DecryptionError, EncryptionError
from .models import DataKey, WrappedKey

logger = logging.getLogger(__name__)

DATA_KEY_BYTES = 32
DEFAULT_KEY_NAME = "retention-kek"


class KeyManagementProvider(ABC):
    """Abstract interface for key-management providers."""

    name: str = "abstract"

    @abstractmethod
    async def encrypt(self, data: bytes, key_id: Optional[str] = None) -> WrappedKey:
        """
        Wrap key material with a key-encryption key.

        Args:
            data: Key material to wrap
            key_id: Specific key to wrap with, defaults to the current key

        Returns:
            Wrapped key and the identifier of the wrapping key
        """
        pass

    @abstractmethod
    async def decrypt(self, encrypted_data: bytes, key_id: str) -> bytes:
        """
        Unwrap key material.

        Args:
            encrypted_data: Wrapped key material
            key_id: Identifier returned when the material was wrapped

        Returns:
            Unwrapped key material
        """
        pass

    @abstractmethod
    async def rotate_key(self, key_id: Optional[str] = None) -> str:
        """
        Create a new version of a key-encryption key.

        Material wrapped under earlier versions stays decryptable.

        Returns:
            Identifier of the new key version
        """
        pass

    async def generate_data_key(self) -> DataKey:
        """Generate a fresh 256-bit data key and wrap it."""
        plaintext = os.urandom(DATA_KEY_BYTES)
        wrapped = await self.encrypt(plaintext)
        return DataKey(
            plaintext=plaintext,
            encrypted_key=wrapped.encrypted_key,
            key_id=wrapped.key_id,
        )


class AzureKeyVaultProvider(KeyManagementProvider):
    """
    Key-management provider backed by Azure Key Vault.

    Key identifiers include the key version, so rotation never invalidates
    previously wrapped data keys.
    """

    name = "azure"
    hardware_protected = False

    def __init__(
        self,
        vault_url: str,
        key_name: str = DEFAULT_KEY_NAME,
        key_size: int = 3072,
        credential: Optional[Any] = None,
    ):
        """
        Initialize the provider.

        Args:
            vault_url: Key Vault (or Managed HSM) URL
            key_name: Name of the key-encryption key
            key_size: RSA key size used when the key has to be created
            credential: Azure credential, defaults to DefaultAzureCredential
        """
        if not vault_url:
            raise ConfigurationError(f"{self.name} key provider requires vault_url")

        self.vault_url = vault_url
        self.key_name = key_name
        self.key_size = key_size
        self.credential = credential or DefaultAzureCredential()
        self.key_client = KeyClient(vault_url=vault_url, credential=self.credential)
        self._current_key: Optional[KeyVaultKey] = None
        self._crypto_clients: Dict[str, CryptographyClient] = {}

    def _load_or_create_key(self) -> KeyVaultKey:
        try:
            return self.key_client.get_key(self.key_name)
        except ResourceNotFoundError:
            logger.info(f"Creating key-encryption key {self.key_name} in {self.vault_url}")
            return self.key_client.create_rsa_key(
                self.key_name,
                size=self.key_size,
                hardware_protected=self.hardware_protected,
            )

    async def _current(self) -> KeyVaultKey:
        if self._current_key is None:
            self._current_key = await asyncio.to_thread(self._load_or_create_key)
        return self._current_key

    def _crypto_client(self, key_id: str) -> CryptographyClient:
        client = self._crypto_clients.get(key_id)
        if client is None:
            client = CryptographyClient(key_id, credential=self.credential)
            self._crypto_clients[key_id] = client
        return client

    async def encrypt(self, data: bytes, key_id: Optional[str] = None) -> WrappedKey:
        try:
            if key_id is None:
                key_id = (await self._current()).id
            if key_id is None:  # nosec B101
                raise RuntimeError("Key Vault returned a key without an identifier")
            client = self._crypto_client(key_id)
            result = await asyncio.to_thread(
                client.wrap_key, KeyWrapAlgorithm.rsa_oaep_256, data
            )
        except Exception as e:
            raise EncryptionError(f"Key wrap failed: {e}") from e
        return WrappedKey(encrypted_key=result.encrypted_key, key_id=result.key_id or key_id)

    async def decrypt(self, encrypted_data: bytes, key_id: str) -> bytes:
        try:
            client = self._crypto_client(key_id)
            result = await asyncio.to_thread(
                client.unwrap_key, KeyWrapAlgorithm.rsa_oaep_256, encrypted_data
            )
        except Exception as e:
            raise DecryptionError(f"Key unwrap failed: {e}") from e
        return result.key

    async def rotate_key(self, key_id: Optional[str] = None) -> str:
        name = _key_name_from_id(key_id) if key_id else self.key_name
        new_key = await asyncio.to_thread(self.key_client.rotate_key, name)
        if name == self.key_name:
            self._current_key = new_key
        logger.info(f"Rotated key-encryption key {name}")
        return new_key.id or name


class AzureManagedHSMProvider(AzureKeyVaultProvider):
    """Key-management provider backed by Azure Managed HSM.

    Keys are created hardware-protected and never exported.
    """

    name = "hsm"
    hardware_protected = True


class LocalKeyProvider(KeyManagementProvider):
    """
    In-process key provider using AES key wrap (RFC 5649).

    Key-encryption keys live only in memory and are lost when the process
    exits. Use for development and tests only.
    """

    name = "local"

    def __init__(self) -> None:
        logger.warning(
            "Local key provider in use, key-encryption keys are held in memory only"
        )
        self._keys: Dict[str, bytes] = {}
        self.current_key_id = self._new_key()

    def _new_key(self) -> str:
        key_id = f"local-kek-{uuid.uuid4().hex}"
        self._keys[key_id] = os.urandom(32)
        return key_id

    async def encrypt(self, data: bytes, key_id: Optional[str] = None) -> WrappedKey:
        key_id = key_id or self.current_key_id
        kek = self._keys.get(key_id)
        if kek is None:
            raise EncryptionError(f"Unknown key-encryption key: {key_id}")
        return WrappedKey(
            encrypted_key=aes_key_wrap_with_padding(kek, data), key_id=key_id
        )

    async def decrypt(self, encrypted_data: bytes, key_id: str) -> bytes:
        kek = self._keys.get(key_id)
        if kek is None:
            raise DecryptionError(f"Unknown key-encryption key: {key_id}")
        try:
            return aes_key_unwrap_with_padding(kek, encrypted_data)
        except InvalidUnwrap as e:
            raise DecryptionError("Key unwrap failed") from e

    async def rotate_key(self, key_id: Optional[str] = None) -> str:
        self.current_key_id = self._new_key()
        logger.info(f"Rotated local key-encryption key to {self.current_key_id}")
        return self.current_key_id


def _key_name_from_id(key_id: str) -> str:
    """Extract the key name from a Key Vault key identifier or plain name."""
    # https://{vault}/keys/{name}/{version}
    if "/keys/" in key_id:
        return key_id.split("/keys/", 1)[1].split("/")[0]
    return key_id


def create_key_provider(
    settings: EncryptionSettings, credential: Optional[Any] = None
) -> KeyManagementProvider:
    """
    Create the key-management provider selected by configuration.

    ``require_hsm`` forces the Managed HSM provider. Remote providers
    without a ``vault_url`` are a configuration error.

    Args:
        settings: Encryption settings
        credential: Optional Azure credential

    Returns:
        Key-management provider
    """
    provider = settings.kms_provider
    kms_config = settings.kms_config

    if settings.require_hsm:
        if provider == KMSProvider.LOCAL:
            raise ConfigurationError(
                "Hardware security module required but local key provider configured"
            )
        provider = KMSProvider.HSM

    if provider == KMSProvider.LOCAL:
        return LocalKeyProvider()

    vault_url = kms_config.get("vault_url")
    if not vault_url:
        raise ConfigurationError(
            f"Key provider '{provider.value}' requires security.encryption.kms_config.vault_url"
        )

    provider_class = (
        AzureManagedHSMProvider if provider == KMSProvider.HSM else AzureKeyVaultProvider
    )
    return provider_class(
        vault_url=vault_url,
        key_name=kms_config.get("key_name", DEFAULT_KEY_NAME),
        key_size=int(kms_config.get("key_size", 3072)),
        credential=credential,
    )
