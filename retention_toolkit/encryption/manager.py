"""
Envelope encryption manager.

Every call generates a fresh data key and nonce. The data key is wrapped by
the configured key-management provider and stored in the envelope next to
the ciphertext.
"""

import base64
import logging
import os
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..config import CipherAlgorithm, EncryptionSettings
from ..exceptions import DecryptionError, EncryptionError
from .models import ENVELOPE_VERSION, EncryptionEnvelope
from .providers import KeyManagementProvider, create_key_provider

logger = logging.getLogger(__name__)

NONCE_BYTES = 12
TAG_BYTES = 16

_CIPHERS = {
    CipherAlgorithm.AES_256_GCM.value: AESGCM,
    CipherAlgorithm.CHACHA20_POLY1305.value: ChaCha20Poly1305,
}


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(data: str) -> bytes:
    return base64.b64decode(data.encode("ascii"), validate=True)


class EncryptionManager:
    """
    Encrypts payloads with per-call data keys wrapped by a key provider.

    Example:
        >>> manager = EncryptionManager(settings, provider=LocalKeyProvider())
        >>> token = await manager.encrypt(b"audit batch")
        >>> await manager.decrypt(token)
        b'audit batch'
    """

    def __init__(
        self,
        settings: Optional[EncryptionSettings] = None,
        provider: Optional[KeyManagementProvider] = None,
    ):
        self.settings = settings or EncryptionSettings()
        self.provider = provider or create_key_provider(self.settings)
        self.algorithm = CipherAlgorithm(self.settings.algorithm).value

    async def encrypt_envelope(self, data: Union[bytes, str]) -> EncryptionEnvelope:
        """
        Encrypt data into an envelope.

        Args:
            data: Plaintext bytes or text (encoded as UTF-8)

        Returns:
            Envelope holding ciphertext, nonce, tag and the wrapped data key
        """
        if isinstance(data, str):
            data = data.encode("utf-8")

        data_key = await self.provider.generate_data_key()
        nonce = os.urandom(NONCE_BYTES)

        envelope = EncryptionEnvelope(
            version=ENVELOPE_VERSION,
            algorithm=self.algorithm,
            key_id=data_key.key_id,
            encrypted_key=_b64(data_key.encrypted_key),
            iv=_b64(nonce),
            auth_tag="",
            ciphertext="",
        )

        try:
            cipher = _CIPHERS[self.algorithm](data_key.plaintext)
            sealed = cipher.encrypt(nonce, data, envelope.associated_data())
        except Exception as e:
            raise EncryptionError(f"Encryption failed: {e}") from e

        envelope.ciphertext = _b64(sealed[:-TAG_BYTES])
        envelope.auth_tag = _b64(sealed[-TAG_BYTES:])
        return envelope

    async def encrypt(self, data: Union[bytes, str]) -> str:
        """Encrypt data and return an opaque token."""
        envelope = await self.encrypt_envelope(data)
        return envelope.to_token()

    async def decrypt(self, token: Union[str, EncryptionEnvelope]) -> bytes:
        """
        Decrypt a token or envelope.

        Raises:
            DecryptionError: On unsupported versions, malformed input, key
                unwrap failure or authentication tag mismatch
        """
        envelope = (
            token
            if isinstance(token, EncryptionEnvelope)
            else EncryptionEnvelope.from_token(token)
        )

        if envelope.version != ENVELOPE_VERSION:
            raise DecryptionError(
                f"Unsupported encryption version: {envelope.version}"
            )

        cipher_class = _CIPHERS.get(envelope.algorithm)
        if cipher_class is None:
            raise DecryptionError(f"Unsupported algorithm: {envelope.algorithm}")

        try:
            encrypted_key = _unb64(envelope.encrypted_key)
            nonce = _unb64(envelope.iv)
            sealed = _unb64(envelope.ciphertext) + _unb64(envelope.auth_tag)
        except ValueError as e:
            raise DecryptionError(f"Malformed envelope: {e}") from e

        data_key = await self.provider.decrypt(encrypted_key, envelope.key_id)

        try:
            return cipher_class(data_key).decrypt(
                nonce, sealed, envelope.associated_data()
            )
        except InvalidTag as e:
            raise DecryptionError("Authentication tag mismatch") from e
        except ValueError as e:
            raise DecryptionError(f"Decryption failed: {e}") from e

    async def rotate_key(self, key_id: Optional[str] = None) -> str:
        """Rotate the key-encryption key and return the new key identifier."""
        new_key_id = await self.provider.rotate_key(key_id)
        logger.info(f"Key rotation completed: {new_key_id}")
        return new_key_id
