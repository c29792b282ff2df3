"""
Tests for envelope encryption and key providers.
"""

import base64
from unittest.mock import MagicMock, Mock, patch

import pytest

from retention_toolkit.config import CipherAlgorithm, EncryptionSettings, KMSProvider
from retention_toolkit.encryption import (
    AzureKeyVaultProvider,
    AzureManagedHSMProvider,
    EncryptionEnvelope,
    EncryptionManager,
    LocalKeyProvider,
    create_key_provider,
)
from retention_toolkit.exceptions import (
    ConfigurationError,
    DecryptionError,
    EncryptionError,
)


@pytest.fixture
def manager():
    """Create an encryption manager with a local key provider."""
    return EncryptionManager(EncryptionSettings(), provider=LocalKeyProvider())


def _tamper(value: str) -> str:
    raw = bytearray(base64.b64decode(value))
    raw[0] ^= 0x01
    return base64.b64encode(bytes(raw)).decode("ascii")


class TestEncryptionManager:
    """Test encryption and decryption round trips."""

    @pytest.mark.asyncio
    async def test_round_trip(self, manager):
        """Test decrypt returns the original payload."""
        token = await manager.encrypt(b"audit batch payload")
        assert await manager.decrypt(token) == b"audit batch payload"

    @pytest.mark.asyncio
    async def test_empty_and_large_payloads(self, manager):
        """Test empty and multi-block payloads."""
        assert await manager.decrypt(await manager.encrypt(b"")) == b""
        large = bytes(range(256)) * 1024
        assert await manager.decrypt(await manager.encrypt(large)) == large

    @pytest.mark.asyncio
    async def test_text_is_utf8_encoded(self, manager):
        """Test text payloads are encoded as UTF-8."""
        token = await manager.encrypt("résumé")
        assert await manager.decrypt(token) == "résumé".encode("utf-8")

    @pytest.mark.asyncio
    async def test_fresh_key_and_nonce_per_call(self, manager):
        """Test every call uses a new data key and nonce."""
        first = await manager.encrypt_envelope(b"same")
        second = await manager.encrypt_envelope(b"same")

        assert first.iv != second.iv
        assert first.encrypted_key != second.encrypted_key
        assert first.ciphertext != second.ciphertext

    @pytest.mark.asyncio
    async def test_envelope_fields(self, manager):
        """Test the envelope is self-describing."""
        envelope = await manager.encrypt_envelope(b"data")

        assert envelope.version == "1.0"
        assert envelope.algorithm == "AES-256-GCM"
        assert envelope.key_id == manager.provider.current_key_id
        assert len(base64.b64decode(envelope.iv)) == 12
        assert len(base64.b64decode(envelope.auth_tag)) == 16

    @pytest.mark.asyncio
    async def test_chacha20(self):
        """Test the ChaCha20-Poly1305 cipher."""
        manager = EncryptionManager(
            EncryptionSettings(algorithm=CipherAlgorithm.CHACHA20_POLY1305),
            provider=LocalKeyProvider(),
        )
        envelope = await manager.encrypt_envelope(b"data")
        assert envelope.algorithm == "ChaCha20-Poly1305"
        assert await manager.decrypt(envelope) == b"data"

    @pytest.mark.asyncio
    async def test_tampered_tag(self, manager):
        """Test a modified tag fails authentication."""
        envelope = await manager.encrypt_envelope(b"secret")
        envelope.auth_tag = _tamper(envelope.auth_tag)

        with pytest.raises(DecryptionError, match="Authentication tag mismatch"):
            await manager.decrypt(envelope)

    @pytest.mark.asyncio
    async def test_tampered_ciphertext(self, manager):
        """Test a modified ciphertext fails authentication."""
        envelope = await manager.encrypt_envelope(b"secret payload")
        envelope.ciphertext = _tamper(envelope.ciphertext)

        with pytest.raises(DecryptionError):
            await manager.decrypt(envelope)

    @pytest.mark.asyncio
    async def test_tampered_header(self, manager):
        """Test header fields are authenticated."""
        envelope = await manager.encrypt_envelope(b"secret")
        envelope.algorithm = "ChaCha20-Poly1305"

        with pytest.raises(DecryptionError):
            await manager.decrypt(envelope)

    @pytest.mark.asyncio
    async def test_unsupported_version(self, manager):
        """Test unknown envelope versions are rejected."""
        envelope = await manager.encrypt_envelope(b"secret")
        envelope.version = "2.0"

        with pytest.raises(DecryptionError, match="Unsupported encryption version"):
            await manager.decrypt(envelope)

    @pytest.mark.asyncio
    async def test_malformed_token(self, manager):
        """Test garbage tokens are rejected."""
        with pytest.raises(DecryptionError):
            await manager.decrypt("not-a-token")

    @pytest.mark.asyncio
    async def test_token_round_trip(self, manager):
        """Test envelopes survive token serialization."""
        envelope = await manager.encrypt_envelope(b"data")
        parsed = EncryptionEnvelope.from_token(envelope.to_token())
        assert parsed == envelope

    @pytest.mark.asyncio
    async def test_rotation_keeps_old_data_readable(self, manager):
        """Test data encrypted before rotation still decrypts."""
        old_token = await manager.encrypt(b"before rotation")
        old_key_id = manager.provider.current_key_id

        new_key_id = await manager.rotate_key()

        assert new_key_id != old_key_id
        assert await manager.decrypt(old_token) == b"before rotation"
        envelope = await manager.encrypt_envelope(b"after")
        assert envelope.key_id == new_key_id

    @pytest.mark.asyncio
    async def test_other_provider_cannot_decrypt(self, manager):
        """Test a token is bound to its provider's keys."""
        token = await manager.encrypt(b"secret")
        other = EncryptionManager(EncryptionSettings(), provider=LocalKeyProvider())

        with pytest.raises(DecryptionError):
            await other.decrypt(token)


class TestLocalKeyProvider:
    """Test the local development provider."""

    @pytest.mark.asyncio
    async def test_unknown_key(self):
        """Test unknown key identifiers."""
        provider = LocalKeyProvider()
        with pytest.raises(EncryptionError):
            await provider.encrypt(b"k" * 32, key_id="missing")
        with pytest.raises(DecryptionError):
            await provider.decrypt(b"x" * 40, key_id="missing")

    @pytest.mark.asyncio
    async def test_generate_data_key(self):
        """Test data keys are 256 bits and unwrap to the plaintext."""
        provider = LocalKeyProvider()
        data_key = await provider.generate_data_key()

        assert len(data_key.plaintext) == 32
        unwrapped = await provider.decrypt(data_key.encrypted_key, data_key.key_id)
        assert unwrapped == data_key.plaintext


class TestAzureKeyVaultProvider:
    """Test the Azure Key Vault provider with mocked clients."""

    @patch("retention_toolkit.encryption.providers.CryptographyClient")
    @patch("retention_toolkit.encryption.providers.KeyClient")
    @pytest.mark.asyncio
    async def test_wrap_and_unwrap(self, mock_key_client, mock_crypto_client):
        """Test data keys are wrapped with RSA-OAEP-256."""
        key = Mock()
        key.id = "https://vault.example/keys/retention-kek/v1"
        mock_key_client.return_value.get_key.return_value = key

        crypto = MagicMock()
        crypto.wrap_key.return_value = Mock(encrypted_key=b"wrapped", key_id=key.id)
        crypto.unwrap_key.return_value = Mock(key=b"k" * 32)
        mock_crypto_client.return_value = crypto

        provider = AzureKeyVaultProvider(
            vault_url="https://vault.example", credential=Mock()
        )
        wrapped = await provider.encrypt(b"k" * 32)

        assert wrapped.encrypted_key == b"wrapped"
        assert wrapped.key_id == key.id
        mock_key_client.return_value.get_key.assert_called_once_with("retention-kek")
        assert await provider.decrypt(b"wrapped", key.id) == b"k" * 32

    @patch("retention_toolkit.encryption.providers.KeyClient")
    @pytest.mark.asyncio
    async def test_creates_missing_key(self, mock_key_client):
        """Test the key-encryption key is created when absent."""
        from azure.core.exceptions import ResourceNotFoundError

        client = mock_key_client.return_value
        client.get_key.side_effect = ResourceNotFoundError("missing")
        client.create_rsa_key.return_value = Mock(id="https://hsm.example/keys/k/v1")

        provider = AzureManagedHSMProvider(
            vault_url="https://hsm.example", key_name="k", credential=Mock()
        )
        key = await provider._current()

        assert key.id == "https://hsm.example/keys/k/v1"
        client.create_rsa_key.assert_called_once_with(
            "k", size=3072, hardware_protected=True
        )

    @patch("retention_toolkit.encryption.providers.CryptographyClient")
    @patch("retention_toolkit.encryption.providers.KeyClient")
    @pytest.mark.asyncio
    async def test_unwrap_failure(self, mock_key_client, mock_crypto_client):
        """Test remote failures surface as DecryptionError."""
        mock_crypto_client.return_value.unwrap_key.side_effect = RuntimeError("denied")
        provider = AzureKeyVaultProvider(
            vault_url="https://vault.example", credential=Mock()
        )

        with pytest.raises(DecryptionError):
            await provider.decrypt(b"wrapped", "https://vault.example/keys/k/v1")

    @patch("retention_toolkit.encryption.providers.KeyClient")
    @pytest.mark.asyncio
    async def test_rotate_key(self, mock_key_client):
        """Test rotation by full key identifier."""
        client = mock_key_client.return_value
        client.rotate_key.return_value = Mock(id="https://vault.example/keys/other/v2")
        provider = AzureKeyVaultProvider(
            vault_url="https://vault.example", credential=Mock()
        )

        new_id = await provider.rotate_key("https://vault.example/keys/other/v1")

        client.rotate_key.assert_called_once_with("other")
        assert new_id == "https://vault.example/keys/other/v2"


class TestCreateKeyProvider:
    """Test provider selection."""

    def test_local(self):
        """Test the local provider must be selected explicitly."""
        provider = create_key_provider(EncryptionSettings(kms_provider=KMSProvider.LOCAL))
        assert isinstance(provider, LocalKeyProvider)

    def test_remote_requires_vault_url(self):
        """Test remote providers without a vault URL fail."""
        with pytest.raises(ConfigurationError, match="vault_url"):
            create_key_provider(EncryptionSettings())

    def test_require_hsm_with_local(self):
        """Test HSM requirement conflicts with the local provider."""
        with pytest.raises(ConfigurationError):
            create_key_provider(
                EncryptionSettings(require_hsm=True, kms_provider=KMSProvider.LOCAL)
            )

    @patch("retention_toolkit.encryption.providers.KeyClient")
    @patch("retention_toolkit.encryption.providers.DefaultAzureCredential")
    def test_require_hsm_forces_hsm(self, mock_credential, mock_key_client):
        """Test HSM requirement upgrades the Key Vault provider."""
        provider = create_key_provider(
            EncryptionSettings(
                require_hsm=True,
                kms_provider=KMSProvider.AZURE,
                kms_config={"vault_url": "https://hsm.example"},
            )
        )

        assert isinstance(provider, AzureManagedHSMProvider)
        assert provider.name == "hsm"
        mock_key_client.assert_called_once_with(
            vault_url="https://hsm.example", credential=mock_credential.return_value
        )
