"""
Data models for envelope encryption.
"""

import base64
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from ..exceptions import DecryptionError

ENVELOPE_VERSION = "1.0"


@dataclass
class DataKey:
    """A freshly generated data key and its wrapped form.

    The plaintext key is only held in memory for the duration of a single
    encryption call.
    """

    plaintext: bytes = field(repr=False)
    encrypted_key: bytes
    key_id: str


@dataclass
class WrappedKey:
    """Key material wrapped by a key-management provider."""

    encrypted_key: bytes
    key_id: str


class EncryptionEnvelope(BaseModel):
    """Self-describing envelope holding everything needed to decrypt a payload
    except access to the key-encryption key.

    Binary fields are base64 encoded.
    """

    version: str = Field(ENVELOPE_VERSION, description="Envelope format version")
    algorithm: str = Field(..., description="Payload cipher")
    key_id: str = Field(..., description="Identifier of the key-encryption key")
    encrypted_key: str = Field(..., description="Wrapped data key")
    iv: str = Field(..., description="Nonce used for the payload cipher")
    auth_tag: str = Field(..., description="Authentication tag")
    ciphertext: str = Field(..., description="Encrypted payload")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the payload was encrypted",
    )

    def to_token(self) -> str:
        """Serialise the envelope to an opaque base64 token."""
        payload = self.model_dump_json().encode("utf-8")
        return base64.b64encode(payload).decode("ascii")

    @classmethod
    def from_token(cls, token: str) -> "EncryptionEnvelope":
        """Parse an opaque token back into an envelope."""
        try:
            raw = base64.b64decode(token.encode("ascii"), validate=True)
            return cls.model_validate(json.loads(raw))
        except Exception as e:
            raise DecryptionError(f"Malformed encryption token: {e}") from e

    def associated_data(self) -> bytes:
        """Header fields authenticated alongside the payload."""
        return f"{self.version}|{self.algorithm}|{self.key_id}".encode("utf-8")
