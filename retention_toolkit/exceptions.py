"""Exceptions for retention, secure deletion and access token operations."""

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .compliance.models import ComplianceDecision


class RetentionError(Exception):
    """Base exception for the retention toolkit."""

    def __init__(self, message: str, object_id: Optional[str] = None):
        self.object_id = object_id
        super().__init__(message)


class ConfigurationError(RetentionError):
    """Raised when the configuration is missing or invalid."""


class UnknownTierError(RetentionError):
    """Raised when an operation references a tier that is not configured."""

    def __init__(self, tier: str, available: Optional[list] = None):
        self.tier = tier
        message = f"Unknown user tier: {tier}"
        if available:
            message += f". Available tiers: {', '.join(available)}"
        super().__init__(message)


class ObjectTooLargeError(RetentionError):
    """Raised when an object exceeds the size limit of its tier."""

    def __init__(self, object_size: int, limit: int, tier: str):
        self.object_size = object_size
        self.limit = limit
        self.tier = tier
        super().__init__(
            f"Object size {object_size} exceeds tier limit {limit} for tier {tier}"
        )


class ComplianceBlockedError(RetentionError):
    """Raised when the compliance gate rejects a deletion.

    Compliance rejections are not transient and are never retried.
    """

    def __init__(self, object_id: str, decision: "ComplianceDecision"):
        self.decision = decision
        super().__init__(
            f"Deletion blocked by compliance: {decision.reason}", object_id=object_id
        )


class TransientStorageError(RetentionError):
    """Raised when a storage operation fails in a way that may be retried."""


class TransientQueueError(RetentionError):
    """Raised when a queue operation fails in a way that may be retried."""


class EncryptionError(RetentionError):
    """Raised when encryption fails."""


class DecryptionError(RetentionError):
    """Raised when decryption fails. No plaintext is ever returned."""


class TokenError(RetentionError):
    """Base exception for access token validation."""


class TokenNotFoundError(TokenError):
    """Raised when a token is not present in the registry."""

    def __init__(self) -> None:
        super().__init__("Invalid or expired token")


class TokenExpiredError(TokenError):
    """Raised when a token is past its expiry."""

    def __init__(self, object_id: Optional[str] = None) -> None:
        super().__init__("Token expired", object_id=object_id)


class PermissionDeniedError(TokenError):
    """Raised when a token does not grant the requested action."""

    def __init__(self, action: str, object_id: Optional[str] = None) -> None:
        self.action = action
        super().__init__(f"Permission denied: {action}", object_id=object_id)


class UsageLimitExceededError(TokenError):
    """Raised when a token has reached its usage cap."""

    def __init__(self, limit: Any, object_id: Optional[str] = None) -> None:
        self.limit = limit
        super().__init__(
            f"Token usage limit exceeded ({limit} requests)", object_id=object_id
        )
