"""
Scoped access tokens for machine-to-machine consumers.

Tokens grant a filtered set of permissions on a single object for a limited
time and a capped number of requests.

Note:
    The token registry lives in process memory. Tokens issued by one process
    are unknown to every other process and are lost on restart.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from .audit_trail import ComplianceAuditLogger, redact_token
from .config import (
    FEATURE_MODIFICATION_ALLOWED,
    FEATURE_RESTRICTED_BANDWIDTH,
    FEATURE_TRANSCODING_ALLOWED,
    FEATURE_UNLIMITED_ACCESS,
    RetentionConfig,
    TierConfig,
)
from .exceptions import (
    PermissionDeniedError,
    TokenExpiredError,
    TokenNotFoundError,
    UsageLimitExceededError,
)
from .metrics import SystemMetrics

logger = logging.getLogger(__name__)

RESTRICTED_BANDWIDTH_LIMIT = "10MB/s"


class TokenPermission(str, Enum):
    """Actions a token can grant."""

    READ = "read"
    ANALYZE = "analyze"
    TRANSCODE = "transcode"
    MODIFY = "modify"


# Permissions that need a tier feature
_PERMISSION_FEATURES = {
    TokenPermission.MODIFY.value: FEATURE_MODIFICATION_ALLOWED,
    TokenPermission.TRANSCODE.value: FEATURE_TRANSCODING_ALLOWED,
}


@dataclass
class AccessToken:
    """An issued access token and its usage state."""

    token: str
    object_id: str
    tier: str
    permissions: List[str]
    issuer_id: str
    expires_at: datetime
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    restrictions: Dict[str, Any] = field(default_factory=dict)
    request_count: int = 0
    max_requests: Optional[int] = None  # None means unlimited

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with the token redacted."""
        return {
            "token": redact_token(self.token),
            "object_id": self.object_id,
            "tier": self.tier,
            "permissions": list(self.permissions),
            "issuer_id": self.issuer_id,
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "restrictions": dict(self.restrictions),
            "request_count": self.request_count,
            "max_requests": self.max_requests,
        }


def filter_permissions(requested: Iterable[str], tier_config: TierConfig) -> List[str]:
    """
    Reduce requested permissions to those the tier allows.

    Unknown permissions are dropped. ``modify`` and ``transcode`` require
    their tier features.
    """
    known = {p.value for p in TokenPermission}
    allowed: List[str] = []
    for permission in requested:
        if permission not in known or permission in allowed:
            continue
        feature = _PERMISSION_FEATURES.get(permission)
        if feature is not None and not tier_config.has_feature(feature):
            continue
        allowed.append(permission)
    return allowed


class AccessTokenManager:
    """Issues, validates and revokes access tokens."""

    def __init__(
        self,
        config: RetentionConfig,
        audit_logger: ComplianceAuditLogger,
        metrics: Optional[SystemMetrics] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.audit_logger = audit_logger
        self.metrics = metrics
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._tokens: Dict[str, AccessToken] = {}

    @property
    def active_token_count(self) -> int:
        return len(self._tokens)

    def _build_restrictions(self, tier_config: TierConfig) -> Dict[str, Any]:
        access = self.config.security.access
        restrictions: Dict[str, Any] = {}
        if access.ip_whitelist:
            restrictions["ip_whitelist"] = list(access.ip_whitelist)
        if tier_config.has_feature(FEATURE_RESTRICTED_BANDWIDTH):
            restrictions["bandwidth_limit"] = RESTRICTED_BANDWIDTH_LIMIT
        if access.max_concurrent_access:
            restrictions["max_concurrent_access"] = access.max_concurrent_access
        return restrictions

    async def generate_access_token(
        self,
        object_id: str,
        tier: str,
        requested_permissions: Iterable[str] = ("read",),
        issuer_id: str = "system",
    ) -> AccessToken:
        """
        Issue a token for an object.

        Args:
            object_id: Object the token grants access to
            tier: Tier the object was stored under
            requested_permissions: Permissions asked for
            issuer_id: Identity of the consuming system

        Returns:
            The issued token

        Raises:
            UnknownTierError: If the tier is not configured
        """
        tier_config = self.config.get_tier(tier)
        permissions = filter_permissions(requested_permissions, tier_config)
        now = self.clock()
        access = self.config.security.access

        token = AccessToken(
            token=secrets.token_urlsafe(32),
            object_id=object_id,
            tier=tier,
            permissions=permissions,
            issuer_id=issuer_id,
            expires_at=now + timedelta(minutes=access.token_expiry_minutes),
            created_at=now,
            restrictions=self._build_restrictions(tier_config),
            max_requests=(
                None
                if tier_config.has_feature(FEATURE_UNLIMITED_ACCESS)
                else access.default_usage_cap
            ),
        )
        self._tokens[token.token] = token

        if self.metrics is not None:
            self.metrics.record_token_generated()
        self.audit_logger.log_token_generated(
            object_id=object_id,
            tier=tier,
            issuer_id=issuer_id,
            permissions=permissions,
            expires_at=token.expires_at,
            frameworks=list(self.config.compliance.frameworks),
        )
        return token

    async def validate_access(self, token: str, action: str) -> AccessToken:
        """
        Check a token for an action and count the request.

        Raises:
            TokenNotFoundError: Unknown or already evicted token
            TokenExpiredError: Token past expiry, evicted on detection
            PermissionDeniedError: Action not granted
            UsageLimitExceededError: Request cap reached
        """
        token_data = self._tokens.get(token)
        if token_data is None:
            self._record_denied()
            raise TokenNotFoundError()

        if token_data.is_expired(self.clock()):
            del self._tokens[token]
            self._record_denied()
            raise TokenExpiredError(token_data.object_id)

        if action not in token_data.permissions:
            self._record_denied()
            raise PermissionDeniedError(action, token_data.object_id)

        if (
            token_data.max_requests is not None
            and token_data.request_count >= token_data.max_requests
        ):
            self._record_denied()
            raise UsageLimitExceededError(token_data.max_requests, token_data.object_id)

        token_data.request_count += 1
        self.audit_logger.log_token_access(
            token=token,
            object_id=token_data.object_id,
            action=action,
            issuer_id=token_data.issuer_id,
            request_count=token_data.request_count,
        )
        return token_data

    def _record_denied(self) -> None:
        if self.metrics is not None:
            self.metrics.record_token_denied()

    async def revoke(
        self, token: str, reason: str = "manual_revocation"
    ) -> Dict[str, Any]:
        """
        Revoke a token.

        Returns:
            ``{"revoked": bool, "reason": str}``; revoked is False when the
            token was not registered
        """
        token_data = self._tokens.pop(token, None)
        if token_data is None:
            return {"revoked": False, "reason": reason}

        if self.metrics is not None:
            self.metrics.record_token_revoked()
        self.audit_logger.log_token_revoked(
            object_id=token_data.object_id,
            issuer_id=token_data.issuer_id,
            reason=reason,
            usage_count=token_data.request_count,
        )
        return {"revoked": True, "reason": reason}

    def purge_expired(self) -> int:
        """Evict expired tokens, returning how many were removed."""
        now = self.clock()
        expired = [t for t, data in self._tokens.items() if data.is_expired(now)]
        for token in expired:
            del self._tokens[token]
        if expired:
            logger.info(f"Purged {len(expired)} expired access token(s)")
        return len(expired)
