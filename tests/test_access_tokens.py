"""
Tests for scoped access tokens.
"""

from datetime import datetime, timedelta, timezone

import pytest

from retention_toolkit.access_tokens import AccessTokenManager, filter_permissions
from retention_toolkit.audit_trail import (
    ComplianceAuditLogger,
    MemoryAuditStorage,
    redact_token,
)
from retention_toolkit.config import RetentionConfig
from retention_toolkit.encryption import EncryptionManager, LocalKeyProvider
from retention_toolkit.exceptions import (
    PermissionDeniedError,
    TokenExpiredError,
    TokenNotFoundError,
    UnknownTierError,
    UsageLimitExceededError,
)
from retention_toolkit.metrics import SystemMetrics

START = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_manager(access=None):
    config = RetentionConfig.load(
        {
            "user_tiers": {
                "free": {
                    "retention_hours": 2,
                    "max_file_size": 1000,
                    "features": ["restricted_bandwidth"],
                },
                "pro": {
                    "retention_hours": 24,
                    "max_file_size": 1000,
                    "features": [
                        "modification_allowed",
                        "transcoding_allowed",
                        "unlimited_access",
                    ],
                },
            },
            "security": {"access": access or {"default_usage_cap": 2}},
            "compliance": {"frameworks": ["SOC2"]},
        }
    )
    audit = ComplianceAuditLogger(
        config,
        encryption=EncryptionManager(provider=LocalKeyProvider()),
        storage=MemoryAuditStorage(),
    )
    clock = FakeClock()
    metrics = SystemMetrics()
    return AccessTokenManager(config, audit, metrics=metrics, clock=clock), clock


class TestFilterPermissions:
    """Test tier-based permission filtering."""

    def test_modify_requires_feature(self):
        """Test modify is dropped on tiers without the feature."""
        manager, _ = make_manager()
        free = manager.config.get_tier("free")
        assert filter_permissions(["read", "modify"], free) == ["read"]

    def test_feature_tiers_and_unknown_permissions(self):
        """Test feature tiers keep their permissions and unknown ones are dropped."""
        manager, _ = make_manager()
        pro = manager.config.get_tier("pro")
        requested = ["read", "transcode", "modify", "delete", "read"]
        assert filter_permissions(requested, pro) == ["read", "transcode", "modify"]


class TestGenerateAccessToken:
    """Test token issuance."""

    @pytest.mark.asyncio
    async def test_issued_permissions_are_filtered(self):
        """Test the issued token only carries tier-allowed permissions."""
        manager, _ = make_manager()

        token = await manager.generate_access_token("obj-1", "free", ["read", "modify"])

        assert token.permissions == ["read"]
        assert token.expires_at == START + timedelta(minutes=30)
        assert token.max_requests == 2
        assert token.restrictions == {
            "bandwidth_limit": "10MB/s",
            "max_concurrent_access": 5,
        }
        assert manager.active_token_count == 1
        assert manager.metrics.tokens.generated == 1

    @pytest.mark.asyncio
    async def test_unlimited_access_and_ip_whitelist(self):
        """Test unlimited tiers have no usage cap."""
        manager, _ = make_manager(access={"ip_whitelist": ["10.0.0.1"]})

        token = await manager.generate_access_token("obj-1", "pro", ["read"])

        assert token.max_requests is None
        assert token.restrictions["ip_whitelist"] == ["10.0.0.1"]
        assert "bandwidth_limit" not in token.restrictions

    @pytest.mark.asyncio
    async def test_unknown_tier(self):
        """Test tokens are not issued for unknown tiers."""
        manager, _ = make_manager()
        with pytest.raises(UnknownTierError):
            await manager.generate_access_token("obj-1", "platinum")
        assert manager.active_token_count == 0

    @pytest.mark.asyncio
    async def test_issue_is_audited_without_token(self):
        """Test issuance is audited and the raw token never appears."""
        manager, _ = make_manager()
        token = await manager.generate_access_token("obj-1", "free", issuer_id="svc-a")

        entry = manager.audit_logger._buffer[-1]
        assert entry.event == "TOKEN_GENERATED"
        assert entry.payload["issuer_id"] == "svc-a"
        assert entry.payload["compliance_frameworks"] == ["SOC2"]
        assert token.token not in str(entry.payload)

    @pytest.mark.asyncio
    async def test_to_dict_redacts_token(self):
        """Test the serialized token is redacted."""
        manager, _ = make_manager()
        token = await manager.generate_access_token("obj-1", "free")

        data = token.to_dict()

        assert data["token"] == redact_token(token.token)
        assert token.token not in str(data)
        assert data["permissions"] == ["read"]


class TestValidateAccess:
    """Test token validation."""

    @pytest.mark.asyncio
    async def test_valid_access_counts_requests(self):
        """Test each successful validation increments the count."""
        manager, _ = make_manager()
        token = await manager.generate_access_token("obj-1", "free")

        data = await manager.validate_access(token.token, "read")

        assert data.request_count == 1
        assert data.object_id == "obj-1"

    @pytest.mark.asyncio
    async def test_usage_cap(self):
        """Test validation fails once the cap is reached."""
        manager, _ = make_manager()
        token = await manager.generate_access_token("obj-1", "free")

        await manager.validate_access(token.token, "read")
        await manager.validate_access(token.token, "read")
        with pytest.raises(UsageLimitExceededError) as exc_info:
            await manager.validate_access(token.token, "read")

        assert exc_info.value.limit == 2
        assert manager.metrics.tokens.denied == 1

    @pytest.mark.asyncio
    async def test_unlimited_tokens_have_no_cap(self):
        """Test unlimited tokens keep validating."""
        manager, _ = make_manager()
        token = await manager.generate_access_token("obj-1", "pro")

        for _ in range(10):
            data = await manager.validate_access(token.token, "read")

        assert data.request_count == 10

    @pytest.mark.asyncio
    async def test_permission_denied(self):
        """Test actions outside the granted set are denied."""
        manager, _ = make_manager()
        token = await manager.generate_access_token("obj-1", "free", ["read", "modify"])

        with pytest.raises(PermissionDeniedError) as exc_info:
            await manager.validate_access(token.token, "modify")

        assert exc_info.value.action == "modify"
        assert exc_info.value.object_id == "obj-1"

    @pytest.mark.asyncio
    async def test_unknown_token(self):
        """Test unknown tokens are rejected."""
        manager, _ = make_manager()
        with pytest.raises(TokenNotFoundError):
            await manager.validate_access("not-a-token", "read")

    @pytest.mark.asyncio
    async def test_expired_token_is_evicted(self):
        """Test expired tokens fail once and are then unknown."""
        manager, clock = make_manager()
        token = await manager.generate_access_token("obj-1", "free")

        clock.advance(minutes=31)

        with pytest.raises(TokenExpiredError):
            await manager.validate_access(token.token, "read")
        with pytest.raises(TokenNotFoundError):
            await manager.validate_access(token.token, "read")
        assert manager.active_token_count == 0

    @pytest.mark.asyncio
    async def test_access_is_audited_redacted(self):
        """Test access entries carry a redacted token."""
        manager, _ = make_manager()
        token = await manager.generate_access_token("obj-1", "free")

        await manager.validate_access(token.token, "read")

        entry = manager.audit_logger._buffer[-1]
        assert entry.event == "TOKEN_ACCESS"
        assert entry.payload["token"] == f"{token.token[:8]}..."
        assert entry.payload["request_count"] == 1


class TestRevoke:
    """Test token revocation and expiry purging."""

    @pytest.mark.asyncio
    async def test_revoke_known_token(self):
        """Test revocation removes the token."""
        manager, _ = make_manager()
        token = await manager.generate_access_token("obj-1", "free")
        await manager.validate_access(token.token, "read")

        result = await manager.revoke(token.token, "compromised")

        assert result == {"revoked": True, "reason": "compromised"}
        assert manager.metrics.tokens.revoked == 1
        entry = manager.audit_logger._buffer[-1]
        assert entry.event == "TOKEN_REVOKED"
        assert entry.payload["usage_count"] == 1
        with pytest.raises(TokenNotFoundError):
            await manager.validate_access(token.token, "read")

    @pytest.mark.asyncio
    async def test_revoke_unknown_token(self):
        """Test revoking an unknown token reports nothing revoked."""
        manager, _ = make_manager()

        result = await manager.revoke("missing")

        assert result == {"revoked": False, "reason": "manual_revocation"}
        assert manager.metrics.tokens.revoked == 0

    @pytest.mark.asyncio
    async def test_purge_expired(self):
        """Test purging only removes expired tokens."""
        manager, clock = make_manager()
        await manager.generate_access_token("obj-1", "free")
        clock.advance(minutes=20)
        fresh = await manager.generate_access_token("obj-2", "free")
        clock.advance(minutes=15)

        assert manager.purge_expired() == 1
        assert manager.active_token_count == 1
        assert (await manager.validate_access(fresh.token, "read")).object_id == "obj-2"
