"""
Tests for built-in configuration profiles.
"""

import pytest

from retention_toolkit.config import CipherAlgorithm, ComplianceAuditLevel, KMSProvider
from retention_toolkit.exceptions import ConfigurationError
from retention_toolkit.profiles import PROFILES, get_profile


class TestProfiles:
    """Test profile loading and overrides."""

    @pytest.mark.parametrize("name", sorted(PROFILES))
    def test_profile_loads(self, name):
        """Test every profile validates."""
        config = get_profile(name)
        assert config.user_tiers
        assert config.compliance.frameworks

    def test_government_profile(self):
        """Test government settings."""
        config = get_profile("government")

        assert config.security.encryption.require_hsm
        assert config.security.encryption.kms_provider == KMSProvider.HSM
        assert config.compliance.audit_level == ComplianceAuditLevel.FORENSIC
        assert config.overwrite_passes_for("secret") == 7
        assert config.get_tier("top_secret").has_feature("immediate_post_signal_deletion")
        assert config.queue.retry_policy.max_retries == 5

    def test_enterprise_profile(self):
        """Test enterprise tiers and frameworks."""
        config = get_profile("enterprise")

        assert list(config.user_tiers) == ["free", "pro", "enterprise"]
        assert config.compliance.frameworks == ["GDPR"]
        assert config.security.encryption.algorithm == CipherAlgorithm.AES_256_GCM
        assert config.get_tier("enterprise").has_feature("unlimited_access")

    def test_overrides_deep_merge(self):
        """Test overrides replace leaves and keep sibling settings."""
        config = get_profile(
            "healthcare",
            {
                "security": {
                    "encryption": {
                        "kms_config": {"vault_url": "https://hsm.example.net/"}
                    },
                    "deletion": {"overwrite_passes": 5},
                },
                "node_id": "clinic-1",
            },
        )

        assert config.node_id == "clinic-1"
        assert config.security.deletion.overwrite_passes == 5
        assert config.security.deletion.audit_retention_days == 2190
        assert config.security.encryption.require_hsm
        assert config.security.encryption.kms_config["vault_url"] == (
            "https://hsm.example.net/"
        )

    def test_profile_builders_are_independent(self):
        """Test overrides never leak into later profile loads."""
        get_profile("enterprise", {"compliance": {"frameworks": ["HIPAA"]}})
        assert get_profile("enterprise").compliance.frameworks == ["GDPR"]

    def test_unknown_profile(self):
        """Test unknown profile names."""
        with pytest.raises(ConfigurationError, match="Unknown profile: banking"):
            get_profile("banking")

    def test_invalid_override(self):
        """Test overrides are validated."""
        with pytest.raises(ConfigurationError):
            get_profile("enterprise", {"security": {"deletion": {"overwrite_passes": 0}}})
