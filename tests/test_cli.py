"""
Tests for the Retention Toolkit CLI.
"""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from retention_toolkit.cli import cli
from retention_toolkit.exceptions import ConfigurationError


@pytest.fixture
def runner():
    """Create a CLI runner."""
    return CliRunner()


@pytest.fixture
def local_config_file(tmp_path):
    """Create a configuration file using the local key provider."""
    path = tmp_path / "retention.json"
    path.write_text(
        json.dumps(
            {
                "application_name": "Test Retention",
                "user_tiers": {
                    "demo": {"retention_hours": 1, "max_file_size": 1000}
                },
                "security": {"encryption": {"kms_provider": "local"}},
            }
        )
    )
    return str(path)


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_cli_help(self, runner):
        """Test CLI help command."""
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Retention Toolkit" in result.output
        assert "secure deletion" in result.output.lower()

    def test_cli_version(self, runner):
        """Test CLI version command."""
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "version" in result.output.lower()

    def test_cli_no_command(self, runner):
        """Test CLI with no command shows info."""
        result = runner.invoke(cli, [])
        assert result.exit_code == 0
        assert "Retention Toolkit" in result.output

    def test_invalid_command(self, runner):
        """Test unknown commands fail."""
        result = runner.invoke(cli, ["shred-everything"])
        assert result.exit_code != 0


class TestConfigCommands:
    """Test configuration-related commands."""

    def test_config_show_table(self, runner, local_config_file):
        """Test config show as a table."""
        result = runner.invoke(cli, ["config", "show", "--config", local_config_file])
        assert result.exit_code == 0
        assert "Retention Configuration" in result.output
        assert "Test Retention" in result.output

    def test_config_show_json(self, runner):
        """Test config show with JSON format."""
        result = runner.invoke(
            cli, ["config", "show", "--profile", "enterprise", "--format", "json"]
        )
        assert result.exit_code == 0
        assert '"frameworks"' in result.output
        assert '"GDPR"' in result.output

    def test_config_show_yaml(self, runner):
        """Test config show with YAML format."""
        result = runner.invoke(
            cli, ["config", "show", "--profile", "government", "--format", "yaml"]
        )
        assert result.exit_code == 0
        assert "audit_level: forensic" in result.output

    def test_config_show_error(self, runner):
        """Test configuration errors exit non-zero."""
        with patch(
            "retention_toolkit.cli.get_config",
            side_effect=ConfigurationError("Invalid configuration: boom"),
        ):
            result = runner.invoke(cli, ["config", "show"])
        assert result.exit_code == 1
        assert "Error loading configuration" in result.output

    def test_config_validate_success(self, runner, local_config_file):
        """Test a usable configuration validates with warnings."""
        result = runner.invoke(
            cli, ["config", "validate", "--config", local_config_file]
        )
        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
        assert "In-memory queue" in result.output

    def test_config_validate_missing_vault(self, runner):
        """Test remote key providers without a vault URL fail validation."""
        result = runner.invoke(cli, ["config", "validate", "--profile", "enterprise"])
        assert result.exit_code == 1
        assert "vault_url" in result.output

    def test_config_missing_file(self, runner, tmp_path):
        """Test a missing configuration file is rejected by click."""
        result = runner.invoke(
            cli, ["config", "show", "--config", str(tmp_path / "missing.json")]
        )
        assert result.exit_code == 2


class TestListingCommands:
    """Test tier and profile listings."""

    def test_tiers(self, runner):
        """Test tiers of a profile are listed."""
        result = runner.invoke(cli, ["tiers", "--profile", "government"])
        assert result.exit_code == 0
        assert "User Tiers" in result.output
        assert "top_secret" in result.output

    def test_profiles(self, runner):
        """Test built-in profiles are listed."""
        result = runner.invoke(cli, ["profiles"])
        assert result.exit_code == 0
        for name in ("government", "enterprise", "healthcare"):
            assert name in result.output


class TestComplianceCheck:
    """Test the compliance check command."""

    def test_approved(self, runner):
        """Test an approved deletion exits zero and prints the hash."""
        result = runner.invoke(
            cli, ["compliance", "check", "free", "--profile", "enterprise"]
        )
        assert result.exit_code == 0
        assert "approved" in result.output
        assert "Approval hash" in result.output

    def test_rejected(self, runner):
        """Test a rejected deletion exits non-zero."""
        result = runner.invoke(
            cli,
            ["compliance", "check", "free", "--profile", "enterprise", "--method", "manual"],
        )
        assert result.exit_code == 1
        assert "rejected" in result.output

    def test_unknown_tier(self, runner):
        """Test unknown tiers are reported."""
        result = runner.invoke(
            cli, ["compliance", "check", "platinum", "--profile", "enterprise"]
        )
        assert result.exit_code == 1
        assert "Unknown user tier" in result.output


class TestDoctor:
    """Test deployment diagnostics."""

    def test_doctor_healthy(self, runner, local_config_file):
        """Test diagnostics pass for a local in-memory deployment."""
        result = runner.invoke(cli, ["doctor", "--config", local_config_file])
        assert result.exit_code == 0
        assert "All systems operational" in result.output

    def test_doctor_reports_key_provider(self, runner):
        """Test diagnostics fail without a usable key provider."""
        result = runner.invoke(cli, ["doctor", "--profile", "enterprise"])
        assert result.exit_code == 1
        assert "Key provider error" in result.output
        assert "Checks failed" in result.output
