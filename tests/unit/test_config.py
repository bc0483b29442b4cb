# ABOUTME: Unit tests for configuration management
# ABOUTME: Tests settings loading, validation, credentials and instance management

import os
from unittest.mock import patch

import pytest
from pydantic import SecretStr, ValidationError

from console_mcp.config import (
    ConsoleInstance,
    DeploySettings,
    SecuritySettings,
    ServerSettings,
    load_settings,
)


@pytest.mark.unit
class TestConsoleInstance:
    """Tests for ConsoleInstance configuration."""

    def test_url_validation_adds_https(self):
        """Test that URL without scheme gets https added."""
        instance = ConsoleInstance(url="console.example.com", token=SecretStr("test"))
        assert instance.url == "https://console.example.com"

    def test_url_validation_preserves_http(self):
        """Test that explicit http scheme is preserved."""
        instance = ConsoleInstance(url="http://console.local", token=SecretStr("test"))
        assert instance.url == "http://console.local"

    def test_url_validation_removes_trailing_slash(self):
        """Test that trailing slash is removed from URL."""
        instance = ConsoleInstance(url="https://console.example.com/", token=SecretStr("test"))
        assert instance.url == "https://console.example.com"

    def test_defaults(self):
        """Test default instance name, TLS and credentials."""
        instance = ConsoleInstance(url="https://console.example.com")
        assert instance.name == "default"
        assert instance.insecure is False
        assert instance.token.get_secret_value() == ""
        assert instance.client_id == ""

    def test_uses_client_credentials(self):
        """Test client credentials are used when no static token is set."""
        instance = ConsoleInstance(
            url="https://console.example.com",
            client_id="sa",
            client_secret=SecretStr("s3cr3t"),
        )
        assert instance.uses_client_credentials is True

    def test_static_token_wins_over_client_credentials(self):
        """Test a static token disables the client-credentials flow."""
        instance = ConsoleInstance(
            url="https://console.example.com",
            token=SecretStr("static"),
            client_id="sa",
            client_secret=SecretStr("s3cr3t"),
        )
        assert instance.uses_client_credentials is False

    def test_client_credentials_need_both_values(self):
        """Test a client id without a secret is not enough."""
        instance = ConsoleInstance(url="https://console.example.com", client_id="sa")
        assert instance.uses_client_credentials is False

    def test_secret_not_in_repr(self):
        """Test credentials are hidden from repr."""
        instance = ConsoleInstance(
            url="https://console.example.com",
            client_id="sa",
            client_secret=SecretStr("s3cr3t"),
        )
        assert "s3cr3t" not in repr(instance)


@pytest.mark.unit
class TestSecuritySettings:
    """Tests for SecuritySettings configuration."""

    def test_defaults(self):
        """Test default security settings."""
        with patch.dict(os.environ, {}, clear=True):
            settings = SecuritySettings()

        assert settings.read_only is True
        assert settings.audit_log is None
        assert settings.mask_secrets is True
        assert settings.rate_limit_calls == 100
        assert settings.rate_limit_window == 60

    def test_env_prefix(self):
        """Test environment variable prefix."""
        with patch.dict(os.environ, {"MCP_READ_ONLY": "false"}):
            settings = SecuritySettings()
            assert settings.read_only is False


@pytest.mark.unit
class TestDeploySettings:
    """Tests for DeploySettings configuration."""

    def test_defaults(self):
        """Test the default polling budget is 5 minutes every 5 seconds."""
        with patch.dict(os.environ, {}, clear=True):
            settings = DeploySettings()

        assert settings.timeout_ms == 300_000
        assert settings.interval_ms == 5_000

    def test_env_prefix(self):
        """Test environment variable prefix."""
        with patch.dict(
            os.environ, {"MCP_DEPLOY_TIMEOUT_MS": "60000", "MCP_DEPLOY_INTERVAL_MS": "250"}
        ):
            settings = DeploySettings()

        assert settings.timeout_ms == 60_000
        assert settings.interval_ms == 250

    def test_negative_values_rejected(self):
        """Test negative durations are invalid."""
        with pytest.raises(ValidationError):
            DeploySettings(timeout_ms=-1)


@pytest.mark.unit
class TestServerSettings:
    """Tests for ServerSettings configuration."""

    def test_primary_instance_from_fields(self):
        """Test primary instance created from console settings."""
        settings = ServerSettings(
            console_host="https://console.example.com",
            console_token=SecretStr("test-token"),
        )

        primary = settings.primary_instance
        assert primary is not None
        assert primary.url == "https://console.example.com"
        assert primary.name == "primary"
        assert primary.token.get_secret_value() == "test-token"

    def test_primary_instance_from_env(self):
        """Test primary instance reads the unprefixed console variables."""
        env = {
            "CONSOLE_HOST": "console.example.com",
            "MIA_PLATFORM_CLIENT_ID": "sa",
            "MIA_PLATFORM_CLIENT_SECRET": "s3cr3t",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = ServerSettings()

        primary = settings.primary_instance
        assert primary is not None
        assert primary.url == "https://console.example.com"
        assert primary.uses_client_credentials is True
        assert primary.client_secret.get_secret_value() == "s3cr3t"

    def test_primary_instance_none_when_no_url(self):
        """Test primary instance is None when URL not set."""
        with patch.dict(os.environ, {}, clear=True):
            settings = ServerSettings()
        assert settings.primary_instance is None
        assert settings.all_instances == []

    def test_all_instances(self):
        """Test all_instances property."""
        additional = ConsoleInstance(
            url="https://console-eu.example.com",
            token=SecretStr("eu-token"),
            name="eu",
        )
        settings = ServerSettings(
            console_host="https://console.example.com",
            console_token=SecretStr("test-token"),
            additional_instances=[additional],
        )

        instances = settings.all_instances
        assert len(instances) == 2
        assert instances[0].name == "primary"
        assert instances[1].name == "eu"

    def test_get_instance_by_name(self):
        """Test getting instance by name."""
        settings = ServerSettings(
            console_host="https://console.example.com",
            console_token=SecretStr("test-token"),
        )

        instance = settings.get_instance("primary")
        assert instance is not None
        assert instance.name == "primary"

    def test_get_instance_not_found(self):
        """Test getting non-existent instance."""
        with patch.dict(os.environ, {}, clear=True):
            settings = ServerSettings()
        assert settings.get_instance("nonexistent") is None

    def test_defaults(self):
        """Test default log level, server name and nested settings."""
        with patch.dict(os.environ, {}, clear=True):
            settings = ServerSettings()

        assert settings.log_level == "INFO"
        assert settings.server_name == "console-mcp"
        assert settings.security.read_only is True
        assert settings.deploy.timeout_ms == 300_000

    def test_invalid_log_level_rejected(self):
        """Test log level must be a known level name."""
        with pytest.raises(ValidationError):
            ServerSettings(log_level="VERBOSE")


@pytest.mark.unit
class TestLoadSettings:
    """Tests for load_settings."""

    def test_reads_env_file(self, tmp_path):
        """Test CONSOLE_MCP_ENV_FILE points at an extra .env file."""
        env_file = tmp_path / "console.env"
        env_file.write_text("CONSOLE_HOST=https://console.example.com\nCONSOLE_TOKEN=from-file\n")

        with patch.dict(os.environ, {"CONSOLE_MCP_ENV_FILE": str(env_file)}, clear=True):
            settings = load_settings()

        assert settings.console_host == "https://console.example.com"
        assert settings.console_token.get_secret_value() == "from-file"
