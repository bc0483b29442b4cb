# ABOUTME: Pytest fixtures and configuration for Console MCP Server tests
# ABOUTME: Provides shared fixtures for unit and integration tests

import os
from typing import Any, AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from console_mcp.config import ConsoleInstance, DeploySettings, SecuritySettings, ServerSettings
from console_mcp.utils.client import ConsoleClient
from console_mcp.utils.safety import SafetyGuard


@pytest.fixture
def mock_console_instance() -> ConsoleInstance:
    """Create a console instance configuration with a static token."""
    return ConsoleInstance(
        url="https://console.example.com",
        token=SecretStr("test-token"),
        name="test",
        insecure=True,
    )


@pytest.fixture
def client_credentials_instance() -> ConsoleInstance:
    """Create a console instance authenticating with a service account."""
    return ConsoleInstance(
        url="https://console.example.com",
        client_id="test-client",
        client_secret=SecretStr("test-secret"),
        name="sa",
    )


@pytest.fixture
def mock_security_settings() -> SecuritySettings:
    """Create security settings for testing."""
    return SecuritySettings(
        read_only=False,
        audit_log=None,
        mask_secrets=True,
        rate_limit_calls=100,
        rate_limit_window=60,
    )


@pytest.fixture
def read_only_security_settings() -> SecuritySettings:
    """Create read-only security settings for testing."""
    return SecuritySettings(
        read_only=True,
        audit_log=None,
        mask_secrets=True,
        rate_limit_calls=100,
        rate_limit_window=60,
    )


@pytest.fixture
def mock_server_settings(
    mock_console_instance: ConsoleInstance,
    mock_security_settings: SecuritySettings,
) -> ServerSettings:
    """Create mock server settings with a fast deploy polling budget."""
    return ServerSettings(
        console_host=mock_console_instance.url,
        console_token=mock_console_instance.token,
        console_insecure=mock_console_instance.insecure,
        security=mock_security_settings,
        deploy=DeploySettings(timeout_ms=1000, interval_ms=0),
    )


@pytest.fixture
def safety_guard(mock_security_settings: SecuritySettings) -> SafetyGuard:
    """Create a safety guard for testing."""
    return SafetyGuard(mock_security_settings)


@pytest.fixture
def read_only_safety_guard(read_only_security_settings: SecuritySettings) -> SafetyGuard:
    """Create a read-only safety guard for testing."""
    return SafetyGuard(read_only_security_settings)


@pytest.fixture
def sample_configuration() -> dict[str, Any]:
    """A revision configuration as returned by the console."""
    return {
        "commitId": "abc123",
        "services": {
            "api-gateway": {
                "name": "api-gateway",
                "type": "custom",
                "advanced": False,
                "sourceComponentId": "api-gateway",
            },
        },
        "endpoints": {
            "/orders": {"basePath": "/orders", "type": "custom", "service": "orders"},
        },
        "collections": {},
        "configMaps": {
            "gateway-config": {"name": "gateway-config", "files": []},
        },
        "serviceSecrets": {
            "db-credentials": {"name": "db-credentials", "password": "hunter2"},
        },
        "fastDataConfig": {"castFunctions": {}},
        "microfrontendPluginsConfig": {"plugins": []},
        "extensionsConfig": {"files": {"ext.json": "{}"}},
        "platformVersion": "14.0.0",
    }


@pytest.fixture
def mock_console_client(
    mock_console_instance: ConsoleInstance,
    sample_configuration: dict[str, Any],
) -> AsyncMock:
    """Create a mock console client."""
    client = AsyncMock(spec=ConsoleClient)
    client._instance = mock_console_instance

    # Configure default responses
    client.mask_response.side_effect = lambda data: data
    client.get_feature_toggles.return_value = {}
    client.get_revision_configuration.return_value = sample_configuration
    client.save_revision_configuration.return_value = {"id": "def456", "upgraded": False}
    client.get_environment_configuration.return_value = sample_configuration
    client.save_environment_configuration.return_value = {"id": "env789"}
    client.list_revisions.return_value = [{"name": "main"}, {"name": "feature-x"}]
    client.list_versions.return_value = [{"name": "v1.0.0"}]
    client.trigger_deploy.return_value = {
        "id": "4242",
        "url": "https://git.example.com/prj/-/pipelines/4242",
    }
    client.compare_for_deploy.return_value = {
        "services": {"orders": {"before": "1.0.0", "after": "1.1.0"}},
    }
    client.get_pipeline_status.return_value = {"id": "4242", "status": "success"}

    return client


@pytest.fixture
def mock_context() -> MagicMock:
    """Create a mock MCP context."""
    ctx = MagicMock()
    ctx.request_id = "test-request-123"
    ctx.report_progress = AsyncMock()
    return ctx


# Integration test fixtures


@pytest.fixture
def console_host() -> str | None:
    """Get console URL from environment."""
    return os.environ.get("CONSOLE_HOST")


@pytest.fixture
def console_project_id() -> str | None:
    """Get the project to read from during integration tests."""
    return os.environ.get("CONSOLE_TEST_PROJECT_ID")


@pytest.fixture
async def live_console_client(console_host: str | None) -> AsyncIterator[ConsoleClient | None]:
    """Create a live console client for integration tests."""
    if not console_host:
        yield None
        return

    instance = ConsoleInstance(
        url=console_host,
        token=SecretStr(os.environ.get("CONSOLE_TOKEN", "")),
        client_id=os.environ.get("MIA_PLATFORM_CLIENT_ID", ""),
        client_secret=SecretStr(os.environ.get("MIA_PLATFORM_CLIENT_SECRET", "")),
        name="integration-test",
        insecure=os.environ.get("CONSOLE_INSECURE", "false").lower() == "true",
    )
    client = ConsoleClient(instance)

    async with client:
        yield client
