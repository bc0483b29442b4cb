# ABOUTME: Configuration management for Console MCP Server
# ABOUTME: Handles environment variables, security mode, deploy polling and multi-instance settings

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module handles all configuration for the MCP server. It:

1. READS environment variables (like CONSOLE_HOST, MCP_READ_ONLY)
2. VALIDATES them (URLs get a scheme, booleans are booleans, etc.)
3. PROVIDES typed access to settings throughout the application

=============================================================================
ARCHITECTURE: FOUR CONFIGURATION CLASSES
=============================================================================

1. ConsoleInstance: Configuration for ONE console installation
   - URL, credentials (static token or client credentials), name, TLS

2. SecuritySettings: Security-related settings (MCP_* prefix)
   - Read-only mode, audit log, secret masking, rate limiting

3. DeploySettings: Pipeline polling budget (MCP_DEPLOY_* prefix)
   - How long to wait for a deploy and how often to ask

4. ServerSettings: Main configuration container
   - Primary console from environment
   - Additional instances for multi-console setups
   - Log level, server name, nested security and deploy settings

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

Primary console instance:
    CONSOLE_HOST                -> Console base URL
    CONSOLE_TOKEN               -> Static bearer token (optional)
    MIA_PLATFORM_CLIENT_ID      -> Service account client id (optional)
    MIA_PLATFORM_CLIENT_SECRET  -> Service account client secret (optional)
    CONSOLE_INSECURE            -> Skip TLS certificate verification

Security settings (MCP_ prefix):
    MCP_READ_ONLY           -> Block configuration saves and deploys (default: true)
    MCP_AUDIT_LOG           -> Path to audit log file
    MCP_MASK_SECRETS        -> Mask sensitive data in output (default: true)
    MCP_RATE_LIMIT_CALLS    -> Max API calls per window (default: 100)
    MCP_RATE_LIMIT_WINDOW   -> Rate limit window in seconds (default: 60)

Deploy polling (MCP_DEPLOY_ prefix):
    MCP_DEPLOY_TIMEOUT_MS   -> Give up waiting after this long (default: 300000)
    MCP_DEPLOY_INTERVAL_MS  -> Pause between status polls (default: 5000)
"""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# CONSOLE INSTANCE CONFIGURATION
# =============================================================================


class ConsoleInstance(BaseModel):
    """
    Configuration for a single console installation.

    CREDENTIALS:
    ------------
    Two ways to authenticate, checked in this order:

    1. token: a ready-made bearer token, sent as-is on every request
    2. client_id + client_secret: a service account; the client exchanges
       them for a short-lived token at /api/m2m/oauth/token and refreshes it
       shortly before it expires

    USAGE EXAMPLE:
    --------------
        instance = ConsoleInstance(
            url="https://console.example.com",
            client_id="my-sa",
            client_secret=SecretStr("s3cr3t"),
            name="production",
        )
    """

    model_config = {"extra": "ignore"}

    url: str = Field(description="Console base URL")

    token: SecretStr = Field(default=SecretStr(""), description="Static bearer token")

    client_id: str = Field(default="", description="Service account client id")

    client_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Service account client secret",
    )
    # SecretStr keeps the value out of logs and repr; read it with get_secret_value()

    name: str = Field(default="default", description="Instance identifier")

    insecure: bool = Field(default=False, description="Skip TLS verification")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """
        Ensure URL has a scheme and no trailing slash.

        "console.example.com"   -> "https://console.example.com"
        "https://example.com/"  -> "https://example.com"

        API paths all start with "/", so a trailing slash here would produce
        "//api/..." once they are joined.
        """
        if not v.startswith(("http://", "https://")):
            v = f"https://{v}"
        return v.rstrip("/")

    @property
    def uses_client_credentials(self) -> bool:
        """True when requests must be authenticated through the M2M token flow."""
        return not self.token.get_secret_value() and bool(
            self.client_id and self.client_secret.get_secret_value()
        )


# =============================================================================
# SECURITY SETTINGS
# =============================================================================


class SecuritySettings(BaseSettings):
    """
    Security-related configuration.

    Layer 1: MCP_READ_ONLY=true (default)
        - Blocks every tool that writes: configuration saves, endpoint
          creation, deploy triggers
        - The agent can still read configuration and watch pipelines

    Layer 2: Rate limiting (MCP_RATE_LIMIT_*)
        - Keeps a looping agent from hammering the console backend
    """

    model_config = SettingsConfigDict(env_prefix="MCP_")

    read_only: bool = Field(
        default=True,
        description="Block all write operations when true",
    )

    audit_log: Path | None = Field(
        default=None,
        description="Path to audit log file",
    )
    # When set, each audited operation is appended as one JSON line.
    # When None, audit entries go through structlog to stderr.

    mask_secrets: bool = Field(
        default=True,
        description="Mask sensitive values in output",
    )

    rate_limit_calls: int = Field(
        default=100,
        description="Maximum API calls per window",
    )

    rate_limit_window: int = Field(
        default=60,
        description="Rate limit window in seconds",
    )


# =============================================================================
# DEPLOY POLLING SETTINGS
# =============================================================================


class DeploySettings(BaseSettings):
    """
    Polling budget for deploy pipelines.

    The defaults give a 5-minute wall-clock budget with a status request every
    5 seconds: at most ~60 polls before the wait gives up. Both values are in
    milliseconds, the unit the console reports durations in.
    """

    model_config = SettingsConfigDict(env_prefix="MCP_DEPLOY_")

    timeout_ms: int = Field(
        default=5 * 60 * 1000,
        ge=0,
        description="Maximum time to wait for a pipeline to finish",
    )

    interval_ms: int = Field(
        default=5000,
        ge=0,
        description="Pause between two pipeline status polls",
    )


# =============================================================================
# MAIN SERVER SETTINGS
# =============================================================================


class ServerSettings(BaseSettings):
    """
    Main server configuration.

    USAGE:
    ------
        settings = load_settings()
        print(settings.console_host)          # Primary console URL
        print(settings.security.read_only)    # Security setting
        print(settings.deploy.timeout_ms)     # Deploy polling budget
    """

    model_config = SettingsConfigDict(
        env_prefix="CONSOLE_MCP_",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # PRIMARY CONSOLE INSTANCE (from environment)
    # -------------------------------------------------------------------------

    console_host: str = Field(
        default="",
        validation_alias="CONSOLE_HOST",
        description="Primary console base URL",
    )

    console_token: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="CONSOLE_TOKEN",
        description="Primary console bearer token",
    )

    client_id: str = Field(
        default="",
        validation_alias="MIA_PLATFORM_CLIENT_ID",
        description="Service account client id for the primary console",
    )

    client_secret: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="MIA_PLATFORM_CLIENT_SECRET",
        description="Service account client secret for the primary console",
    )

    console_insecure: bool = Field(
        default=False,
        validation_alias="CONSOLE_INSECURE",
        description="Skip TLS verification for primary instance",
    )

    # -------------------------------------------------------------------------
    # MULTI-INSTANCE SUPPORT
    # -------------------------------------------------------------------------

    additional_instances: list[ConsoleInstance] = Field(
        default_factory=list,
        description="Additional console instances",
    )
    # JSON array in CONSOLE_MCP_ADDITIONAL_INSTANCES

    # -------------------------------------------------------------------------
    # SERVER METADATA
    # -------------------------------------------------------------------------

    server_name: str = Field(
        default="console-mcp",
        description="MCP server name",
    )

    server_version: str = Field(
        default="0.1.0",
        description="MCP server version",
    )

    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )

    # -------------------------------------------------------------------------
    # NESTED SETTINGS
    # -------------------------------------------------------------------------

    security: SecuritySettings = Field(default_factory=SecuritySettings)

    deploy: DeploySettings = Field(default_factory=DeploySettings)

    @property
    def primary_instance(self) -> ConsoleInstance | None:
        """
        Primary console instance built from environment variables.

        Returns None if CONSOLE_HOST is not set.
        """
        if not self.console_host:
            return None
        return ConsoleInstance(
            url=self.console_host,
            token=self.console_token,
            client_id=self.client_id,
            client_secret=self.client_secret,
            name="primary",
            insecure=self.console_insecure,
        )

    @property
    def all_instances(self) -> list[ConsoleInstance]:
        """Primary instance (if configured) followed by additional_instances."""
        instances = []
        if self.primary_instance:
            instances.append(self.primary_instance)
        instances.extend(self.additional_instances)
        return instances

    def get_instance(self, name: str = "primary") -> ConsoleInstance | None:
        """Find a configured instance by name, or None."""
        for instance in self.all_instances:
            if instance.name == name:
                return instance
        return None


# =============================================================================
# SETTINGS LOADER
# =============================================================================


def load_settings() -> ServerSettings:
    """
    Load settings from environment with validation.

    If CONSOLE_MCP_ENV_FILE is set, variables are also read from that file.

    Example .env file:
        CONSOLE_HOST=https://console.example.com
        MIA_PLATFORM_CLIENT_ID=my-service-account
        MIA_PLATFORM_CLIENT_SECRET=very-secret
        MCP_READ_ONLY=false

    Raises:
        pydantic.ValidationError: If configuration is invalid.
    """
    return ServerSettings(
        _env_file=os.environ.get("CONSOLE_MCP_ENV_FILE"),
    )
