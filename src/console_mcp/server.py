# ABOUTME: FastMCP server initialization and main entry point
# ABOUTME: Exposes console configuration and deploy tools with lifecycle management

"""Console MCP Server - configuration and deploy operations for console projects."""

from __future__ import annotations

import json
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Literal

import httpx
import structlog
from mcp.server.fastmcp import Context, FastMCP
from pydantic import BaseModel, Field, field_validator

from console_mcp.config import ServerSettings, load_settings
from console_mcp.configuration import (
    ConfigurationMerger,
    ResourcesToCreate,
    resolve_configuration_store,
)
from console_mcp.deploy import DeployPipelineWatcher, TriggerDeployResponse
from console_mcp.endpoints import build_endpoint
from console_mcp.errors import ConsoleError, PipelineTimeoutError, ServiceAlreadyExistsError
from console_mcp.utils.client import ConsoleClient
from console_mcp.utils.logging import (
    AuditLogger,
    audit_target,
    configure_logging,
    set_correlation_id,
)
from console_mcp.utils.safety import SafetyGuard

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

MCPContext = Context[Any, Any]
logger = structlog.get_logger(__name__)

# Failures reported back to the agent as text. httpx.HTTPError covers transport
# failures still standing after the client's own retries.
CONSOLE_ERRORS = (ConsoleError, httpx.HTTPError)

# Global state (initialized in lifespan)
_settings: ServerSettings | None = None
_clients: dict[str, ConsoleClient] = {}
_safety_guard: SafetyGuard | None = None
_audit_logger: AuditLogger | None = None


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Manage server lifecycle: load config, open console clients, close them on shutdown."""
    global _settings, _clients, _safety_guard, _audit_logger

    logger.info("Starting Console MCP Server")

    _settings = load_settings()
    configure_logging(level=_settings.log_level)
    _safety_guard = SafetyGuard(_settings.security)
    _audit_logger = AuditLogger(_settings.security.audit_log)
    logger.info(
        "Settings loaded",
        server=_settings.server_name,
        version=_settings.server_version,
        read_only=_settings.security.read_only,
    )

    if not _settings.all_instances:
        logger.warning("No console instance configured; set CONSOLE_HOST")

    for instance in _settings.all_instances:
        client = ConsoleClient(instance=instance, mask_secrets=_settings.security.mask_secrets)
        await client.__aenter__()
        _clients[instance.name] = client
        logger.info(
            "Connected to console instance",
            instance=instance.name,
            url=instance.url,
            client_credentials=instance.uses_client_credentials,
        )

    yield {"settings": _settings, "clients": _clients}

    for name, client in _clients.items():
        await client.__aexit__(None, None, None)
        logger.info("Disconnected from console instance", instance=name)

    _clients.clear()
    logger.info("Console MCP Server stopped")


mcp = FastMCP("console-mcp", lifespan=lifespan)


def get_client(instance: str = "primary") -> ConsoleClient:
    """Get console client for specified instance."""
    if instance not in _clients:
        available = list(_clients.keys())
        raise ValueError(f"Unknown instance '{instance}'. Available: {available}")
    return _clients[instance]


def get_settings() -> ServerSettings:
    """Get server settings."""
    if not _settings:
        raise RuntimeError("Server not initialized")
    return _settings


def get_safety_guard() -> SafetyGuard:
    """Get safety guard for permission checking."""
    if not _safety_guard:
        raise RuntimeError("Server not initialized")
    return _safety_guard


def get_audit_logger() -> AuditLogger:
    """Get audit logger for recording operations."""
    if not _audit_logger:
        raise RuntimeError("Server not initialized")
    return _audit_logger


def _format_json(data: Any) -> str:
    return json.dumps(data, indent=2, sort_keys=True, default=str)


def _ref_name(item: Any) -> str:
    if isinstance(item, dict):
        return str(item.get("name", item))
    return str(item)


# =============================================================================
# CONFIGURATION: Read Operations
# =============================================================================


class ListConfigurationRevisionsParams(BaseModel):
    """Parameters for list_configuration_revisions tool."""

    project_id: str = Field(description="Console project id")
    instance: str = Field(default="primary", description="Console instance name")


@mcp.tool()
async def list_configuration_revisions(
    params: ListConfigurationRevisionsParams, ctx: MCPContext
) -> str:
    """
    List the revisions and versions of a project.

    Revisions are the editable branches of a project's configuration;
    versions are tagged, immutable snapshots. Either name can be used as
    ref_id in get_configuration, save_configuration and deploy_project.
    """
    set_correlation_id(str(ctx.request_id) if hasattr(ctx, "request_id") else "")
    target = audit_target(params.project_id)

    blocked = get_safety_guard().check_read_operation("list_configuration_revisions")
    if blocked:
        get_audit_logger().log_blocked("list_configuration_revisions", target, blocked.reason)
        return blocked.format_message()

    try:
        client = get_client(params.instance)
        revisions = await client.list_revisions(params.project_id)
        versions = await client.list_versions(params.project_id)

        get_audit_logger().log_read("list_configuration_revisions", target)

        lines = [f"Revisions ({len(revisions)}):"]
        lines.extend(f"- {_ref_name(r)}" for r in revisions)
        lines.append("")
        lines.append(f"Versions ({len(versions)}):")
        lines.extend(f"- {_ref_name(v)}" for v in versions)
        return "\n".join(lines)

    except CONSOLE_ERRORS as e:
        get_audit_logger().log_error("list_configuration_revisions", target, str(e))
        return f"Error fetching revisions or versions: {e}"


class GetConfigurationParams(BaseModel):
    """Parameters for get_configuration tool."""

    project_id: str = Field(description="Console project id")
    ref_id: str = Field(
        description="Revision, version or (for environment-based projects) environment id"
    )
    instance: str = Field(default="primary", description="Console instance name")


@mcp.tool()
async def get_configuration(params: GetConfigurationParams, ctx: MCPContext) -> str:
    """
    Get the full configuration of a project at a revision, version or environment.

    The result holds every resource of the project (services, endpoints,
    collections, config maps, ...) plus the commitId the configuration was
    read at. Secret values are masked.
    """
    set_correlation_id(str(ctx.request_id) if hasattr(ctx, "request_id") else "")
    target = audit_target(params.project_id, params.ref_id)

    blocked = get_safety_guard().check_read_operation("get_configuration")
    if blocked:
        get_audit_logger().log_blocked("get_configuration", target, blocked.reason)
        return blocked.format_message()

    try:
        client = get_client(params.instance)
        store = await resolve_configuration_store(client, params.project_id)
        config = await ConfigurationMerger(store).get_configuration(
            params.project_id, params.ref_id
        )

        get_audit_logger().log_read("get_configuration", target)
        return _format_json(client.mask_response(config))

    except CONSOLE_ERRORS as e:
        get_audit_logger().log_error("get_configuration", target, str(e))
        return f"Error fetching configuration: {e}"


# =============================================================================
# CONFIGURATION: Write Operations (require MCP_READ_ONLY=false)
# =============================================================================


ResourceMap = dict[str, dict[str, Any]]


class SaveConfigurationParams(BaseModel):
    """Parameters for save_configuration tool."""

    project_id: str = Field(description="Console project id")
    ref_id: str = Field(
        description="Revision or (for environment-based projects) environment id to save on"
    )
    services: ResourceMap | None = Field(default=None, description="Services by name")
    service_accounts: ResourceMap | None = Field(
        default=None, description="Service accounts by name"
    )
    config_maps: ResourceMap | None = Field(default=None, description="Config maps by name")
    service_secrets: ResourceMap | None = Field(
        default=None, description="Service secrets by name"
    )
    listeners: ResourceMap | None = Field(default=None, description="Listeners by name")
    endpoints: ResourceMap | None = Field(default=None, description="Endpoints by base path")
    collections: ResourceMap | None = Field(default=None, description="CRUD collections by name")
    throw_if_service_already_exists: bool = Field(
        default=False,
        description="Refuse to save if one of the services already exists",
    )
    instance: str = Field(default="primary", description="Console instance name")

    def to_resources(self) -> ResourcesToCreate:
        return ResourcesToCreate(
            services=self.services,
            service_accounts=self.service_accounts,
            config_maps=self.config_maps,
            service_secrets=self.service_secrets,
            listeners=self.listeners,
            endpoints=self.endpoints,
            collections=self.collections,
        )


@mcp.tool()
async def save_configuration(params: SaveConfigurationParams, ctx: MCPContext) -> str:
    """
    Add resources to a project configuration and save it.

    The current configuration is read, the given resources are merged in
    (entries with an existing name replace the old entry) and the result is
    saved as a new commit. Nothing is deleted. Set
    throw_if_service_already_exists=true to refuse overwriting services.
    """
    set_correlation_id(str(ctx.request_id) if hasattr(ctx, "request_id") else "")
    target = audit_target(params.project_id, params.ref_id)

    blocked = get_safety_guard().check_write_operation("save_configuration")
    if blocked:
        get_audit_logger().log_blocked("save_configuration", target, blocked.reason)
        return blocked.format_message()

    resources = params.to_resources()

    try:
        client = get_client(params.instance)

        await ctx.report_progress(0, 2, f"Reading configuration of {target}")
        store = await resolve_configuration_store(client, params.project_id)
        saved = await ConfigurationMerger(store).save_configuration(
            params.project_id,
            params.ref_id,
            resources,
            throw_if_service_already_exists=params.throw_if_service_already_exists,
        )
        await ctx.report_progress(2, 2, "Configuration saved")

        kinds = [kind for kind, items in resources.as_wire_items() if items]
        get_audit_logger().log_write(
            "save_configuration",
            target,
            "saved",
            {"commit_id": saved.id, "kinds": kinds},
        )
        return (
            "Configuration saved successfully.\n"
            f"Commit: {saved.id}\n"
            f"Updated: {', '.join(kinds) or 'nothing'}"
        )

    except ServiceAlreadyExistsError as e:
        get_audit_logger().log_error("save_configuration", target, str(e))
        return f"Error saving configuration: {e}. Nothing was saved."
    except CONSOLE_ERRORS as e:
        get_audit_logger().log_error("save_configuration", target, str(e))
        return f"Error saving configuration: {e}"


class CreateEndpointParams(BaseModel):
    """Parameters for create_endpoint tool."""

    project_id: str = Field(description="Console project id")
    ref_id: str = Field(description="Revision or environment id to save on")
    endpoint_type: Literal["custom", "crud"] = Field(
        default="custom",
        description="custom: route to a microservice; crud: expose a CRUD collection",
    )
    name: str = Field(description="Endpoint path segment; the endpoint is exposed at /{name}")
    target: str = Field(
        description="Service name (custom) or collection id (crud) the endpoint points to"
    )
    instance: str = Field(default="primary", description="Console instance name")

    @field_validator("name")
    @classmethod
    def strip_slashes(cls, v: str) -> str:
        return v.strip("/")


@mcp.tool()
async def create_endpoint(params: CreateEndpointParams, ctx: MCPContext) -> str:
    """
    Expose a microservice or a CRUD collection through the API gateway.

    Builds the endpoint with the console's defaults for its type and saves it
    into the project configuration. An endpoint with the same base path is
    replaced.
    """
    set_correlation_id(str(ctx.request_id) if hasattr(ctx, "request_id") else "")
    target = audit_target(params.project_id, params.ref_id)

    blocked = get_safety_guard().check_write_operation("create_endpoint")
    if blocked:
        get_audit_logger().log_blocked("create_endpoint", target, blocked.reason)
        return blocked.format_message()

    endpoint = build_endpoint(params.endpoint_type, params.name, params.target)
    base_path = endpoint["basePath"]

    try:
        client = get_client(params.instance)

        await ctx.report_progress(0, 1, f"Creating {params.endpoint_type} endpoint {base_path}")
        store = await resolve_configuration_store(client, params.project_id)
        saved = await ConfigurationMerger(store).save_configuration(
            params.project_id,
            params.ref_id,
            ResourcesToCreate(endpoints={base_path: endpoint}),
        )
        await ctx.report_progress(1, 1, "Endpoint saved")

        get_audit_logger().log_write(
            "create_endpoint",
            target,
            "saved",
            {"base_path": base_path, "type": params.endpoint_type, "commit_id": saved.id},
        )
        return (
            f"Endpoint {base_path} ({params.endpoint_type}) created, "
            f"targeting {params.target}.\nCommit: {saved.id}"
        )

    except CONSOLE_ERRORS as e:
        get_audit_logger().log_error("create_endpoint", target, str(e))
        return f"Error creating endpoint: {e}"


# =============================================================================
# DEPLOY
# =============================================================================


class DeployProjectParams(BaseModel):
    """Parameters for deploy_project tool."""

    project_id: str = Field(description="Console project id")
    environment: str = Field(description="Environment id to deploy to")
    revision: str = Field(description="Revision or version name to deploy")
    ref_type: Literal["revision", "version"] = Field(
        default="revision", description="Whether revision names a revision or a version"
    )
    instance: str = Field(default="primary", description="Console instance name")


@mcp.tool()
async def deploy_project(params: DeployProjectParams, ctx: MCPContext) -> str:
    """
    Deploy a revision or version of a project to an environment.

    Starts the deploy pipeline and returns immediately with its id. Use
    deploy_pipeline_status with that id to wait for the outcome, and
    compare_update_for_deploy beforehand to see what will change.
    """
    set_correlation_id(str(ctx.request_id) if hasattr(ctx, "request_id") else "")
    target = audit_target(params.project_id, params.environment)

    blocked = get_safety_guard().check_write_operation("deploy_project")
    if blocked:
        get_audit_logger().log_blocked("deploy_project", target, blocked.reason)
        return blocked.format_message()

    try:
        client = get_client(params.instance)

        await ctx.report_progress(0, 1, f"Triggering deploy of {params.revision}")
        data = await client.trigger_deploy(
            params.project_id,
            params.environment,
            params.revision,
            params.ref_type,
        )
        pipeline = TriggerDeployResponse.from_api_response(data)
        await ctx.report_progress(1, 1, "Pipeline started")

        get_audit_logger().log_write(
            "deploy_project",
            target,
            "triggered",
            {
                "pipeline_id": pipeline.id,
                "revision": params.revision,
                "ref_type": params.ref_type,
            },
        )
        return (
            f"URL to check the deployment status: {pipeline.url} "
            f"for pipeline with id {pipeline.id}"
        )

    except CONSOLE_ERRORS as e:
        get_audit_logger().log_error("deploy_project", target, str(e))
        return f"Error deploying project: {e}"


class CompareUpdateForDeployParams(BaseModel):
    """Parameters for compare_update_for_deploy tool."""

    project_id: str = Field(description="Console project id")
    environment: str = Field(description="Environment id currently deployed")
    revision: str = Field(description="Revision or version name that would be deployed")
    ref_type: Literal["revision", "version"] = Field(
        default="revision", description="Whether revision names a revision or a version"
    )
    instance: str = Field(default="primary", description="Console instance name")


@mcp.tool()
async def compare_update_for_deploy(
    params: CompareUpdateForDeployParams, ctx: MCPContext
) -> str:
    """
    Show what a deploy would change in an environment.

    Compares the configuration running in the environment with the given
    revision or version. Nothing is deployed.
    """
    set_correlation_id(str(ctx.request_id) if hasattr(ctx, "request_id") else "")
    target = audit_target(params.project_id, params.environment)

    blocked = get_safety_guard().check_read_operation("compare_update_for_deploy")
    if blocked:
        get_audit_logger().log_blocked("compare_update_for_deploy", target, blocked.reason)
        return blocked.format_message()

    try:
        client = get_client(params.instance)
        data = await client.compare_for_deploy(
            params.project_id,
            params.environment,
            params.revision,
            params.ref_type,
        )

        get_audit_logger().log_read("compare_update_for_deploy", target)
        return _format_json(data)

    except CONSOLE_ERRORS as e:
        get_audit_logger().log_error("compare_update_for_deploy", target, str(e))
        return f"Error retrieving configuration updates: {e}"


class DeployPipelineStatusParams(BaseModel):
    """Parameters for deploy_pipeline_status tool."""

    project_id: str = Field(description="Console project id")
    pipeline_id: str = Field(description="Pipeline id returned by deploy_project")
    timeout_ms: int | None = Field(
        default=None, ge=0, description="Stop waiting after this many milliseconds"
    )
    interval_ms: int | None = Field(
        default=None, ge=0, description="Milliseconds between two status checks"
    )
    instance: str = Field(default="primary", description="Console instance name")


@mcp.tool()
async def deploy_pipeline_status(params: DeployPipelineStatusParams, ctx: MCPContext) -> str:
    """
    Wait for a deploy pipeline to finish and report its final status.

    Blocks until the pipeline reaches success, failed, canceled, abandoned,
    skipped or succededWithIssues, or until timeout_ms elapses (default from
    MCP_DEPLOY_TIMEOUT_MS). Timing out does not stop the pipeline.
    """
    set_correlation_id(str(ctx.request_id) if hasattr(ctx, "request_id") else "")
    target = audit_target(params.project_id, params.pipeline_id)

    blocked = get_safety_guard().check_read_operation("deploy_pipeline_status")
    if blocked:
        get_audit_logger().log_blocked("deploy_pipeline_status", target, blocked.reason)
        return blocked.format_message()

    defaults = get_settings().deploy
    timeout_ms = defaults.timeout_ms if params.timeout_ms is None else params.timeout_ms
    interval_ms = defaults.interval_ms if params.interval_ms is None else params.interval_ms

    try:
        client = get_client(params.instance)

        await ctx.report_progress(0, 1, f"Waiting for pipeline {params.pipeline_id}")
        status = await DeployPipelineWatcher(client).wait_for_completion(
            params.project_id,
            params.pipeline_id,
            timeout_ms=timeout_ms,
            interval_ms=interval_ms,
        )
        await ctx.report_progress(1, 1, f"Pipeline {status.status}")

        get_audit_logger().log("deploy_pipeline_status", target, status.status)
        return f"Pipeline status: {status.status}"

    except PipelineTimeoutError as e:
        get_audit_logger().log_error("deploy_pipeline_status", target, str(e))
        return (
            f"Error waiting for pipeline: {e}. Last status: {e.last_status or 'unknown'}. "
            "The pipeline is still running; call deploy_pipeline_status again to keep waiting."
        )
    except CONSOLE_ERRORS as e:
        get_audit_logger().log_error("deploy_pipeline_status", target, str(e))
        return f"Error waiting for pipeline: {e}"


# =============================================================================
# MCP RESOURCES
# =============================================================================


@mcp.resource("console://instances")
async def get_instances_resource() -> str:
    """Get information about configured console instances."""
    settings = get_settings()
    instances = settings.all_instances

    if not instances:
        return "No console instances configured"

    lines = ["Configured Console Instances:", ""]
    for inst in instances:
        auth = "client credentials" if inst.uses_client_credentials else "token"
        lines.append(f"- {inst.name}: {inst.url} ({auth})")

    return "\n".join(lines)


@mcp.resource("console://security")
async def get_security_resource() -> str:
    """Get current security and deploy polling settings."""
    settings = get_settings()
    sec = settings.security
    deploy = settings.deploy

    return (
        "Security Settings:\n"
        f"  Read-only mode: {sec.read_only}\n"
        f"  Secret masking: {sec.mask_secrets}\n"
        f"  Rate limit: {sec.rate_limit_calls} calls per {sec.rate_limit_window}s\n"
        f"  Audit log: {sec.audit_log or 'stderr'}\n"
        "Deploy Polling:\n"
        f"  Timeout: {deploy.timeout_ms}ms\n"
        f"  Interval: {deploy.interval_ms}ms"
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main() -> None:
    """Run the console MCP server over stdio."""
    configure_logging(level="INFO")
    logger.info("Console MCP Server starting")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Server interrupted")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
