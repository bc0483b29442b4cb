# ABOUTME: Console API client wrapper with retry logic and error handling
# ABOUTME: Provides async access to configuration, feature toggle and deploy endpoints

"""
Console API client with retry logic and structured error handling.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module provides the HTTP client for the console REST backend. It handles:

1. HTTP COMMUNICATION: Making requests to console endpoints
2. AUTHENTICATION: Static bearer token or client-credentials token
3. ERROR HANDLING: Converting HTTP errors to ConsoleError
4. RETRY LOGIC: Retrying requests that time out
5. SECRET MASKING: Hiding sensitive data in API responses shown to the agent

=============================================================================
CONSOLE REST API (the parts this server uses)
=============================================================================

Configuration (two addressing variants):
    GET  /api/backend/projects/{p}/revisions/{ref}/configuration
    POST /api/backend/projects/{p}/revisions/{ref}/configuration
    GET  /api/projects/{p}/environments/{env}/configuration
    POST /api/projects/{p}/environments/{env}/configuration

Revisions and versions:
    GET  /api/backend/projects/{p}/revisions
    GET  /api/backend/projects/{p}/versions

Feature toggles:
    GET  /api/feature-toggles?projectId=...&featureToggleIds=a,b

Deploy:
    POST /api/deploy/projects/{p}/trigger/pipeline/
    GET  /api/deploy/projects/{p}/compare/raw
    GET  /api/deploy/projects/{p}/pipelines/{id}/status/

Errors come back as JSON:
    {"statusCode": 404, "error": "Not Found", "message": "project not found"}

=============================================================================
WHAT IS RETRIED AND WHAT IS NOT
=============================================================================

Only httpx.TimeoutException is retried (3 attempts, exponential backoff).
A 4xx/5xx answer is a real answer from the backend: it becomes a ConsoleError
immediately and callers decide what to do with it. The deploy watcher, for
example, stops waiting on the first ConsoleError.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from console_mcp import __version__
from console_mcp.errors import ConsoleError
from console_mcp.utils.auth import TokenCache

if TYPE_CHECKING:
    from console_mcp.config import ConsoleInstance

logger = structlog.get_logger(__name__)

USER_AGENT = f"console-mcp/{__version__}"


# =============================================================================
# SECRET MASKING PATTERNS
# =============================================================================

SECRET_PATTERNS = [
    (re.compile(r"(token[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(password[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(secret[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(api[_-]?key[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(bearer\s+)[^\s\"']+", re.I), r"\1***MASKED***"),
]

SENSITIVE_KEYS = frozenset(
    [
        "token",
        "access_token",
        "refresh_token",
        "password",
        "secret",
        "client_secret",
        "clientsecret",
        "api_key",
        "apikey",
        "api-key",
        "authorization",
        "credentials",
    ]
)


def _ref(ref_id: str) -> str:
    """Encode a revision, version or environment id for use as one path segment."""
    return quote(ref_id, safe="")


# =============================================================================
# CONSOLE CLIENT
# =============================================================================


class ConsoleClient:
    """
    Async console API client.

    ALWAYS use the context manager pattern:

        async with ConsoleClient(instance) as client:
            config = await client.get_revision_configuration("prj", "main")

    The client holds no configuration state between calls: every method is one
    request and returns the decoded JSON. Only the bearer token (when using
    client credentials) lives across calls, inside the client's TokenCache.
    """

    def __init__(
        self,
        instance: ConsoleInstance,
        timeout: float = 30.0,
        mask_secrets: bool = True,
        token_cache: TokenCache | None = None,
    ) -> None:
        """
        Args:
            instance: Console instance configuration (URL, credentials, etc.)
            timeout: HTTP request timeout in seconds
            mask_secrets: Whether to mask sensitive data in read responses
            token_cache: Token cache to use for client credentials. Built from
                the instance credentials when omitted.
        """
        self._instance = instance
        self._timeout = timeout
        self._mask_secrets = mask_secrets
        if token_cache is None and instance.uses_client_credentials:
            token_cache = TokenCache(instance.client_id, instance.client_secret)
        self._token_cache = token_cache
        self._client: httpx.AsyncClient | None = None

    @property
    def instance(self) -> ConsoleInstance:
        return self._instance

    async def __aenter__(self) -> ConsoleClient:
        self._client = httpx.AsyncClient(
            base_url=self._instance.url,
            # Content-Type is left to httpx so form posts (token endpoint)
            # and JSON posts each get the right one
            headers={
                "Accept": "application/json",
                "User-Agent": USER_AGENT,
            },
            timeout=self._timeout,
            verify=not self._instance.insecure,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def mask_response(self, data: Any) -> Any:
        """
        Mask sensitive values in response data.

        Recurses through dicts and lists; strings are scrubbed with
        SECRET_PATTERNS, dict values under SENSITIVE_KEYS are replaced.
        Returns data unchanged when masking is disabled.
        """
        if not self._mask_secrets:
            return data

        if isinstance(data, str):
            masked_str = data
            for pattern, replacement in SECRET_PATTERNS:
                masked_str = pattern.sub(replacement, masked_str)
            return masked_str

        if isinstance(data, dict):
            masked_dict: dict[str, Any] = {}
            for k, v in data.items():
                if isinstance(k, str) and k.lower() in SENSITIVE_KEYS:
                    masked_dict[k] = "***MASKED***"
                else:
                    masked_dict[k] = self.mask_response(v)
            return masked_dict

        if isinstance(data, list):
            return [self.mask_response(item) for item in data]

        return data

    async def _auth_headers(self) -> dict[str, str]:
        static_token = self._instance.token.get_secret_value()
        if static_token:
            return {"Authorization": f"Bearer {static_token}"}
        if self._token_cache and self._client:
            access_token = await self._token_cache.get_token(self._client)
            return {"Authorization": f"Bearer {access_token}"}
        return {}

    @retry(
        retry=retry_if_exception_type(httpx.TimeoutException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        mask: bool = True,
    ) -> Any:
        """
        Make HTTP request to the console API.

        Args:
            method: HTTP method ("GET", "POST")
            path: API path, starting with "/"
            params: URL query parameters (optional)
            json_data: JSON request body (optional)
            mask: Apply secret masking to the decoded body. Configuration
                documents are fetched unmasked because they are written back.

        Returns:
            Decoded JSON body ({} for an empty body)

        Raises:
            ConsoleError: On API error (4xx, 5xx)
            httpx.TimeoutException: On request timeout (after retries)
            RuntimeError: If client not initialized (forgot async with)
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        log = logger.bind(method=method, path=path, instance=self._instance.name)
        log.debug("Making console API request")

        response = await self._client.request(
            method,
            path,
            params=params,
            json=json_data,
            headers=await self._auth_headers(),
        )

        if response.status_code >= 400:
            error_body = response.text
            log.warning("Console API error", status=response.status_code, body=error_body[:200])

            message = f"Unknown error with status {response.status_code}"
            details = None
            try:
                error_json = response.json()
            except ValueError:
                details = error_body[:200] if error_body else None
            else:
                if isinstance(error_json, dict):
                    message = error_json.get("message") or message
                    details = error_json.get("error")

            if response.status_code == 401 and self._token_cache:
                self._token_cache.invalidate()

            raise ConsoleError(
                code=response.status_code,
                message=message,
                details=details,
            )

        result = response.json() if response.content else {}
        return self.mask_response(result) if mask else result

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    async def get_revision_configuration(self, project_id: str, ref_id: str) -> dict[str, Any]:
        """Fetch the configuration of a revision or version."""
        return await self._request(
            "GET",
            f"/api/backend/projects/{project_id}/revisions/{_ref(ref_id)}/configuration",
            mask=False,
        )

    async def save_revision_configuration(
        self,
        project_id: str,
        ref_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """Save a configuration on a revision. Returns {"id": ..., "upgraded": ...}."""
        return await self._request(
            "POST",
            f"/api/backend/projects/{project_id}/revisions/{_ref(ref_id)}/configuration",
            json_data=payload,
            mask=False,
        )

    async def get_environment_configuration(
        self,
        project_id: str,
        environment_id: str,
    ) -> dict[str, Any]:
        """Fetch the configuration of an environment (environment-based projects)."""
        return await self._request(
            "GET",
            f"/api/projects/{project_id}/environments/{_ref(environment_id)}/configuration",
            mask=False,
        )

    async def save_environment_configuration(
        self,
        project_id: str,
        environment_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """Save a configuration on an environment (environment-based projects)."""
        return await self._request(
            "POST",
            f"/api/projects/{project_id}/environments/{_ref(environment_id)}/configuration",
            json_data=payload,
            mask=False,
        )

    async def list_revisions(self, project_id: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/api/backend/projects/{project_id}/revisions")
        return list(data) if isinstance(data, list) else []

    async def list_versions(self, project_id: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/api/backend/projects/{project_id}/versions")
        return list(data) if isinstance(data, list) else []

    # =========================================================================
    # FEATURE TOGGLES
    # =========================================================================

    async def get_feature_toggles(
        self,
        project_id: str,
        toggle_ids: list[str],
    ) -> dict[str, bool]:
        """
        Resolve feature toggles for a project.

        Returns a mapping toggle id -> enabled. No request is made for an
        empty list.
        """
        if not toggle_ids:
            return {}

        data = await self._request(
            "GET",
            "/api/feature-toggles",
            params={"projectId": project_id, "featureToggleIds": ",".join(toggle_ids)},
        )
        return {k: bool(v) for k, v in data.items()} if isinstance(data, dict) else {}

    # =========================================================================
    # DEPLOY
    # =========================================================================

    async def trigger_deploy(
        self,
        project_id: str,
        environment: str,
        revision: str,
        ref_type: str,
    ) -> dict[str, Any]:
        """
        Start a deploy pipeline.

        Args:
            project_id: Project identifier
            environment: Target environment id
            revision: Revision or version name to deploy
            ref_type: "revision" or "version"

        Returns:
            {"id": <pipeline id>, "url": <pipeline page>}
        """
        body = {
            "environment": environment,
            "revision": revision,
            "refType": ref_type,
        }
        return await self._request(
            "POST",
            f"/api/deploy/projects/{project_id}/trigger/pipeline/",
            json_data=body,
        )

    async def compare_for_deploy(
        self,
        project_id: str,
        environment: str,
        revision: str,
        ref_type: str,
    ) -> dict[str, Any]:
        """Raw diff between what runs in an environment and a revision/version."""
        params = {
            "fromEnvironment": environment,
            "toRef": revision,
            "refType": ref_type,
        }
        return await self._request(
            "GET",
            f"/api/deploy/projects/{project_id}/compare/raw",
            params=params,
        )

    async def get_pipeline_status(self, project_id: str, pipeline_id: str) -> dict[str, Any]:
        """Current status of a deploy pipeline: {"id": ..., "status": ...}."""
        return await self._request(
            "GET",
            f"/api/deploy/projects/{project_id}/pipelines/{pipeline_id}/status/",
        )
