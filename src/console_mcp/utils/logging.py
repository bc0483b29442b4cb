# ABOUTME: Structured logging with correlation IDs for Console MCP Server
# ABOUTME: Configures structlog on stderr and records tool calls in an audit trail

"""
Structured logging, correlation IDs and the audit trail.

=============================================================================
WHERE LOGS GO
=============================================================================

The server talks MCP over stdio: stdout carries protocol frames and nothing
else. All log output (and the audit trail, unless MCP_AUDIT_LOG points at a
file) is therefore written to stderr.

=============================================================================
CORRELATION IDs
=============================================================================

One tool call can produce several log lines: the tool itself, the token
refresh, the configuration read, the save, the watcher polls. Each tool sets
the MCP request id as the correlation id on entry:

    set_correlation_id(str(ctx.request_id))

and the add_correlation_id processor stamps it onto every event logged
while that call runs. The id lives in a ContextVar, so concurrent tool calls
each see their own.

    {"event": "Saving merged configuration", "project_id": "prj", "correlation_id": "17"}
    {"event": "audit", "action": "save_configuration", "result": "saved", "correlation_id": "17"}

=============================================================================
AUDIT ENTRIES
=============================================================================

    {"timestamp": "2026-01-15T10:30:00+00:00", "correlation_id": "17",
     "action": "deploy_project", "target": "my-project/production",
     "result": "triggered", "details": {"pipeline_id": "4242"}}

``target`` is "project" or "project/ref" for every console tool.
``result`` is success for reads, saved or triggered for writes, the final
pipeline status for deploy_pipeline_status, blocked or error otherwise.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path


# =============================================================================
# CORRELATION ID MANAGEMENT
# =============================================================================

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """
    Current correlation ID, generating one if none is set.

    Code running outside a tool call (startup, the lifespan) still gets an
    id, an 8-character slice of a UUID4.
    """
    cid = correlation_id.get()
    if not cid:
        cid = str(uuid.uuid4())[:8]
        correlation_id.set(cid)
    return cid


def set_correlation_id(cid: str) -> None:
    """Set the correlation ID for the current context ("" means generate on next read)."""
    correlation_id.set(cid)


def add_correlation_id(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor adding ``correlation_id`` to every event."""
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure structlog for the server. Call once at startup.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_output: One JSON object per line instead of the console renderer
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        # stdout belongs to the stdio transport
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# AUDIT LOGGER
# =============================================================================


def audit_target(project_id: str, ref_id: str | None = None) -> str:
    """Audit target string for a project, optionally narrowed to a revision or environment."""
    return f"{project_id}/{ref_id}" if ref_id else project_id


class AuditLogger:
    """
    Records every console tool call and its outcome.

    With a ``log_path`` entries are appended to that file as JSON lines;
    otherwise they go through structlog under the "audit" logger name.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path
        self._logger = structlog.get_logger("audit")

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    def log(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Write one audit entry."""
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "correlation_id": get_correlation_id(),
            "action": action,
            "target": target,
            "result": result,
        }
        if details:
            entry["details"] = details

        if self._log_path:
            with self._log_path.open("a") as f:
                f.write(json.dumps(entry, default=str) + "\n")
        else:
            self._logger.info(
                "audit",
                action=action,
                target=target,
                result=result,
                details=details,
            )

    def log_read(self, action: str, target: str) -> None:
        self.log(action, target, "success")

    def log_write(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Record a call that changed something in the console.

        ``result`` is "saved" for configuration saves and "triggered" for
        deploys, whose pipeline keeps running after the tool returns.
        """
        self.log(action, target, result, details)

    def log_blocked(self, action: str, target: str, reason: str) -> None:
        self.log(action, target, "blocked", {"reason": reason})

    def log_error(self, action: str, target: str, error: str) -> None:
        self.log(action, target, "error", {"error": error})
