# ABOUTME: Exception types shared by the console client, configuration merger and deploy watcher
# ABOUTME: Every failure a tool can report maps onto one of these three classes

"""
Error taxonomy for Console MCP Server.

=============================================================================
THREE KINDS OF FAILURE
=============================================================================

1. ConsoleError: the console backend answered with a non-success status
   (or the token endpoint refused our credentials). Carries the HTTP status
   and the backend's message.

2. ServiceAlreadyExistsError: a configuration save was asked to create a
   service whose name is already taken. Raised before anything is written.

3. PipelineTimeoutError: a deploy pipeline did not reach a terminal status
   within the polling budget. The pipeline itself keeps running.

None of these are retried by the code that raises them. The MCP tool layer in
server.py catches them and turns them into text for the agent.
"""

from __future__ import annotations


class ConsoleError(Exception):
    """
    Structured console API error.

    USAGE:
    ------
    try:
        config = await client.get_revision_configuration("prj", "main")
    except ConsoleError as e:
        print(f"Error {e.code}: {e.message}")
    """

    def __init__(self, code: int, message: str, details: str | None = None) -> None:
        """
        Args:
            code: HTTP status code (e.g., 404, 500)
            message: Backend message, or "Unknown error with status N"
            details: Additional error details (optional)
        """
        self.code = code
        self.message = message
        self.details = details
        super().__init__(str(self))

    def __str__(self) -> str:
        base = f"Console API error ({self.code}): {self.message}"
        if self.details:
            base += f" - {self.details}"
        return base


class ServiceAlreadyExistsError(Exception):
    """A service with the same name is already part of the configuration."""

    def __init__(self, service_name: str) -> None:
        self.service_name = service_name
        super().__init__(f"Service {service_name} already exists")


class PipelineTimeoutError(Exception):
    """A pipeline was still running when the wait budget ran out."""

    def __init__(self, timeout_ms: int, last_status: str | None = None) -> None:
        self.timeout_ms = timeout_ms
        self.last_status = last_status
        super().__init__(f"Pipeline execution timed out after {timeout_ms}ms")
