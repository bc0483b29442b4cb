# ABOUTME: Safety utilities for Console MCP Server
# ABOUTME: Read-only mode and per-tool rate limiting in front of configuration saves and deploys

"""Guards checked by every tool before it talks to the console."""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

    from console_mcp.config import SecuritySettings

logger = structlog.get_logger(__name__)

# Tools that change a project: they save a configuration or start a pipeline
WRITE_OPERATIONS = frozenset({"save_configuration", "create_endpoint", "deploy_project"})


@dataclass
class OperationBlocked:
    """Response indicating operation is blocked by security settings."""

    operation: str
    reason: str
    setting: str

    def format_message(self) -> str:
        """Format blocked message for agent consumption."""
        if self.setting == "MCP_READ_ONLY":
            hint = f"To enable: Set {self.setting}=false in server configuration"
        else:
            hint = f"To raise the limit: Increase {self.setting} in server configuration"
        return (
            f"OPERATION BLOCKED: {self.operation}\n"
            f"Reason: {self.reason}\n"
            f"Setting: {self.setting}\n"
            f"{hint}"
        )


class RateLimiter:
    """Sliding-window call counter, one window per key."""

    def __init__(
        self,
        max_calls: int = 100,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize rate limiter.

        Args:
            max_calls: Maximum calls allowed in window
            window_seconds: Window size in seconds
            clock: Time source in seconds
        """
        self._max_calls = max_calls
        self._window = window_seconds
        self._clock = clock
        self._calls: dict[str, list[float]] = defaultdict(list)

    def check(self, key: str) -> bool:
        """Record a call for ``key``; False if the window is already full.

        Args:
            key: Rate limit key (e.g., "write:deploy_project")
        """
        now = self._clock()
        self._calls[key] = [t for t in self._calls[key] if now - t < self._window]

        if len(self._calls[key]) >= self._max_calls:
            logger.warning("Rate limit exceeded", key=key, calls=len(self._calls[key]))
            return False

        self._calls[key].append(now)
        return True

    def reset(self, key: str | None = None) -> None:
        if key:
            self._calls.pop(key, None)
        else:
            self._calls.clear()


class SafetyGuard:
    """Read-only switch plus rate limits, shared by all tools of one server."""

    def __init__(self, settings: SecuritySettings) -> None:
        self._settings = settings
        self._rate_limiter = RateLimiter(
            max_calls=settings.rate_limit_calls,
            window_seconds=settings.rate_limit_window,
        )

    @property
    def read_only(self) -> bool:
        return self._settings.read_only

    def is_write_operation(self, operation: str) -> bool:
        return operation in WRITE_OPERATIONS

    def check_read_operation(self, operation: str) -> OperationBlocked | None:
        """Reads are only ever rate limited.

        Returns:
            OperationBlocked if blocked, None if allowed
        """
        if not self._rate_limiter.check(f"read:{operation}"):
            return OperationBlocked(
                operation=operation,
                reason="Rate limit exceeded",
                setting="MCP_RATE_LIMIT_CALLS",
            )
        return None

    def check_write_operation(self, operation: str) -> OperationBlocked | None:
        """Writes are refused in read-only mode, then rate limited.

        A call refused for read-only mode does not count against the limit.

        Returns:
            OperationBlocked if blocked, None if allowed
        """
        if self._settings.read_only:
            return OperationBlocked(
                operation=operation,
                reason="Server is running in read-only mode",
                setting="MCP_READ_ONLY",
            )

        if not self._rate_limiter.check(f"write:{operation}"):
            return OperationBlocked(
                operation=operation,
                reason="Rate limit exceeded",
                setting="MCP_RATE_LIMIT_CALLS",
            )

        return None

    def check_operation(self, operation: str) -> OperationBlocked | None:
        """Dispatch to the read or write check depending on the tool."""
        if self.is_write_operation(operation):
            return self.check_write_operation(operation)
        return self.check_read_operation(operation)
