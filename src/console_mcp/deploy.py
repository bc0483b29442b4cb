# ABOUTME: Deploy pipeline watcher for console projects
# ABOUTME: Polls a pipeline's status until it reaches a terminal state or the wait budget runs out

"""
Deploy pipeline watcher.

=============================================================================
HOW A DEPLOY IS FOLLOWED
=============================================================================

Triggering a deploy returns a pipeline id straight away; the pipeline then
runs on the CI provider for seconds or minutes. The watcher asks for its
status at a fixed interval:

    start = clock()
    loop:
        status = GET .../pipelines/{id}/status/
        status in TERMINAL_STATUSES     -> return it
        clock() - start > timeout       -> PipelineTimeoutError
        await sleep(interval)

Any status outside TERMINAL_STATUSES (running, pending, a value the console
adds tomorrow) counts as "not finished yet". There is no iteration cap: the
budget is wall-clock time.

=============================================================================
FAILURES
=============================================================================

- A failed status request (ConsoleError, timeout after the client's own
  retries) ends the wait immediately. It is not retried here.
- PipelineTimeoutError only means we stopped looking. The pipeline keeps
  running; the watcher never changes it.
- The wait is a normal coroutine. Cancelling the task interrupts the sleep
  with asyncio.CancelledError.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from console_mcp.errors import PipelineTimeoutError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = structlog.get_logger(__name__)

# Statuses after which a pipeline never changes again.
# "succededWithIssues" is spelled the way the console reports it.
TERMINAL_STATUSES = (
    "success",
    "failed",
    "canceled",
    "abandoned",
    "skipped",
    "succededWithIssues",
)

DEFAULT_TIMEOUT_MS = 5 * 60 * 1000
DEFAULT_INTERVAL_MS = 5000


@dataclass
class PipelineStatus:
    """Status of a deploy pipeline as reported by the console."""

    id: str
    status: str

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> PipelineStatus:
        return cls(id=str(data.get("id", "")), status=str(data.get("status", "")))


@dataclass
class TriggerDeployResponse:
    """Pipeline started by a deploy trigger."""

    id: str
    url: str

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> TriggerDeployResponse:
        return cls(id=str(data.get("id", "")), url=str(data.get("url", "")))


class PipelineStatusClient(Protocol):
    async def get_pipeline_status(self, project_id: str, pipeline_id: str) -> dict[str, Any]: ...


class DeployPipelineWatcher:
    """
    Waits for deploy pipelines to finish.

    ``clock`` must be monotonic and return seconds; ``sleep`` takes seconds.
    Both default to the real ones and are swapped out in tests.
    """

    def __init__(
        self,
        client: PipelineStatusClient,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._clock = clock
        self._sleep = sleep

    async def wait_for_completion(
        self,
        project_id: str,
        pipeline_id: str,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        interval_ms: int = DEFAULT_INTERVAL_MS,
    ) -> PipelineStatus:
        """
        Poll until the pipeline reaches a terminal status.

        Args:
            project_id: Project identifier
            pipeline_id: Pipeline id returned by the deploy trigger
            timeout_ms: Give up after this many milliseconds
            interval_ms: Pause between polls

        Returns:
            The first terminal PipelineStatus observed

        Raises:
            PipelineTimeoutError: Still not terminal after ``timeout_ms``
            ConsoleError: A status request failed
        """
        log = logger.bind(project_id=project_id, pipeline_id=pipeline_id)
        start = self._clock()
        polls = 0

        while True:
            status = PipelineStatus.from_api_response(
                await self._client.get_pipeline_status(project_id, pipeline_id)
            )
            polls += 1

            if status.is_terminal:
                log.info("Pipeline finished", status=status.status, polls=polls)
                return status

            elapsed_ms = (self._clock() - start) * 1000
            if elapsed_ms > timeout_ms:
                log.warning(
                    "Gave up waiting for pipeline",
                    status=status.status,
                    polls=polls,
                    timeout_ms=timeout_ms,
                )
                raise PipelineTimeoutError(timeout_ms, last_status=status.status)

            log.debug("Pipeline still running", status=status.status, elapsed_ms=int(elapsed_ms))
            await self._sleep(interval_ms / 1000)
