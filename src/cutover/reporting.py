"""
Reporting sinks - where the final run summary goes.

Notification delivery is best-effort: the orchestrator awaits a single
bounded-timeout broadcast to all sinks before it returns. A failing or
slow sink is logged and never changes the run's outcome.

Summary payload:
    {"success", "environment", "startTime", "endTime", "duration",
     "runId", "phase", "outcome"}
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import httpx

from cutover.models import RunSummary

logger = logging.getLogger(__name__)


@runtime_checkable
class ReportingSink(Protocol):
    """Receives the final summary of a run."""

    async def report(self, summary: RunSummary) -> None: ...


class LoggingReportingSink:
    """Writes the summary to the log."""

    def __init__(self, logger_name: str = __name__) -> None:
        self._logger = logging.getLogger(logger_name)

    async def report(self, summary: RunSummary) -> None:
        level = logging.INFO if summary.success else logging.ERROR
        self._logger.log(
            level,
            "Run %s (%s/%s) finished: %s in %.1fs",
            summary.run_id,
            summary.environment,
            summary.phase.value,
            summary.outcome.value,
            summary.duration_seconds,
        )


class HttpReportingSink:
    """
    POSTs the summary as JSON to a webhook.

    Args:
        client: Shared httpx.AsyncClient
        url: Webhook URL
    """

    def __init__(self, client: httpx.AsyncClient, url: str) -> None:
        self._client = client
        self._url = url

    async def report(self, summary: RunSummary) -> None:
        response = await self._client.post(self._url, json=summary.to_dict())
        response.raise_for_status()


async def broadcast(
    sinks: Sequence[ReportingSink],
    summary: RunSummary,
    timeout: float,
) -> int:
    """
    Deliver a summary to every sink concurrently, bounded by ``timeout``.

    Sinks still reporting at the deadline are cancelled; the ones that
    finished in time are still counted.

    Args:
        sinks: Sinks to notify
        summary: Run summary
        timeout: Upper bound in seconds for the whole broadcast

    Returns:
        Number of sinks that accepted the summary
    """
    if not sinks:
        return 0

    tasks = {asyncio.ensure_future(sink.report(summary)): sink for sink in sinks}
    done, pending = await asyncio.wait(list(tasks), timeout=timeout)

    for task in pending:
        task.cancel()
        logger.warning(
            "Reporting sink %s timed out after %ss", type(tasks[task]).__name__, timeout
        )
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    delivered = 0
    for task in done:
        error = task.exception()
        if error is not None:
            logger.warning("Reporting sink %s failed: %s", type(tasks[task]).__name__, error)
        else:
            delivered += 1
    return delivered


__all__ = [
    "ReportingSink",
    "LoggingReportingSink",
    "HttpReportingSink",
    "broadcast",
]
