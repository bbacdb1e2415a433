"""
Unit tests for reporting sinks and the bounded broadcast.
"""

import asyncio
import json
import logging

import httpx
import pytest

from cutover.models import MigrationPhase, MigrationRun, RunOutcome, RunStatus, RunSummary
from cutover.reporting import HttpReportingSink, LoggingReportingSink, ReportingSink, broadcast
from cutover.testing import RecordingSink


@pytest.fixture
def summary() -> RunSummary:
    run = MigrationRun(phase=MigrationPhase.CACHE, environment="staging")
    run.outcome = RunOutcome.SUCCEEDED
    run.finish(RunStatus.COMPLETED)
    return RunSummary.from_run(run)


# =============================================================================
# broadcast
# =============================================================================


class TestBroadcast:
    """Tests for delivering summaries to several sinks."""

    async def test_delivers_to_every_sink(self, summary: RunSummary) -> None:
        sinks = [RecordingSink(), RecordingSink()]

        delivered = await broadcast(sinks, summary, timeout=1.0)

        assert delivered == 2
        assert all(sink.summaries == [summary] for sink in sinks)

    async def test_no_sinks(self, summary: RunSummary) -> None:
        assert await broadcast([], summary, timeout=1.0) == 0

    async def test_failing_sink_is_logged(
        self, summary: RunSummary, caplog: pytest.LogCaptureFixture
    ) -> None:
        healthy = RecordingSink()

        with caplog.at_level(logging.WARNING, logger="cutover.reporting"):
            delivered = await broadcast([RecordingSink(fail=True), healthy], summary, timeout=1.0)

        assert delivered == 1
        assert healthy.summaries == [summary]
        assert "RecordingSink failed: sink unavailable" in caplog.text

    async def test_timeout_bounds_the_broadcast(
        self, summary: RunSummary, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="cutover.reporting"):
            delivered = await broadcast(
                [RecordingSink(delay_seconds=5.0)], summary, timeout=0.05
            )

        assert delivered == 0
        assert "timed out" in caplog.text

    async def test_fast_sinks_counted_when_another_times_out(
        self, summary: RunSummary, caplog: pytest.LogCaptureFixture
    ) -> None:
        fast = RecordingSink()
        slow = RecordingSink(delay_seconds=5.0)

        with caplog.at_level(logging.WARNING, logger="cutover.reporting"):
            delivered = await broadcast([fast, slow, RecordingSink()], summary, timeout=0.05)

        assert delivered == 2
        assert fast.summaries == [summary]
        assert slow.summaries == []
        assert "RecordingSink timed out after 0.05s" in caplog.text

    async def test_slow_sink_is_cancelled(self, summary: RunSummary) -> None:
        slow = RecordingSink(delay_seconds=0.2)

        await broadcast([slow], summary, timeout=0.01)
        await asyncio.sleep(0.3)

        assert slow.summaries == []


# =============================================================================
# Sinks
# =============================================================================


class TestLoggingReportingSink:
    """Tests for the log sink."""

    def test_implements_protocol(self) -> None:
        assert isinstance(LoggingReportingSink(), ReportingSink)

    async def test_logs_summary(
        self, summary: RunSummary, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="cutover.runs"):
            await LoggingReportingSink("cutover.runs").report(summary)

        assert "staging/cache" in caplog.text
        assert "succeeded" in caplog.text


class TestHttpReportingSink:
    """Tests for the webhook sink."""

    async def test_posts_summary_json(self, summary: RunSummary) -> None:
        received: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(204)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await HttpReportingSink(client, "https://hooks.example.com/cutover").report(summary)

        assert len(received) == 1
        assert received[0].method == "POST"
        body = json.loads(received[0].content)
        assert body["runId"] == str(summary.run_id)
        assert body["outcome"] == "succeeded"
        assert body["success"] is True

    async def test_error_status_raises(self, summary: RunSummary) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(500))

        async with httpx.AsyncClient(transport=transport) as client:
            sink = HttpReportingSink(client, "https://hooks.example.com/cutover")
            with pytest.raises(httpx.HTTPStatusError):
                await sink.report(summary)
