"""
Shared pytest fixtures for the cutover tests.

This module provides:
- Orchestrator harness fixtures (harness)
- Run fixtures (run_factory)
- Tracing fixtures (mock_tracer)
- SQLite fixtures (sqlite_engine)
- OpenTelemetry metrics fixtures (metric_reader)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

import cutover.metrics as metrics_module
from cutover.models import MigrationPhase, MigrationRun
from cutover.observability import MockTracer
from cutover.phases import CATALOGUE
from cutover.testing import LIVE_CONFIG, CutoverTestHarness

# =============================================================================
# Harness Fixtures
# =============================================================================


@pytest.fixture
def harness() -> CutoverTestHarness:
    """
    Provide an orchestrator wired to in-memory infrastructure.

    The registry starts at LIVE_CONFIG and every subsystem has a
    FakeSubsystem adapter.
    """
    return CutoverTestHarness()


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Provide a tracer that records span names and attributes."""
    return MockTracer()


# =============================================================================
# Run Fixtures
# =============================================================================


@pytest.fixture
def run_factory() -> Callable[..., MigrationRun]:
    """
    Factory for MigrationRun records.

    Defaults to a cache-phase run whose original_config is LIVE_CONFIG.
    """

    def make(
        phase: MigrationPhase = MigrationPhase.CACHE,
        environment: str = "test",
        original_config: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> MigrationRun:
        return MigrationRun(
            phase=phase,
            environment=environment,
            steps=[step.to_step() for step in CATALOGUE[phase]],
            original_config=dict(LIVE_CONFIG if original_config is None else original_config),
            **kwargs,
        )

    return make


# =============================================================================
# SQLite Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Provide an AsyncEngine on a file-backed SQLite database.

    A file is used instead of ``:memory:`` so every pooled connection sees
    the same database.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'cutover.db'}")
    yield engine
    await engine.dispose()


# =============================================================================
# OpenTelemetry Metrics Fixtures
# =============================================================================


@pytest.fixture
def metric_reader() -> Generator[InMemoryMetricReader, None, None]:
    """
    Provide an InMemoryMetricReader bound to the cutover meter.

    The module meter is pointed at a private MeterProvider for the test
    and reset afterwards, leaving the global provider untouched.
    """
    reader = InMemoryMetricReader()
    provider = MeterProvider(metric_readers=[reader])
    metrics_module._meter = provider.get_meter("cutover")

    yield reader

    metrics_module.reset_meter()
    provider.shutdown()
