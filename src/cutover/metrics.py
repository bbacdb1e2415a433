"""
OpenTelemetry metrics for cutover runs.

Without a configured OpenTelemetry SDK the API hands out no-op
instruments, so recording is always safe. ``enable_metrics=False`` swaps
in local no-op instruments without touching the global meter provider.

Example:
    >>> metrics = CutoverMetrics(run_id=str(run.id), environment="production")
    >>> with metrics.time_step("stop-rebuild"):
    ...     await handler(step)
    >>> metrics.record_rollback("rolled_back")

Metrics Exposed:
    - cutover.step.duration (Histogram): Time spent executing each step
    - cutover.step.failures (Counter): Steps that failed or timed out
    - cutover.probe.failures (Counter): Probes reporting fail, per subsystem
    - cutover.rollback.outcomes (Counter): Rollback outcomes by result
    - cutover.runs.active (UpDownCounter): Runs currently executing

All metrics carry 'run_id' and 'environment' attributes.
"""

from __future__ import annotations

import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import metrics

_meter: Any = None


def _get_meter() -> Any:
    """Get or create the meter for the cutover namespace."""
    global _meter
    if _meter is None:
        _meter = metrics.get_meter("cutover", version="1.0.0")
    return _meter


def reset_meter() -> None:
    """
    Reset the module meter.

    Useful in tests that install a fresh MeterProvider.
    """
    global _meter
    _meter = None


class NoOpCounter:
    """Counter stand-in used when metrics are disabled."""

    def add(
        self,
        amount: int | float,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        pass


class NoOpHistogram:
    """Histogram stand-in used when metrics are disabled."""

    def record(
        self,
        value: float,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        pass


@dataclass(frozen=True)
class CutoverMetricSnapshot:
    """
    Values recorded so far by one CutoverMetrics instance.

    Attributes:
        step_durations: Step name to seconds spent executing it
        step_failures: Number of failed steps
        probe_failures: Subsystem name to failing probe count
        rollback_outcomes: Outcome name to count
    """

    step_durations: dict[str, float] = field(default_factory=dict)
    step_failures: int = 0
    probe_failures: dict[str, int] = field(default_factory=dict)
    rollback_outcomes: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_durations": dict(self.step_durations),
            "step_failures": self.step_failures,
            "probe_failures": dict(self.probe_failures),
            "rollback_outcomes": dict(self.rollback_outcomes),
        }


@dataclass
class CutoverMetrics:
    """
    Container for the metric instruments of one run.

    Attributes:
        run_id: Run identifier for metric labels
        environment: Environment tag for metric labels
        enable_metrics: Whether to record to OpenTelemetry (default True)
    """

    run_id: str
    environment: str
    enable_metrics: bool = True

    _step_duration_histogram: Any = field(default=None, init=False, repr=False)
    _step_failures_counter: Any = field(default=None, init=False, repr=False)
    _probe_failures_counter: Any = field(default=None, init=False, repr=False)
    _rollback_counter: Any = field(default=None, init=False, repr=False)
    _active_runs: Any = field(default=None, init=False, repr=False)

    _step_durations: dict[str, float] = field(default_factory=dict, init=False, repr=False)
    _step_failures: int = field(default=0, init=False, repr=False)
    _probe_failures: dict[str, int] = field(default_factory=dict, init=False, repr=False)
    _rollback_outcomes: dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.enable_metrics:
            self._setup_metrics()
        else:
            self._setup_noop()

    def _setup_metrics(self) -> None:
        meter = _get_meter()

        self._step_duration_histogram = meter.create_histogram(
            name="cutover.step.duration",
            unit="s",
            description="Time spent executing each cutover step in seconds",
        )
        self._step_failures_counter = meter.create_counter(
            name="cutover.step.failures",
            unit="steps",
            description="Number of cutover steps that failed or timed out",
        )
        self._probe_failures_counter = meter.create_counter(
            name="cutover.probe.failures",
            unit="probes",
            description="Number of health probes that reported fail",
        )
        self._rollback_counter = meter.create_counter(
            name="cutover.rollback.outcomes",
            unit="rollbacks",
            description="Rollbacks by outcome",
        )
        self._active_runs = meter.create_up_down_counter(
            name="cutover.runs.active",
            unit="runs",
            description="Number of cutover runs currently executing",
        )

    def _setup_noop(self) -> None:
        self._step_duration_histogram = NoOpHistogram()
        self._step_failures_counter = NoOpCounter()
        self._probe_failures_counter = NoOpCounter()
        self._rollback_counter = NoOpCounter()
        self._active_runs = NoOpCounter()

    def _base_attributes(self) -> dict[str, str]:
        return {"run_id": self.run_id, "environment": self.environment}

    def record_step_duration(self, step_name: str, duration_seconds: float) -> None:
        attrs = {**self._base_attributes(), "step": step_name}
        self._step_duration_histogram.record(duration_seconds, attrs)
        self._step_durations[step_name] = duration_seconds

    def record_step_failure(self, step_name: str) -> None:
        attrs = {**self._base_attributes(), "step": step_name}
        self._step_failures_counter.add(1, attrs)
        self._step_failures += 1

    def record_probe_failure(self, subsystem: str) -> None:
        attrs = {**self._base_attributes(), "subsystem": subsystem}
        self._probe_failures_counter.add(1, attrs)
        self._probe_failures[subsystem] = self._probe_failures.get(subsystem, 0) + 1

    def record_rollback(self, outcome: str) -> None:
        """
        Record the outcome of a rollback.

        Args:
            outcome: 'rolled_back', 'rollback_failed' or 'rollback_skipped'
        """
        attrs = {**self._base_attributes(), "outcome": outcome}
        self._rollback_counter.add(1, attrs)
        self._rollback_outcomes[outcome] = self._rollback_outcomes.get(outcome, 0) + 1

    def run_started(self) -> None:
        self._active_runs.add(1, {"environment": self.environment})

    def run_finished(self) -> None:
        self._active_runs.add(-1, {"environment": self.environment})

    @contextmanager
    def time_step(self, step_name: str) -> Generator[None, None, None]:
        """
        Time a step and record its duration when the block exits.

        The duration is recorded whether the step succeeds or raises.
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_step_duration(step_name, time.perf_counter() - start)

    def get_snapshot(self) -> CutoverMetricSnapshot:
        return CutoverMetricSnapshot(
            step_durations=dict(self._step_durations),
            step_failures=self._step_failures,
            probe_failures=dict(self._probe_failures),
            rollback_outcomes=dict(self._rollback_outcomes),
        )


__all__ = [
    "CutoverMetrics",
    "CutoverMetricSnapshot",
    "NoOpCounter",
    "NoOpHistogram",
    "reset_meter",
]
