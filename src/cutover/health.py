"""
Health verification engine.

Runs one probe per monitored subsystem and reduces the results to a
HealthSnapshot with a uniform "all healthy" predicate. A poll loop
repeats the check until the system is stable, clearly unstable, or out of
attempts.

Rules:
    - Every probe call is bounded by ``probe_timeout_seconds``.
    - A probe that raises or times out reports ``fail``; nothing propagates.
    - ``warn`` is an annotation on a passing result. Only ``fail`` counts
      toward the consecutive-failure threshold.
    - Probes inside one ``check_all`` run concurrently and are joined
      before the failure counter is updated.

Usage:
    >>> verifier = HealthVerifier(
    ...     [SQLAlchemyProbe(engine), RedisProbe(redis_client)],
    ...     config=HealthPollConfig(max_attempts=10, interval_ms=30_000),
    ... )
    >>> snapshot = await verifier.check_all()
    >>> result = await verifier.poll_until_stable()
    >>> result.stable, result.attempts
    (True, 10)
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Iterable

from cutover.adapters import Probe, StaticProbe
from cutover.config import HealthPollConfig
from cutover.models import (
    HealthSnapshot,
    ProbeOutcome,
    ProbeResult,
    StabilityResult,
    Subsystem,
)
from cutover.observability import (
    ATTR_HEALTH_ATTEMPT,
    ATTR_HEALTH_STABLE,
    ATTR_SUBSYSTEM,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)

_SEVERITY = {ProbeOutcome.PASS: 0, ProbeOutcome.WARN: 1, ProbeOutcome.FAIL: 2}


def combine_results(results: list[ProbeResult]) -> ProbeResult:
    """Reduce several probe results for one subsystem to the worst outcome."""
    if len(results) == 1:
        return results[0]
    worst = max(results, key=lambda r: _SEVERITY[r.outcome])
    detail = "; ".join(r.detail for r in results if r.detail)
    return ProbeResult(worst.outcome, detail)


class HealthVerifier:
    """
    Runs probes and polls for stability.

    Subsystems without a configured probe are covered by a StaticProbe
    reporting pass, so every snapshot has one entry per Subsystem member.

    Args:
        probes: Probes to run; several probes may share a subsystem
        config: Poll and timeout settings
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        probes: Iterable[Probe],
        config: HealthPollConfig | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._config = config or HealthPollConfig()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

        grouped: dict[Subsystem, list[Probe]] = {s: [] for s in Subsystem}
        for probe in probes:
            grouped[probe.subsystem].append(probe)
        for subsystem, group in grouped.items():
            if not group:
                group.append(StaticProbe(subsystem))
        self._probes = grouped

    @property
    def config(self) -> HealthPollConfig:
        return self._config

    async def check_all(self) -> HealthSnapshot:
        """
        Probe every subsystem concurrently.

        Returns:
            HealthSnapshot with one result per subsystem
        """
        with self._tracer.span("cutover.health.check_all"):
            subsystems = list(self._probes)
            results = await asyncio.gather(
                *(self._check(subsystem) for subsystem in subsystems)
            )
            snapshot = HealthSnapshot(dict(zip(subsystems, results, strict=True)))

            if not snapshot.healthy:
                logger.warning(
                    "Health check failing for: %s",
                    ", ".join(s.value for s in snapshot.failing),
                )
            elif snapshot.warnings:
                logger.info(
                    "Health check passed with warnings for: %s",
                    ", ".join(s.value for s in snapshot.warnings),
                )
            return snapshot

    async def check_subsystem(self, subsystem: Subsystem) -> ProbeResult:
        """Probe a single subsystem."""
        with self._tracer.span(
            "cutover.health.check_subsystem",
            {ATTR_SUBSYSTEM: subsystem.value},
        ):
            return await self._check(subsystem)

    async def poll_until_stable(
        self,
        max_attempts: int | None = None,
        interval_ms: int | None = None,
        max_consecutive_failures: int | None = None,
    ) -> StabilityResult:
        """
        Repeat ``check_all`` until a conclusion is reached.

        The failure counter resets on a healthy snapshot and increments on
        a failing one. The poll returns unstable as soon as the counter
        reaches ``max_consecutive_failures``. Otherwise it stops after
        ``max_attempts`` and is stable iff the final snapshot was healthy.

        Args:
            max_attempts: Overrides the configured number of attempts
            interval_ms: Overrides the configured delay between attempts
            max_consecutive_failures: Overrides the configured threshold

        Returns:
            StabilityResult(stable, history, attempts)
        """
        max_attempts = max_attempts if max_attempts is not None else self._config.max_attempts
        interval_ms = interval_ms if interval_ms is not None else self._config.interval_ms
        threshold = (
            max_consecutive_failures
            if max_consecutive_failures is not None
            else self._config.max_consecutive_failures
        )
        if max_attempts < 1 or threshold < 1:
            raise ValueError("max_attempts and max_consecutive_failures must be >= 1")

        history: deque[HealthSnapshot] = deque(maxlen=self._config.history_size)
        consecutive_failures = 0

        for attempt in range(1, max_attempts + 1):
            with self._tracer.span("cutover.health.poll_attempt", {ATTR_HEALTH_ATTEMPT: attempt}):
                snapshot = await self.check_all()
            history.append(snapshot)

            if snapshot.healthy:
                consecutive_failures = 0
            else:
                consecutive_failures += 1
                logger.warning(
                    "Health attempt %d/%d failed (%d consecutive)",
                    attempt,
                    max_attempts,
                    consecutive_failures,
                )
                if consecutive_failures >= threshold:
                    return self._conclude(False, history, attempt)

            if attempt < max_attempts:
                await asyncio.sleep(interval_ms / 1000)

        return self._conclude(history[-1].healthy, history, max_attempts)

    def _conclude(
        self,
        stable: bool,
        history: deque[HealthSnapshot],
        attempts: int,
    ) -> StabilityResult:
        with self._tracer.span("cutover.health.concluded", {ATTR_HEALTH_STABLE: stable}):
            if stable:
                logger.info("System stable after %d attempts", attempts)
            else:
                logger.error("System unstable after %d attempts", attempts)
            return StabilityResult(stable=stable, history=list(history), attempts=attempts)

    async def _check(self, subsystem: Subsystem) -> ProbeResult:
        results = await asyncio.gather(*(self._run_probe(p) for p in self._probes[subsystem]))
        return combine_results(list(results))

    async def _run_probe(self, probe: Probe) -> ProbeResult:
        timeout = self._config.probe_timeout_seconds
        try:
            return await asyncio.wait_for(probe.probe(), timeout=timeout)
        except TimeoutError:
            logger.warning("Probe for %s timed out after %ss", probe.subsystem.value, timeout)
            return ProbeResult.failed(f"probe timed out after {timeout}s")
        except Exception as e:
            logger.warning("Probe for %s raised: %s", probe.subsystem.value, e)
            return ProbeResult.failed(f"{type(e).__name__}: {e}")


__all__ = [
    "HealthVerifier",
    "combine_results",
]
