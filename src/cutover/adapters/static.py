"""Probe that always reports a fixed result."""

from __future__ import annotations

from cutover.models import ProbeResult, Subsystem


class StaticProbe:
    """
    Reports the same result on every call.

    Used for subsystems that have no live check configured, so that every
    snapshot still covers every subsystem.
    """

    def __init__(self, subsystem: Subsystem, result: ProbeResult | None = None) -> None:
        self.subsystem = subsystem
        self._result = result or ProbeResult.passed("not monitored")

    async def probe(self) -> ProbeResult:
        return self._result


__all__ = ["StaticProbe"]
