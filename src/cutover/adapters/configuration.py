"""Registry-backed configuration probe."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from cutover.models import ProbeResult, Subsystem
from cutover.observability import ATTR_SUBSYSTEM, Tracer, create_tracer
from cutover.repositories import ConfigRegistry

logger = logging.getLogger(__name__)


class ConfigurationProbe:
    """
    Compare live registry values with the values a cutover should leave.

    Fails listing every key whose live value differs from ``expected``.

    Args:
        registry: Configuration registry to read
        expected: Registry key to expected value
        subsystem: Subsystem reported in results (default APPLICATION)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        registry: ConfigRegistry,
        expected: Mapping[str, Any],
        subsystem: Subsystem = Subsystem.APPLICATION,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if not expected:
            raise ValueError("expected must name at least one key")
        self.subsystem = subsystem
        self._registry = registry
        self._expected = dict(expected)
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def probe(self) -> ProbeResult:
        with self._tracer.span(
            "cutover.probe.configuration",
            {ATTR_SUBSYSTEM: self.subsystem.value, "cutover.config.keys": len(self._expected)},
        ):
            drifted = []
            for key, value in self._expected.items():
                if await self._registry.get(key) != value:
                    drifted.append(key)

            if drifted:
                logger.debug("Configuration drift on %s", ", ".join(drifted))
                return ProbeResult.failed(
                    f"{len(drifted)} of {len(self._expected)} keys differ: {', '.join(drifted)}"
                )
            return ProbeResult.passed(f"{len(self._expected)} keys match")


__all__ = ["ConfigurationProbe"]
