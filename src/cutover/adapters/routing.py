"""
DNS routing probe.

Resolves the public hostname and the routing target recorded in the
registry, and compares the two address sets:

    - every address of the hostname belongs to the target: pass
    - some addresses still point elsewhere: warn (propagation in progress)
    - no address in common, or either name fails to resolve: fail
"""

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Awaitable, Callable

from cutover.models import ProbeResult, Subsystem
from cutover.observability import ATTR_SUBSYSTEM, Tracer, create_tracer
from cutover.repositories import ConfigRegistry

logger = logging.getLogger(__name__)

Resolver = Callable[[str], Awaitable[set[str]]]

DEFAULT_TARGET_KEY = "routing.primary_target"


async def resolve_addresses(host: str) -> set[str]:
    """
    Resolve ``host`` to its IP addresses through the event loop's resolver.

    Raises:
        OSError: socket.gaierror when the name does not resolve
    """
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return {str(info[4][0]) for info in infos}


class DnsProbe:
    """
    Check that a hostname resolves to the registry's routing target.

    Args:
        hostname: Public name clients resolve (e.g., "app.example.com")
        registry: Registry holding the current routing target
        target_key: Registry key of the expected target
        resolver: Coroutine mapping a name to its addresses
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing

    Example:
        >>> probe = DnsProbe("app.example.com", registry)
        >>> (await probe.probe()).outcome
        <ProbeOutcome.PASS: 'pass'>
    """

    subsystem = Subsystem.ROUTING_LAYER

    def __init__(
        self,
        hostname: str,
        registry: ConfigRegistry,
        target_key: str = DEFAULT_TARGET_KEY,
        resolver: Resolver | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._hostname = hostname
        self._registry = registry
        self._target_key = target_key
        self._resolve = resolver or resolve_addresses
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def probe(self) -> ProbeResult:
        with self._tracer.span(
            "cutover.probe.dns",
            {ATTR_SUBSYSTEM: self.subsystem.value, "dns.hostname": self._hostname},
        ):
            target = await self._registry.get(self._target_key)
            if not target:
                return ProbeResult.failed(f"{self._target_key} is not set")

            try:
                actual = await self._resolve(self._hostname)
                expected = await self._resolve(str(target))
            except OSError as e:
                logger.warning("DNS probe for %s failed: %s", self._hostname, e)
                return ProbeResult.failed(f"resolution failed: {e}")

            if actual and actual <= expected:
                return ProbeResult.passed(f"{self._hostname} resolves to {target}")
            if actual & expected:
                stale = ", ".join(sorted(actual - expected))
                return ProbeResult.warned(
                    f"{self._hostname} partly resolves to {target}; still answering {stale}"
                )
            return ProbeResult.failed(
                f"{self._hostname} resolves to {', '.join(sorted(actual)) or 'nothing'}, "
                f"expected {target}"
            )


__all__ = ["DnsProbe", "Resolver", "resolve_addresses"]
