"""
HTTP health probe.

A GET against a health endpoint: any non-2xx status or transport error
fails the probe, and a successful response slower than the threshold is
annotated ``warn``.
"""

from __future__ import annotations

import logging
import time

import httpx

from cutover.models import ProbeResult, Subsystem
from cutover.observability import ATTR_SUBSYSTEM, Tracer, create_tracer

logger = logging.getLogger(__name__)


class HttpProbe:
    """
    Probe an HTTP endpoint.

    Args:
        client: Shared httpx.AsyncClient
        url: Endpoint to GET (e.g., "https://app.example.com/api/health")
        subsystem: Subsystem reported in results (default APPLICATION)
        slow_threshold_ms: Responses slower than this are annotated warn
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        subsystem: Subsystem = Subsystem.APPLICATION,
        slow_threshold_ms: float = 1000.0,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self.subsystem = subsystem
        self._client = client
        self._url = url
        self._slow_threshold_ms = slow_threshold_ms
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def probe(self) -> ProbeResult:
        with self._tracer.span(
            "cutover.probe.http",
            {ATTR_SUBSYSTEM: self.subsystem.value, "http.url": self._url},
        ):
            start = time.perf_counter()
            try:
                response = await self._client.get(self._url)
            except httpx.HTTPError as e:
                logger.warning("HTTP probe %s failed: %s", self._url, e)
                return ProbeResult.failed(f"{type(e).__name__}: {e}")
            elapsed_ms = (time.perf_counter() - start) * 1000

            if not response.is_success:
                return ProbeResult.failed(f"HTTP {response.status_code} from {self._url}")
            if elapsed_ms > self._slow_threshold_ms:
                return ProbeResult.warned(
                    f"slow response: {elapsed_ms:.0f}ms > {self._slow_threshold_ms:.0f}ms"
                )
            return ProbeResult.passed(f"HTTP {response.status_code} in {elapsed_ms:.0f}ms")


__all__ = ["HttpProbe"]
