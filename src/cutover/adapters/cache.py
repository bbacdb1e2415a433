"""
Cache health probe backed by redis-py's asyncio client.

PING checks reachability. With a target client configured, the probe also
compares key counts (DBSIZE) between source and target caches; a drift
above ``max_key_drift`` fails the probe.
"""

from __future__ import annotations

import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from cutover.models import ProbeResult, Subsystem
from cutover.observability import ATTR_SUBSYSTEM, Tracer, create_tracer

logger = logging.getLogger(__name__)


class RedisProbe:
    """
    Probe a Redis cache.

    Args:
        client: Client for the cache the application currently uses
        target_client: Client for the replacement cache (optional)
        max_key_drift: Allowed absolute difference in key counts
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing

    Example:
        >>> import redis.asyncio as aioredis
        >>> probe = RedisProbe(aioredis.from_url("redis://old:6379/0"))
        >>> await probe.probe()
        ProbeResult(outcome=<ProbeOutcome.PASS: 'pass'>, detail='PONG')
    """

    def __init__(
        self,
        client: Redis,
        target_client: Redis | None = None,
        max_key_drift: int = 0,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if max_key_drift < 0:
            raise ValueError(f"max_key_drift must be >= 0, got {max_key_drift}")
        self.subsystem = Subsystem.CACHE
        self._client = client
        self._target_client = target_client
        self._max_key_drift = max_key_drift
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def probe(self) -> ProbeResult:
        with self._tracer.span("cutover.probe.cache", {ATTR_SUBSYSTEM: self.subsystem.value}):
            try:
                if not await self._client.ping():
                    return ProbeResult.failed("PING returned false")

                if self._target_client is None:
                    return ProbeResult.passed("PONG")

                source = int(await self._client.dbsize())
                target = int(await self._target_client.dbsize())
            except (RedisError, OSError) as e:
                logger.warning("Cache probe failed: %s", e)
                return ProbeResult.failed(str(e))

            drift = abs(source - target)
            detail = f"keys source={source} target={target}"
            if drift > self._max_key_drift:
                return ProbeResult.failed(f"key count mismatch: {detail}")
            return ProbeResult.passed(detail)


__all__ = ["RedisProbe"]
