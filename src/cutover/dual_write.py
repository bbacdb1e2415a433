"""
Dual-write replication controller.

Dual-write is the transitional mode in which every application write lands
in both the old and the new data store. The mode is a single flag in the
shared configuration registry; the application reads that flag on every
write, so toggling it is the whole switch.

Guarantees:
    - Toggles are serialized through one lock per controller.
    - Every toggle is confirmed by reading the flag back before returning.
      Once ``enable()`` returns, every subsequent write is duplicated; once
      ``disable()`` returns, none is.
    - Replication correctness is not checked here. The database and cache
      probes compare row and key counts between old and new stores.

This module also provides DualWriteInterceptor, the write path an
application (or a test) uses to honour the flag: the source write is
authoritative, the target write is best-effort and failures are tracked
for later catch-up.

Usage:
    >>> controller = DualWriteController(registry)
    >>> await controller.enable()
    >>> (await controller.status()).active
    True
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from cutover.exceptions import DualWriteError
from cutover.models import DualWriteStatus, utcnow
from cutover.observability import Tracer, create_tracer
from cutover.repositories import ConfigRegistry

logger = logging.getLogger(__name__)

DUAL_WRITE_FLAG = "feature.dual_write_enabled"
"""Registry key holding the dual-write flag."""


class DualWriteController:
    """
    Toggles dual-write through the configuration registry.

    Args:
        registry: Shared configuration registry
        flag_key: Registry key of the flag (default DUAL_WRITE_FLAG)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        registry: ConfigRegistry,
        flag_key: str = DUAL_WRITE_FLAG,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._registry = registry
        self._flag_key = flag_key
        self._lock = asyncio.Lock()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    @property
    def flag_key(self) -> str:
        return self._flag_key

    async def enable(self) -> None:
        """
        Turn dual-write on.

        Raises:
            DualWriteError: If the flag does not read back as enabled
        """
        await self.set_active(True)

    async def disable(self) -> None:
        """
        Turn dual-write off.

        Raises:
            DualWriteError: If the flag does not read back as disabled
        """
        await self.set_active(False)

    async def set_active(self, active: bool) -> None:
        with self._tracer.span(
            "cutover.dual_write.toggle",
            {"cutover.dual_write.active": active},
        ):
            async with self._lock:
                await self._registry.set(self._flag_key, active)
                observed = await self._registry.get(self._flag_key)
                if observed is not active:
                    raise DualWriteError(self._flag_key, expected=active, observed=observed)
            logger.info("Dual-write %s", "enabled" if active else "disabled")

    async def status(self) -> DualWriteStatus:
        async with self._lock:
            value = await self._registry.get(self._flag_key)
        return DualWriteStatus(active=value is True, flag_key=self._flag_key)


@runtime_checkable
class WriteStore(Protocol):
    """A data store the application writes to."""

    async def write(self, key: str, value: Any) -> None: ...


@dataclass
class FailedWrite:
    """
    A write that reached the source store but not the target.

    Attributes:
        timestamp: When the target write failed.
        key: The key that was written.
        error_message: The error from the target store.
    """

    timestamp: datetime
    key: str
    error_message: str


class DualWriteInterceptor:
    """
    Application write path that honours the dual-write flag.

    Write semantics:
        - Source write must succeed, or the whole write fails
        - Target write happens only while dual-write is active, and is
          best-effort; failures are logged and tracked, never raised

    Args:
        controller: Controller whose flag decides whether to duplicate
        source: The authoritative store
        target: The replacement store
        max_failure_history: Number of failed target writes to keep
    """

    def __init__(
        self,
        controller: DualWriteController,
        source: WriteStore,
        target: WriteStore,
        *,
        max_failure_history: int = 1000,
    ) -> None:
        self._controller = controller
        self._source = source
        self._target = target
        self._max_failure_history = max_failure_history
        self._failed_writes: list[FailedWrite] = []

    async def write(self, key: str, value: Any) -> None:
        await self._source.write(key, value)

        if not (await self._controller.status()).active:
            return

        try:
            await self._target.write(key, value)
        except Exception as e:
            logger.warning("Target write failed for key %s: %s", key, e)
            self._record_failure(key, e)

    def get_failed_writes(self) -> list[FailedWrite]:
        return list(self._failed_writes)

    def clear_failure_history(self) -> int:
        """
        Clear the failure history.

        Returns:
            Number of failure records cleared.
        """
        count = len(self._failed_writes)
        self._failed_writes.clear()
        return count

    def _record_failure(self, key: str, error: Exception) -> None:
        self._failed_writes.append(
            FailedWrite(timestamp=utcnow(), key=key, error_message=str(error))
        )
        if len(self._failed_writes) > self._max_failure_history:
            self._failed_writes = self._failed_writes[-self._max_failure_history :]


__all__ = [
    "DUAL_WRITE_FLAG",
    "DualWriteController",
    "DualWriteInterceptor",
    "FailedWrite",
    "WriteStore",
]
