"""
State snapshotter - captures configuration before any mutation.

The snapshot is pure data capture: every key in the versioned catalogue is
read verbatim from the configuration registry, with no interpretation.
Keys the registry does not hold are recorded as None so that rollback can
tell "was unset" apart from "was not captured".
"""

from __future__ import annotations

import logging
from typing import Any

from cutover.models import MigrationRun, Subsystem
from cutover.observability import ATTR_ENVIRONMENT, ATTR_RUN_ID, Tracer, create_tracer
from cutover.repositories import AuditArtifactStore, ConfigRegistry

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

SNAPSHOT_KEYS: dict[str, Subsystem] = {
    "routing.primary_target": Subsystem.ROUTING_LAYER,
    "routing.api_target": Subsystem.ROUTING_LAYER,
    "database.url": Subsystem.DATABASE,
    "database.replica_url": Subsystem.DATABASE,
    "cache.url": Subsystem.CACHE,
    "storage.bucket": Subsystem.OBJECT_STORAGE,
    "storage.cdn_origin": Subsystem.OBJECT_STORAGE,
    "application.revision": Subsystem.APPLICATION,
    "feature.dual_write_enabled": Subsystem.DATABASE,
    "feature.maintenance_mode": Subsystem.APPLICATION,
}
"""Registry keys captured by a snapshot, and the subsystem each belongs to."""


def subsystem_for_key(key: str) -> Subsystem | None:
    return SNAPSHOT_KEYS.get(key)


class StateSnapshotter:
    """
    Captures registry state and persists run artifacts.

    Args:
        registry: Configuration registry to read from
        store: Artifact store runs are persisted to
        keys: Keys to capture (defaults to SNAPSHOT_KEYS)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        registry: ConfigRegistry,
        store: AuditArtifactStore,
        keys: list[str] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._registry = registry
        self._store = store
        self._keys = list(keys) if keys is not None else list(SNAPSHOT_KEYS)
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    @property
    def keys(self) -> list[str]:
        return list(self._keys)

    async def capture(self) -> dict[str, Any]:
        """
        Read every catalogued key from the registry.

        Returns:
            Key to value map, in catalogue order
        """
        with self._tracer.span(
            "cutover.snapshot.capture",
            {"cutover.snapshot.keys": len(self._keys)},
        ):
            config = {key: await self._registry.get(key) for key in self._keys}
            logger.info(
                "Captured %d configuration keys (snapshot v%d)",
                len(config),
                SNAPSHOT_VERSION,
            )
            return config

    async def persist(self, run: MigrationRun) -> str:
        """
        Write the full run as a new immutable artifact.

        Returns:
            Artifact location
        """
        with self._tracer.span(
            "cutover.snapshot.persist",
            {
                ATTR_RUN_ID: str(run.id),
                ATTR_ENVIRONMENT: run.environment,
            },
        ):
            return await self._store.persist(run)


__all__ = [
    "SNAPSHOT_VERSION",
    "SNAPSHOT_KEYS",
    "subsystem_for_key",
    "StateSnapshotter",
]
