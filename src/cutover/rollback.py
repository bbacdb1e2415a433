"""
Rollback coordinator - restores a run's original configuration.

Given a run whose ``original_config`` was captured before the first
mutation, the coordinator brings every touched subsystem back:

    1. Registry keys and completed steps are grouped by subsystem and
       handled in a fixed order, routing first, so traffic is pointed back
       at the original backends before anything behind them is touched.
    2. For each subsystem whose keys drifted, the registry entries are
       written back (the dual-write flag through the DualWriteController)
       and the subsystem adapter applies the inverse action.
    3. Completed steps that acted only through an adapter (stop-rebuild,
       clear-target, restore-deleted-objects, ...) are undone in reverse
       step order with ``apply_rollback(step.action, params)``.
    4. Any in-flight migration or replication process is stopped.

Properties:
    - No snapshot, no calls: an empty ``original_config`` raises
      NoSnapshotAvailableError before any subsystem is touched.
    - Idempotent: keys already equal to their original value are skipped
      and undone steps are marked under ``steps.<name>`` in
      ``rollback_config``, so a second rollback issues zero mutations.
    - Best-effort: a failing subsystem is recorded and the sweep continues;
      the result lists every subsystem that was not reverted.

The coordinator only reads ``original_config`` and ``steps`` and writes
``rollback_config`` and ``rollback_failures`` on the run.

Usage:
    >>> coordinator = RollbackCoordinator(registry, adapters, dual_write)
    >>> result = await coordinator.rollback(run)
    >>> result.success, result.failures
    (True, {})
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Mapping
from typing import Any, TypeVar

from cutover.adapters import SubsystemAdapter
from cutover.dual_write import DualWriteController
from cutover.exceptions import NoSnapshotAvailableError, RollbackPartialFailure
from cutover.models import (
    ROLLBACK_ORDER,
    MigrationRun,
    RollbackResult,
    StepAction,
    StepStatus,
    Subsystem,
)
from cutover.observability import (
    ATTR_ROLLBACK_FAILED_SUBSYSTEMS,
    ATTR_ROLLBACK_MUTATIONS,
    ATTR_RUN_ID,
    ATTR_SUBSYSTEM,
    Tracer,
    create_tracer,
)
from cutover.phases import CATALOGUE, StepDefinition
from cutover.repositories import ConfigRegistry
from cutover.snapshot import SNAPSHOT_KEYS

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RESTORE_ACTION: dict[Subsystem, StepAction] = {
    Subsystem.ROUTING_LAYER: StepAction.UPDATE_ROUTING,
    Subsystem.APPLICATION: StepAction.REVERT_CONFIG,
    Subsystem.OBJECT_STORAGE: StepAction.REVERT_CONFIG,
    Subsystem.CACHE: StepAction.REVERT_CONFIG,
    Subsystem.DATABASE: StepAction.REVERT_CONFIG,
}

_MIGRATING_SUBSYSTEMS = (Subsystem.DATABASE, Subsystem.OBJECT_STORAGE, Subsystem.CACHE)

_REVISION_KEY = "application.revision"

_STEP_MARKER = "steps."

# Registry restore covers the dual-write toggle; verify steps change nothing.
_NO_UNDO_ACTIONS = frozenset(
    {StepAction.TOGGLE_DUAL_WRITE, StepAction.VERIFY_SUBSYSTEM, StepAction.VERIFY_INTEGRITY}
)


class RollbackCoordinator:
    """
    Computes and executes the inverse of a run.

    Args:
        registry: Shared configuration registry
        adapters: Subsystem adapters used for inverse actions
        dual_write: Controller used to restore the dual-write flag
        action_timeout_seconds: Timeout applied to every call
        key_subsystems: Registry key to owning subsystem
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        registry: ConfigRegistry,
        adapters: Mapping[Subsystem, SubsystemAdapter],
        dual_write: DualWriteController,
        action_timeout_seconds: float = 300.0,
        key_subsystems: Mapping[str, Subsystem] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._registry = registry
        self._adapters = dict(adapters)
        self._dual_write = dual_write
        self._timeout = action_timeout_seconds
        self._key_subsystems = dict(key_subsystems or SNAPSHOT_KEYS)
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def rollback(self, run: MigrationRun) -> RollbackResult:
        """
        Restore every subsystem present in ``run.original_config``.

        Args:
            run: The run to roll back

        Returns:
            RollbackResult listing reverted, unchanged and failed subsystems

        Raises:
            NoSnapshotAvailableError: If the run has no original config
        """
        if not run.original_config:
            raise NoSnapshotAvailableError(run.id)

        with self._tracer.span("cutover.rollback", {ATTR_RUN_ID: str(run.id)}):
            result = RollbackResult(run_id=run.id)
            groups = self.group_keys(run.original_config)
            undo = self.steps_to_undo(run)

            for subsystem in ROLLBACK_ORDER:
                keys = groups.get(subsystem, [])
                steps = undo.get(subsystem, [])
                if not keys and not steps:
                    continue
                try:
                    changed = await self._revert_subsystem(subsystem, keys, steps, run, result)
                except Exception as e:
                    error = str(e) or type(e).__name__
                    logger.error("Rollback of %s failed: %s", subsystem.value, error)
                    result.failures[subsystem] = error
                    run.rollback_failures[subsystem.value] = error
                    continue

                run.rollback_failures.pop(subsystem.value, None)
                if changed:
                    result.reverted.append(subsystem)
                else:
                    result.unchanged.append(subsystem)

        with self._tracer.span(
            "cutover.rollback.completed",
            {
                ATTR_RUN_ID: str(run.id),
                ATTR_ROLLBACK_MUTATIONS: result.mutations,
                ATTR_ROLLBACK_FAILED_SUBSYSTEMS: len(result.failures),
            },
        ):
            if result.failures:
                logger.error(
                    "Rollback of run %s incomplete; not reverted: %s",
                    run.id,
                    ", ".join(s.value for s in result.failures),
                )
            else:
                logger.info(
                    "Rollback of run %s complete (%d mutations)", run.id, result.mutations
                )
            return result

    async def rollback_or_raise(self, run: MigrationRun) -> RollbackResult:
        """
        Roll back and raise when any subsystem was not reverted.

        Raises:
            NoSnapshotAvailableError: If the run has no original config
            RollbackPartialFailure: If one or more subsystems failed
        """
        result = await self.rollback(run)
        if result.failures:
            raise RollbackPartialFailure(dict(result.failures), run_id=run.id)
        return result

    def group_keys(self, config: Mapping[str, Any]) -> dict[Subsystem, list[str]]:
        """Group snapshot keys by owning subsystem; unknown keys go to APPLICATION."""
        groups: dict[Subsystem, list[str]] = {}
        for key in config:
            subsystem = self._key_subsystems.get(key, Subsystem.APPLICATION)
            groups.setdefault(subsystem, []).append(key)
        return groups

    def steps_to_undo(self, run: MigrationRun) -> dict[Subsystem, list[StepDefinition]]:
        """
        Completed adapter-only steps per target subsystem, latest first.

        Steps that write registry keys are left out: restoring the keys and
        the subsystem's restore action already reverts them.
        """
        definitions = {d.name: d for d in CATALOGUE.get(run.phase, ())}
        undo: dict[Subsystem, list[StepDefinition]] = {}
        for step in reversed(run.steps):
            if step.status is not StepStatus.COMPLETED or step.action in _NO_UNDO_ACTIONS:
                continue
            definition = definitions.get(step.name) or StepDefinition(
                step.name, step.action, step.subsystem
            )
            if definition.config_keys:
                continue
            for subsystem in definition.target_subsystems:
                undo.setdefault(subsystem, []).append(definition)
        return undo

    async def _revert_subsystem(
        self,
        subsystem: Subsystem,
        keys: list[str],
        steps: list[StepDefinition],
        run: MigrationRun,
        result: RollbackResult,
    ) -> bool:
        with self._tracer.span("cutover.rollback.subsystem", {ATTR_SUBSYSTEM: subsystem.value}):
            drifted: dict[str, Any] = {}
            for key in keys:
                current = await self._call(self._registry.get(key))
                if current != run.original_config[key]:
                    drifted[key] = run.original_config[key]

            pending = [
                step
                for step in steps
                if subsystem.value not in run.rollback_config.get(_STEP_MARKER + step.name, [])
            ]
            restore = bool(drifted) or subsystem.value in run.rollback_failures
            if not restore and not pending:
                return False

            for key, original in drifted.items():
                if key == self._dual_write.flag_key and isinstance(original, bool):
                    await self._call(self._dual_write.set_active(original))
                else:
                    await self._call(self._registry.set(key, original))
                run.rollback_config[key] = original
                result.mutations += 1
                logger.info("Restored %s to %r", key, original)

            adapter = self._adapters.get(subsystem)
            if adapter is None:
                logger.debug("No adapter for %s; registry restore only", subsystem.value)
                return restore

            values = {k: run.original_config[k] for k in keys}
            params: dict[str, Any] = {"run_id": str(run.id)}
            params.update({k.replace(".", "_"): v for k, v in values.items()})

            if restore:
                action = _RESTORE_ACTION[subsystem]
                if subsystem is Subsystem.APPLICATION and _REVISION_KEY in values:
                    action = StepAction.ROLL_BACK_DEPLOYMENT
                await self._call(adapter.apply_rollback(action, params))
                result.mutations += 1

            for step in pending:
                step_params = {**params, **step.params, "step": step.name}
                await self._call(adapter.apply_rollback(step.action, step_params))
                run.rollback_config.setdefault(_STEP_MARKER + step.name, []).append(
                    subsystem.value
                )
                result.mutations += 1
                logger.info("Undid step %s on %s", step.name, subsystem.value)

            if restore and subsystem in _MIGRATING_SUBSYSTEMS:
                await self._call(
                    adapter.apply_rollback(StepAction.STOP_MIGRATION_PROCESS, params)
                )
                result.mutations += 1
            return True

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self._timeout)


__all__ = ["RollbackCoordinator"]
