"""
Versioned step catalogue and plan building.

Each phase has a fixed, ordered list of steps. The order is the dependency
graph: a step only starts once its predecessor completed, and nothing runs
in parallel. Bumping PLAN_VERSION is required whenever a list changes, so
an artifact always says which catalogue its steps came from.

Steps that write configuration name the registry keys they write. The
values come from the run's target configuration; a plan is only valid
when every such key has a target value.

Example:
    >>> plan = build_plan(MigrationPhase.CACHE, {"cache.url": "redis://old:6379/0"})
    >>> plan.step_names
    ['stop-rebuild', 'clear-target', 'restore-source', 'update-app-config']
    >>> plan.validate()
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from cutover.exceptions import MissingTargetConfigError, UnmappedActionError
from cutover.models import ExecuteOptions, MigrationPhase, Step, StepAction, Subsystem

PLAN_VERSION = 1


@dataclass(frozen=True)
class StepDefinition:
    """
    Catalogue entry for one step.

    Attributes:
        name: Step name, unique within its phase.
        action: Action the step performs.
        subsystem: Subsystem recorded for the step.
        config_keys: Registry keys the step writes from the target config.
        params: Static parameters passed to the subsystem adapter.
        targets: Subsystems the action is applied to (defaults to subsystem).
    """

    name: str
    action: StepAction
    subsystem: Subsystem
    config_keys: tuple[str, ...] = ()
    params: Mapping[str, Any] = field(default_factory=dict)
    targets: tuple[Subsystem, ...] = ()

    @property
    def target_subsystems(self) -> tuple[Subsystem, ...]:
        return self.targets or (self.subsystem,)

    def to_step(self) -> Step:
        return Step(name=self.name, action=self.action, subsystem=self.subsystem)


_STOP = StepAction.STOP_MIGRATION_PROCESS
_ROUTING_KEYS = ("routing.primary_target", "routing.api_target")

CATALOGUE: dict[MigrationPhase, tuple[StepDefinition, ...]] = {
    MigrationPhase.DATABASE: (
        StepDefinition(
            "stop-replication", _STOP, Subsystem.DATABASE,
            params={"process": "database-replication"},
        ),
        StepDefinition(
            "disable-dual-write", StepAction.TOGGLE_DUAL_WRITE, Subsystem.DATABASE,
            params={"active": False},
        ),
        StepDefinition("verify-source-database", StepAction.VERIFY_SUBSYSTEM, Subsystem.DATABASE),
        StepDefinition(
            "cleanup-replication-resources", _STOP, Subsystem.DATABASE,
            params={"process": "replication-resources"},
        ),
    ),
    MigrationPhase.OBJECT_STORAGE: (
        StepDefinition(
            "stop-migration", _STOP, Subsystem.OBJECT_STORAGE,
            params={"process": "object-migration"},
        ),
        StepDefinition(
            "revert-app-config", StepAction.REVERT_CONFIG, Subsystem.OBJECT_STORAGE,
            config_keys=("storage.bucket",),
        ),
        StepDefinition(
            "restore-deleted-objects", StepAction.RESTORE_OBJECT, Subsystem.OBJECT_STORAGE,
            params={"operation": "restore-deleted"},
        ),
        StepDefinition(
            "update-cdn-origin", StepAction.UPDATE_ROUTING, Subsystem.OBJECT_STORAGE,
            config_keys=("storage.cdn_origin",),
        ),
    ),
    MigrationPhase.CACHE: (
        StepDefinition(
            "stop-rebuild", _STOP, Subsystem.CACHE,
            params={"process": "cache-rebuild"},
        ),
        StepDefinition(
            "clear-target", StepAction.RESTORE_OBJECT, Subsystem.CACHE,
            params={"operation": "clear-target"},
        ),
        StepDefinition(
            "restore-source", StepAction.RESTORE_OBJECT, Subsystem.CACHE,
            params={"operation": "restore-source"},
        ),
        StepDefinition(
            "update-app-config", StepAction.REVERT_CONFIG, Subsystem.CACHE,
            config_keys=("cache.url",),
        ),
    ),
    MigrationPhase.APPLICATION: (
        StepDefinition(
            "revert-environment-vars", StepAction.REVERT_CONFIG, Subsystem.APPLICATION,
            config_keys=("database.url", "cache.url", "storage.bucket"),
        ),
        StepDefinition(
            "revert-parameter-store", StepAction.REVERT_CONFIG, Subsystem.APPLICATION,
            config_keys=("database.replica_url", "feature.maintenance_mode"),
        ),
        StepDefinition(
            "rollback-deployment", StepAction.ROLL_BACK_DEPLOYMENT, Subsystem.APPLICATION,
            config_keys=("application.revision",),
        ),
    ),
    MigrationPhase.ROUTING: (
        StepDefinition(
            "revert-dns-records", StepAction.UPDATE_ROUTING, Subsystem.ROUTING_LAYER,
            config_keys=_ROUTING_KEYS,
        ),
        StepDefinition(
            "update-health-checks", StepAction.UPDATE_ROUTING, Subsystem.ROUTING_LAYER,
            params={"operation": "health-checks"},
        ),
        StepDefinition(
            "monitor-propagation", StepAction.VERIFY_SUBSYSTEM, Subsystem.ROUTING_LAYER,
        ),
    ),
    MigrationPhase.FULL: (
        StepDefinition(
            "stop-all-migrations", _STOP, Subsystem.DATABASE,
            params={"process": "all-migrations"},
            targets=(Subsystem.DATABASE, Subsystem.OBJECT_STORAGE, Subsystem.CACHE),
        ),
        StepDefinition(
            "revert-dns", StepAction.UPDATE_ROUTING, Subsystem.ROUTING_LAYER,
            config_keys=_ROUTING_KEYS,
        ),
        StepDefinition(
            "rollback-application", StepAction.ROLL_BACK_DEPLOYMENT, Subsystem.APPLICATION,
            config_keys=("application.revision",),
        ),
        StepDefinition(
            "restore-cache", StepAction.RESTORE_OBJECT, Subsystem.CACHE,
            config_keys=("cache.url",),
            params={"operation": "restore-source"},
        ),
        StepDefinition(
            "revert-storage-config", StepAction.REVERT_CONFIG, Subsystem.OBJECT_STORAGE,
            config_keys=("storage.bucket", "storage.cdn_origin"),
        ),
        StepDefinition(
            "stop-database-replication", _STOP, Subsystem.DATABASE,
            params={"process": "database-replication"},
        ),
        StepDefinition(
            "verify-system-integrity", StepAction.VERIFY_INTEGRITY, Subsystem.APPLICATION,
        ),
    ),
}
"""Ordered step definitions per phase (PLAN_VERSION 1)."""


@dataclass(frozen=True)
class Plan:
    """
    Ordered steps for one phase, checked against a target configuration.

    Attributes:
        phase: Phase the plan was built for.
        steps: Step definitions in execution order.
        target_config: Values config-writing steps will write.
        missing: Step name to registry keys without a target value.
        version: Catalogue version.
    """

    phase: MigrationPhase
    steps: tuple[StepDefinition, ...]
    target_config: Mapping[str, Any]
    missing: Mapping[str, list[str]]
    version: int = PLAN_VERSION

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]

    @property
    def problems(self) -> list[str]:
        return [
            f"step {name!r} has no target value for: {', '.join(keys)}"
            for name, keys in self.missing.items()
        ]

    def validate(self) -> None:
        """
        Raise if any config-writing step lacks a target value.

        Raises:
            MissingTargetConfigError: With every incomplete step listed
        """
        if self.missing:
            raise MissingTargetConfigError(dict(self.missing))

    def values_for(self, step: StepDefinition) -> dict[str, Any]:
        return {key: self.target_config[key] for key in step.config_keys}


def build_plan(
    phase: MigrationPhase | str,
    target_config: Mapping[str, Any] | None = None,
    catalogue: Mapping[MigrationPhase, tuple[StepDefinition, ...]] | None = None,
) -> Plan:
    """
    Build the ordered plan for a phase.

    Args:
        phase: Phase or phase selector string
        target_config: Values for config-writing steps
        catalogue: Step catalogue (defaults to CATALOGUE)

    Returns:
        Plan; call ``validate()`` before executing it

    Raises:
        UnknownPhaseError: If the selector is not a known phase
    """
    phase = MigrationPhase.parse(phase)
    target_config = dict(target_config or {})
    steps = (catalogue or CATALOGUE)[phase]

    missing: dict[str, list[str]] = {}
    for step in steps:
        absent = [key for key in step.config_keys if key not in target_config]
        if absent:
            missing[step.name] = absent

    return Plan(phase=phase, steps=steps, target_config=target_config, missing=missing)


StepHandler = Callable[[StepDefinition, Plan, ExecuteOptions], Awaitable[None]]


def build_dispatch_table(
    steps: tuple[StepDefinition, ...],
    handlers: Mapping[StepAction, StepHandler],
) -> dict[str, StepHandler]:
    """
    Map every step name to the handler for its action.

    Raises:
        UnmappedActionError: If a step's action has no handler
    """
    table: dict[str, StepHandler] = {}
    for step in steps:
        handler = handlers.get(step.action)
        if handler is None:
            raise UnmappedActionError(step.action.value, step.name)
        table[step.name] = handler
    return table


def adapter_params(step: StepDefinition, values: Mapping[str, Any]) -> dict[str, Any]:
    """
    Parameters passed to a subsystem adapter for a step.

    Written registry values are exposed with dots replaced by underscores
    (``routing.primary_target`` becomes ``routing_primary_target``) so
    they can be used in command templates.
    """
    params: dict[str, Any] = {"step": step.name, **step.params}
    for key, value in values.items():
        params[key.replace(".", "_")] = value
    return params


__all__ = [
    "PLAN_VERSION",
    "CATALOGUE",
    "StepDefinition",
    "Plan",
    "StepHandler",
    "build_plan",
    "build_dispatch_table",
    "adapter_params",
]
