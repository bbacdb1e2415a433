"""
Data models for the cutover orchestrator.

Models in this module:

Enums:
    - MigrationPhase: Phase selectors a run can target
    - RunStatus: Overall status of a migration run
    - StepStatus: Status of a single step
    - StepAction: The fixed set of actions a step can perform
    - Subsystem: Monitored and mutated backing subsystems
    - ProbeOutcome: Result classification of a health probe
    - RunOutcome: Terminal classification of a run, mapped to an exit code

Core Models:
    - Step: One entry in a run's ordered step list
    - MigrationRun: The run record, also the audit trail
    - ProbeResult / HealthSnapshot / StabilityResult: Health verification
    - RollbackResult: What a rollback reverted and what it could not
    - DualWriteStatus: Current dual-write mode
    - ExecuteOptions / ExecutionResult: Orchestrator input and output
    - RunSummary: Payload delivered to reporting sinks
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from cutover.exceptions import UnknownPhaseError


def utcnow() -> datetime:
    """Timezone-aware current time used for every timestamp in a run."""
    return datetime.now(UTC)


class MigrationPhase(Enum):
    """
    Phase selectors accepted by the orchestrator.

    Each phase maps to a fixed, ordered list of steps in the step
    catalogue. FULL reverts every subsystem in dependency order.
    """

    DATABASE = "database"
    """Stop replication and return to the source database."""

    OBJECT_STORAGE = "object-storage"
    """Stop object migration and point the application at the source bucket."""

    CACHE = "cache"
    """Stop the cache rebuild and restore the source cache."""

    APPLICATION = "application"
    """Restore application configuration and redeploy the previous revision."""

    ROUTING = "routing"
    """Revert DNS records and health checks."""

    FULL = "full"
    """All of the above, routing first."""

    @classmethod
    def parse(cls, value: str | MigrationPhase) -> MigrationPhase:
        """
        Parse a phase selector.

        Args:
            value: Selector string (e.g., "object-storage") or a phase.

        Returns:
            The matching MigrationPhase.

        Raises:
            UnknownPhaseError: If the selector is not a known phase.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnknownPhaseError(str(value)) from None


class RunStatus(Enum):
    """
    Overall status of a migration run.

    Transitions:
        STARTED -> IN_PROGRESS -> COMPLETED
        STARTED | IN_PROGRESS -> FAILED
    """

    STARTED = "started"
    """Run created, nothing executed yet."""

    IN_PROGRESS = "in_progress"
    """Steps are executing."""

    COMPLETED = "completed"
    """All steps completed and verification passed."""

    FAILED = "failed"
    """A step failed, verification failed, or the run was interrupted."""

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class StepStatus(Enum):
    """Status of a single step."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Subsystem(Enum):
    """
    Backing subsystems monitored by probes and mutated by steps.

    Every health check reports one outcome per member, so the orchestrator
    can apply a uniform "all healthy" predicate.
    """

    DATABASE = "database"
    CACHE = "cache"
    OBJECT_STORAGE = "object_storage"
    APPLICATION = "application"
    ROUTING_LAYER = "routing_layer"


ROLLBACK_ORDER: tuple[Subsystem, ...] = (
    Subsystem.ROUTING_LAYER,
    Subsystem.APPLICATION,
    Subsystem.OBJECT_STORAGE,
    Subsystem.CACHE,
    Subsystem.DATABASE,
)
"""Order in which subsystems are restored; routing always comes first."""


class ProbeOutcome(Enum):
    """
    Outcome of a single health probe.

    WARN is an annotation on a passing probe: it is reported but does not
    count toward the consecutive-failure threshold.
    """

    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"

    @property
    def is_failure(self) -> bool:
        return self is ProbeOutcome.FAIL


class StepAction(Enum):
    """The fixed set of actions a step can perform."""

    STOP_MIGRATION_PROCESS = "stop-migration-process"
    """Stop an in-flight migration or replication process."""

    TOGGLE_DUAL_WRITE = "toggle-dual-write"
    """Enable or disable dual-write through the registry flag."""

    VERIFY_SUBSYSTEM = "verify-subsystem"
    """Probe one subsystem; a failing probe fails the step."""

    REVERT_CONFIG = "revert-config"
    """Write target values into the configuration registry."""

    RESTORE_OBJECT = "restore-object"
    """Restore or clear data held by a subsystem."""

    UPDATE_ROUTING = "update-routing"
    """Point routing records or health checks at a target."""

    ROLL_BACK_DEPLOYMENT = "roll-back-deployment"
    """Redeploy the previous application revision."""

    VERIFY_INTEGRITY = "verify-integrity"
    """Probe every subsystem; any failing probe fails the step."""

    @property
    def is_mutating(self) -> bool:
        """Check if the action changes external state."""
        return self not in (StepAction.VERIFY_SUBSYSTEM, StepAction.VERIFY_INTEGRITY)


class RunOutcome(Enum):
    """
    Terminal classification of a run.

    Each outcome maps to exactly one process exit code, so every terminal
    state can be told apart from the exit code and from the artifact.
    """

    SUCCEEDED = "succeeded"
    """All steps completed and verification passed."""

    DRY_RUN = "dry_run"
    """Plan was built and reported; nothing executed."""

    ROLLED_BACK = "rolled_back"
    """The run failed and every subsystem was reverted."""

    ROLLBACK_SKIPPED = "rollback_skipped"
    """The run failed and rollback was suppressed (force or disabled)."""

    ROLLBACK_FAILED = "rollback_failed"
    """The run failed and rollback could not revert every subsystem."""

    @property
    def exit_code(self) -> int:
        if self in (RunOutcome.SUCCEEDED, RunOutcome.DRY_RUN):
            return 0
        if self is RunOutcome.ROLLBACK_FAILED:
            return 2
        return 1


@dataclass
class Step:
    """
    One entry in a run's ordered step list.

    Attributes:
        name: Step name from the phase's catalogue.
        action: Action the step performs.
        subsystem: Subsystem the action targets.
        status: Current status.
        started_at: When the step started running.
        completed_at: When the step completed or failed.
        error: Captured error for a failed step.
    """

    name: str
    action: StepAction
    subsystem: Subsystem
    status: StepStatus = StepStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None

    def mark_running(self) -> None:
        self.status = StepStatus.RUNNING
        self.started_at = utcnow()

    def mark_completed(self) -> None:
        self.status = StepStatus.COMPLETED
        self.completed_at = utcnow()

    def mark_failed(self, error: str) -> None:
        self.status = StepStatus.FAILED
        self.completed_at = utcnow()
        self.error = error


@dataclass
class MigrationRun:
    """
    A single orchestration run.

    Created at orchestration start and mutated in place as steps execute.
    The orchestrator owns it for the run's lifetime; the rollback
    coordinator only reads ``original_config`` and writes
    ``rollback_config`` and ``rollback_failures``.

    Attributes:
        phase: Phase selector the run targets.
        environment: Environment tag (e.g., "production").
        id: Unique run identifier.
        status: Overall status.
        steps: Ordered step list.
        original_config: Registry values captured before the first mutation.
        rollback_config: Values written back during rollback.
        started_at: When the run was created.
        completed_at: When the run reached a terminal status.
        error: Run-level failure reason (e.g., "interrupted").
        outcome: Terminal classification, set once the run ends.
        rollback_failures: Subsystem name to error for unreverted subsystems.
        plan_version: Version of the step catalogue the plan was built from.
    """

    phase: MigrationPhase
    environment: str
    id: UUID = field(default_factory=uuid4)
    status: RunStatus = RunStatus.STARTED
    steps: list[Step] = field(default_factory=list)
    original_config: dict[str, Any] = field(default_factory=dict)
    rollback_config: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    error: str | None = None
    outcome: RunOutcome | None = None
    rollback_failures: dict[str, str] = field(default_factory=dict)
    plan_version: int = 1

    @property
    def has_snapshot(self) -> bool:
        return bool(self.original_config)

    @property
    def failed_step(self) -> Step | None:
        """The first failed step, if any."""
        for step in self.steps:
            if step.status is StepStatus.FAILED:
                return step
        return None

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def steps_with_status(self, status: StepStatus) -> list[Step]:
        return [step for step in self.steps if step.status is status]

    def finish(self, status: RunStatus, error: str | None = None) -> None:
        """Move the run to a terminal status."""
        self.status = status
        self.completed_at = utcnow()
        if error is not None:
            self.error = error


@dataclass(frozen=True)
class ProbeResult:
    """
    Result of one health probe.

    Attributes:
        outcome: pass, warn or fail.
        detail: Human-readable detail (error message, latency, counts).
    """

    outcome: ProbeOutcome
    detail: str = ""

    @classmethod
    def passed(cls, detail: str = "") -> ProbeResult:
        return cls(ProbeOutcome.PASS, detail)

    @classmethod
    def warned(cls, detail: str) -> ProbeResult:
        return cls(ProbeOutcome.WARN, detail)

    @classmethod
    def failed(cls, detail: str) -> ProbeResult:
        return cls(ProbeOutcome.FAIL, detail)


@dataclass(frozen=True)
class HealthSnapshot:
    """
    Per-subsystem probe outcomes captured at one point in time.

    Attributes:
        results: Probe result for each monitored subsystem.
        captured_at: When the probes were joined.
    """

    results: dict[Subsystem, ProbeResult]
    captured_at: datetime = field(default_factory=utcnow)

    @property
    def healthy(self) -> bool:
        """True when no subsystem reports FAIL; WARN is still healthy."""
        return not any(r.outcome.is_failure for r in self.results.values())

    @property
    def failing(self) -> list[Subsystem]:
        return [s for s, r in self.results.items() if r.outcome.is_failure]

    @property
    def warnings(self) -> list[Subsystem]:
        return [s for s, r in self.results.items() if r.outcome is ProbeOutcome.WARN]

    def to_dict(self) -> dict[str, Any]:
        return {
            "capturedAt": self.captured_at.isoformat(),
            "healthy": self.healthy,
            "results": {
                s.value: {"outcome": r.outcome.value, "detail": r.detail}
                for s, r in self.results.items()
            },
        }


@dataclass(frozen=True)
class StabilityResult:
    """
    Result of a stability poll.

    Attributes:
        stable: Whether the poll concluded the system is stable.
        history: Snapshots kept in the bounded window, oldest first.
        attempts: Number of ``check_all`` rounds performed.
    """

    stable: bool
    history: list[HealthSnapshot]
    attempts: int


@dataclass
class RollbackResult:
    """
    What a rollback did.

    Attributes:
        run_id: The run that was rolled back.
        reverted: Subsystems that were brought back to their original config.
        unchanged: Subsystems that already matched their original config.
        failures: Subsystems that could not be reverted, with the error.
        mutations: Number of mutating calls issued.
    """

    run_id: UUID
    reverted: list[Subsystem] = field(default_factory=list)
    unchanged: list[Subsystem] = field(default_factory=list)
    failures: dict[Subsystem, str] = field(default_factory=dict)
    mutations: int = 0

    @property
    def success(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class DualWriteStatus:
    """Current dual-write mode as read from the registry."""

    active: bool
    flag_key: str


@dataclass(frozen=True)
class ExecuteOptions:
    """
    Options for a single orchestrator execution.

    Attributes:
        dry_run: Build and report the plan without any side effect.
        skip_verification: Skip the integrity step and the final stability poll.
        force: Suppress automatic rollback on failure.
        backup_state: Capture the configuration snapshot before mutating.
    """

    dry_run: bool = False
    skip_verification: bool = False
    force: bool = False
    backup_state: bool = True


@dataclass
class ExecutionResult:
    """
    Outcome of ``CutoverOrchestrator.execute``.

    Attributes:
        run: The run record (not persisted for dry runs).
        outcome: Terminal classification.
        plan: Ordered step names that were (or would have been) executed.
        rollback: Rollback result, when a rollback ran.
        verification: Final stability poll, when it ran.
        artifact_location: Where the terminal artifact was persisted.
        problems: Validation problems found by a dry run.
    """

    run: MigrationRun
    outcome: RunOutcome
    plan: list[str]
    rollback: RollbackResult | None = None
    verification: StabilityResult | None = None
    artifact_location: str | None = None
    problems: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return self.outcome.exit_code


@dataclass(frozen=True)
class RunSummary:
    """
    Summary delivered to reporting sinks when a run ends.

    Attributes:
        success: Whether the run completed.
        environment: Environment tag.
        started_at: Run start.
        completed_at: Run end.
        duration_seconds: Elapsed seconds.
        run_id: Run identifier.
        phase: Phase selector.
        outcome: Terminal classification.
    """

    success: bool
    environment: str
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    run_id: UUID
    phase: MigrationPhase
    outcome: RunOutcome

    @classmethod
    def from_run(cls, run: MigrationRun) -> RunSummary:
        completed_at = run.completed_at or utcnow()
        return cls(
            success=run.status is RunStatus.COMPLETED,
            environment=run.environment,
            started_at=run.started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - run.started_at).total_seconds(),
            run_id=run.id,
            phase=run.phase,
            outcome=run.outcome or RunOutcome.ROLLBACK_SKIPPED,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "environment": self.environment,
            "startTime": self.started_at.isoformat(),
            "endTime": self.completed_at.isoformat(),
            "duration": self.duration_seconds,
            "runId": str(self.run_id),
            "phase": self.phase.value,
            "outcome": self.outcome.value,
        }


__all__ = [
    "utcnow",
    "MigrationPhase",
    "RunStatus",
    "StepStatus",
    "Subsystem",
    "ROLLBACK_ORDER",
    "ProbeOutcome",
    "StepAction",
    "RunOutcome",
    "Step",
    "MigrationRun",
    "ProbeResult",
    "HealthSnapshot",
    "StabilityResult",
    "RollbackResult",
    "DualWriteStatus",
    "ExecuteOptions",
    "ExecutionResult",
    "RunSummary",
]
