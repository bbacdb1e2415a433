"""
CutoverOrchestrator - drives one phase of a migration to a terminal outcome.

The orchestrator is the primary entry point. It builds the ordered plan
for a phase, takes the environment lease, captures the configuration
snapshot, executes steps one at a time, verifies stability, and on
failure hands the run to the RollbackCoordinator before returning.

Execution sequence:
    1. Parse the phase selector and build the plan (validation errors
       raise here, before anything is touched)
    2. Dry run: log and return the plan; nothing else happens
    3. Acquire the environment lease (RunInProgressError if held)
    4. Capture the snapshot and persist the run
    5. Execute steps strictly in order, persisting after each one
    6. Poll for stability unless verification is skipped
    7. On failure, roll back unless forced or disabled
    8. Persist the terminal run, release the lease, broadcast the summary

Interrupts:
    ``request_interrupt()`` lets the in-flight step complete, then fails
    the run with reason "interrupted". Rollback still runs if enabled.

Usage:
    >>> orchestrator = CutoverOrchestrator(
    ...     registry=registry,
    ...     store=FileAuditArtifactStore("./artifacts"),
    ...     verifier=HealthVerifier([SQLAlchemyProbe(engine)]),
    ...     environment="production",
    ...     adapters={Subsystem.CACHE: cache_adapter},
    ...     target_config={"cache.url": "redis://old-cache:6379/0"},
    ... )
    >>> result = await orchestrator.execute("cache")
    >>> result.outcome, result.exit_code
    (<RunOutcome.SUCCEEDED: 'succeeded'>, 0)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Mapping, Sequence
from typing import Any, TypeVar

from cutover.adapters import SubsystemAdapter
from cutover.config import OrchestratorConfig
from cutover.dual_write import DualWriteController
from cutover.exceptions import (
    ArtifactError,
    NoSnapshotAvailableError,
    StepExecutionError,
    ValidationError,
)
from cutover.health import HealthVerifier
from cutover.metrics import CutoverMetrics
from cutover.models import (
    ExecuteOptions,
    ExecutionResult,
    MigrationPhase,
    MigrationRun,
    RollbackResult,
    RunOutcome,
    RunStatus,
    RunSummary,
    StabilityResult,
    StepAction,
    Subsystem,
)
from cutover.observability import (
    ATTR_DRY_RUN,
    ATTR_ENVIRONMENT,
    ATTR_OUTCOME,
    ATTR_PHASE,
    ATTR_RUN_ID,
    ATTR_RUN_STATUS,
    ATTR_STEP_ACTION,
    ATTR_STEP_INDEX,
    ATTR_STEP_NAME,
    Tracer,
    create_tracer,
)
from cutover.phases import (
    CATALOGUE,
    Plan,
    StepDefinition,
    StepHandler,
    adapter_params,
    build_dispatch_table,
    build_plan,
)
from cutover.reporting import ReportingSink, broadcast
from cutover.repositories import (
    AuditArtifactStore,
    ConfigRegistry,
    EnvironmentLease,
    InMemoryEnvironmentLease,
)
from cutover.rollback import RollbackCoordinator
from cutover.snapshot import StateSnapshotter

logger = logging.getLogger(__name__)

T = TypeVar("T")

INTERRUPTED = "interrupted"
VERIFICATION_FAILED = "verification failed"

_ADAPTER_ACTIONS = frozenset(
    {
        StepAction.STOP_MIGRATION_PROCESS,
        StepAction.REVERT_CONFIG,
        StepAction.RESTORE_OBJECT,
        StepAction.UPDATE_ROUTING,
        StepAction.ROLL_BACK_DEPLOYMENT,
    }
)


class CutoverOrchestrator:
    """
    Phase state machine for one environment.

    Step dispatch tables are built for every phase at construction, so a
    catalogue action without a handler fails here rather than mid-run.

    Args:
        registry: Shared configuration registry
        store: Artifact store runs are persisted to and loaded from
        verifier: Health verifier used by verify steps and the final poll
        environment: Environment tag (e.g., "production")
        adapters: Subsystem adapters applying step actions
        lease: Environment lease (defaults to an in-process lease)
        dual_write: Dual-write controller (defaults to one on ``registry``)
        snapshotter: Snapshotter (defaults to one on ``registry``/``store``)
        rollback: Rollback coordinator (defaults to one on the same adapters)
        sinks: Reporting sinks notified when a run ends
        target_config: Values written by configuration steps
        config: Orchestrator tuning
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
        enable_metrics: Whether to record OpenTelemetry metrics
    """

    def __init__(
        self,
        registry: ConfigRegistry,
        store: AuditArtifactStore,
        verifier: HealthVerifier,
        *,
        environment: str,
        adapters: Mapping[Subsystem, SubsystemAdapter] | None = None,
        lease: EnvironmentLease | None = None,
        dual_write: DualWriteController | None = None,
        snapshotter: StateSnapshotter | None = None,
        rollback: RollbackCoordinator | None = None,
        sinks: Sequence[ReportingSink] = (),
        target_config: Mapping[str, Any] | None = None,
        config: OrchestratorConfig | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
        enable_metrics: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._enable_metrics = enable_metrics
        self._config = config or OrchestratorConfig()
        self._environment = environment

        self._registry = registry
        self._store = store
        self._verifier = verifier
        self._adapters = dict(adapters or {})
        self._lease = lease or InMemoryEnvironmentLease()
        self._dual_write = dual_write or DualWriteController(registry, tracer=self._tracer)
        self._snapshotter = snapshotter or StateSnapshotter(registry, store, tracer=self._tracer)
        self._rollback = rollback or RollbackCoordinator(
            registry,
            self._adapters,
            self._dual_write,
            action_timeout_seconds=self._config.action_timeout_seconds,
            tracer=self._tracer,
        )
        self._sinks = list(sinks)
        self._target_config = dict(target_config or {})
        self._interrupt = asyncio.Event()

        handlers: dict[StepAction, StepHandler] = {
            StepAction.STOP_MIGRATION_PROCESS: self._apply_forward,
            StepAction.TOGGLE_DUAL_WRITE: self._toggle_dual_write,
            StepAction.VERIFY_SUBSYSTEM: self._verify_subsystem,
            StepAction.REVERT_CONFIG: self._apply_forward,
            StepAction.RESTORE_OBJECT: self._apply_forward,
            StepAction.UPDATE_ROUTING: self._apply_forward,
            StepAction.ROLL_BACK_DEPLOYMENT: self._apply_forward,
            StepAction.VERIFY_INTEGRITY: self._verify_integrity,
        }
        self._dispatch: dict[MigrationPhase, dict[str, StepHandler]] = {
            phase: build_dispatch_table(steps, handlers) for phase, steps in CATALOGUE.items()
        }

    @property
    def environment(self) -> str:
        return self._environment

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    def request_interrupt(self) -> None:
        """Stop after the in-flight step; the run fails as "interrupted"."""
        if not self._interrupt.is_set():
            logger.warning("Interrupt requested; stopping after the current step")
        self._interrupt.set()

    def plan(self, phase_selector: MigrationPhase | str) -> Plan:
        """
        Build the plan for a phase against this orchestrator's target config.

        Raises:
            UnknownPhaseError: If the selector is not a known phase
        """
        return build_plan(phase_selector, self._target_config)

    def problems(self, plan: Plan) -> list[str]:
        """Everything that would make ``plan`` fail validation."""
        problems = plan.problems
        for step in plan.steps:
            if step.action not in _ADAPTER_ACTIONS:
                continue
            for subsystem in step.target_subsystems:
                if subsystem not in self._adapters:
                    problems.append(
                        f"step {step.name!r} has no adapter for subsystem {subsystem.value!r}"
                    )
        return problems

    async def execute(
        self,
        phase_selector: MigrationPhase | str,
        options: ExecuteOptions | None = None,
    ) -> ExecutionResult:
        """
        Execute a phase to a terminal outcome.

        Args:
            phase_selector: Phase or selector string (e.g., "object-storage")
            options: Dry-run, verification, force and backup switches

        Returns:
            ExecutionResult; ``exit_code`` maps the outcome to 0, 1 or 2

        Raises:
            UnknownPhaseError: If the selector is not a known phase
            MissingTargetConfigError: If a configuration step has no target value
            ValidationError: If a step's subsystem has no adapter
            RunInProgressError: If another run holds the environment lease
        """
        options = options or ExecuteOptions()
        plan = self.plan(phase_selector)

        if options.dry_run:
            return self._dry_run(plan)

        plan.validate()
        problems = self.problems(plan)
        if problems:
            raise ValidationError("; ".join(problems), environment=self._environment)

        run = MigrationRun(
            phase=plan.phase,
            environment=self._environment,
            steps=[step.to_step() for step in plan.steps],
            plan_version=plan.version,
        )
        holder = str(run.id)
        await self._lease.acquire(self._environment, holder)

        metrics = CutoverMetrics(
            run_id=holder,
            environment=self._environment,
            enable_metrics=self._enable_metrics,
        )
        metrics.run_started()
        try:
            result = await self._run(plan, run, options, metrics)
        finally:
            metrics.run_finished()
            self._interrupt.clear()
            await self._lease.release(self._environment, holder)

        await broadcast(
            self._sinks,
            RunSummary.from_run(run),
            timeout=self._config.notification_timeout_seconds,
        )
        return result

    async def rollback_artifact(self, location: str) -> ExecutionResult:
        """
        Roll back a persisted run.

        Used for crash recovery: a run whose artifact still says
        ``in_progress`` is marked failed and rolled back. Rolling back an
        already rolled-back run issues no mutations.

        Args:
            location: Artifact location returned by a previous persist

        Returns:
            ExecutionResult with the rollback result and new artifact location

        Raises:
            ArtifactError: If the artifact cannot be read
            NoSnapshotAvailableError: If the run has no original config
            RunInProgressError: If another run holds the environment lease
        """
        run = await self._store.load(location)
        holder = f"rollback-{run.id}"
        # A crashed run still holds the lease under its own id.
        recovered = not run.status.is_terminal and await self._lease.take_over(
            run.environment, str(run.id), holder
        )
        if not recovered:
            await self._lease.acquire(run.environment, holder)
        try:
            with self._tracer.span(
                "cutover.rollback_artifact",
                {ATTR_RUN_ID: str(run.id), ATTR_ENVIRONMENT: run.environment},
            ):
                if not run.status.is_terminal:
                    logger.warning(
                        "Run %s was left %s; marking failed before rollback",
                        run.id,
                        run.status.value,
                    )
                    run.finish(RunStatus.FAILED, run.error or INTERRUPTED)

                rollback = await self._rollback.rollback(run)
                run.outcome = (
                    RunOutcome.ROLLED_BACK if rollback.success else RunOutcome.ROLLBACK_FAILED
                )
                artifact_location = await self._persist(run)
        finally:
            await self._lease.release(run.environment, holder)

        return ExecutionResult(
            run=run,
            outcome=run.outcome,
            plan=[step.name for step in run.steps],
            rollback=rollback,
            artifact_location=artifact_location,
        )

    def _dry_run(self, plan: Plan) -> ExecutionResult:
        with self._tracer.span(
            "cutover.execute",
            {
                ATTR_PHASE: plan.phase.value,
                ATTR_ENVIRONMENT: self._environment,
                ATTR_DRY_RUN: True,
            },
        ):
            problems = self.problems(plan)
            logger.info(
                "Dry run for phase %s in %s (plan v%d):",
                plan.phase.value,
                self._environment,
                plan.version,
            )
            for index, step in enumerate(plan.steps, start=1):
                logger.info(
                    "  %d. %s [%s on %s]",
                    index,
                    step.name,
                    step.action.value,
                    ", ".join(s.value for s in step.target_subsystems),
                )
            for problem in problems:
                logger.warning("Dry run problem: %s", problem)

            run = MigrationRun(
                phase=plan.phase,
                environment=self._environment,
                steps=[step.to_step() for step in plan.steps],
                plan_version=plan.version,
                outcome=RunOutcome.DRY_RUN,
            )
            return ExecutionResult(
                run=run,
                outcome=RunOutcome.DRY_RUN,
                plan=plan.step_names,
                problems=problems,
            )

    async def _run(
        self,
        plan: Plan,
        run: MigrationRun,
        options: ExecuteOptions,
        metrics: CutoverMetrics,
    ) -> ExecutionResult:
        with self._tracer.span(
            "cutover.execute",
            {
                ATTR_RUN_ID: str(run.id),
                ATTR_PHASE: plan.phase.value,
                ATTR_ENVIRONMENT: self._environment,
                ATTR_DRY_RUN: False,
            },
        ):
            logger.info(
                "Starting run %s: phase %s in %s",
                run.id,
                plan.phase.value,
                self._environment,
            )
            if options.backup_state:
                run.original_config = await self._snapshotter.capture()
            else:
                logger.warning("State backup disabled for run %s; rollback is not possible", run.id)

            # The snapshot must be durable before the first mutation.
            await self._snapshotter.persist(run)
            run.status = RunStatus.IN_PROGRESS

            failure = await self._run_steps(plan, run, options, metrics)

            verification: StabilityResult | None = None
            if failure is None and not options.skip_verification:
                verification = await self._verifier.poll_until_stable()
                for snapshot in verification.history:
                    for subsystem in snapshot.failing:
                        metrics.record_probe_failure(subsystem.value)
                if not verification.stable:
                    failure = VERIFICATION_FAILED

            rollback: RollbackResult | None = None
            if failure is None:
                run.outcome = RunOutcome.SUCCEEDED
                run.finish(RunStatus.COMPLETED)
            else:
                run.status = RunStatus.FAILED
                run.error = failure
                rollback = await self._handle_failure(run, options, metrics)
                run.finish(RunStatus.FAILED)

            artifact_location = await self._persist(run)

            with self._tracer.span(
                "cutover.execute.completed",
                {
                    ATTR_RUN_ID: str(run.id),
                    ATTR_RUN_STATUS: run.status.value,
                    ATTR_OUTCOME: run.outcome.value if run.outcome else "",
                },
            ):
                logger.info(
                    "Run %s finished: %s (%s)",
                    run.id,
                    run.status.value,
                    run.outcome.value if run.outcome else "unknown",
                )

            return ExecutionResult(
                run=run,
                outcome=run.outcome or RunOutcome.ROLLBACK_FAILED,
                plan=plan.step_names,
                rollback=rollback,
                verification=verification,
                artifact_location=artifact_location,
            )

    async def _run_steps(
        self,
        plan: Plan,
        run: MigrationRun,
        options: ExecuteOptions,
        metrics: CutoverMetrics,
    ) -> str | None:
        """Execute steps in order; return the failure reason, or None."""
        dispatch = self._dispatch[plan.phase]

        for index, (definition, step) in enumerate(zip(plan.steps, run.steps, strict=True)):
            if self._interrupt.is_set():
                logger.warning("Run %s interrupted before step %s", run.id, step.name)
                return INTERRUPTED

            step.mark_running()
            try:
                with (
                    self._tracer.span(
                        "cutover.step",
                        {
                            ATTR_RUN_ID: str(run.id),
                            ATTR_STEP_NAME: step.name,
                            ATTR_STEP_INDEX: index,
                            ATTR_STEP_ACTION: step.action.value,
                        },
                    ),
                    metrics.time_step(step.name),
                ):
                    await dispatch[step.name](definition, plan, options)
            except Exception as e:
                error = str(e) or type(e).__name__
                step.mark_failed(error)
                metrics.record_step_failure(step.name)
                logger.error("Step %s failed: %s", step.name, error)
                await self._persist(run)
                return f"step {step.name!r} failed"

            step.mark_completed()
            logger.info("Step %s completed", step.name)
            await self._persist(run)

        if self._interrupt.is_set():
            return INTERRUPTED
        return None

    async def _handle_failure(
        self,
        run: MigrationRun,
        options: ExecuteOptions,
        metrics: CutoverMetrics,
    ) -> RollbackResult | None:
        if options.force or not self._config.rollback_enabled:
            logger.warning("Run %s failed (%s); rollback suppressed", run.id, run.error)
            run.outcome = RunOutcome.ROLLBACK_SKIPPED
            metrics.record_rollback(run.outcome.value)
            return None

        logger.error("Run %s failed (%s); rolling back", run.id, run.error)
        result: RollbackResult | None = None
        try:
            result = await self._rollback.rollback(run)
        except NoSnapshotAvailableError as e:
            logger.error("Cannot roll back run %s: %s", run.id, e)
            run.outcome = RunOutcome.ROLLBACK_FAILED
        else:
            run.outcome = RunOutcome.ROLLED_BACK if result.success else RunOutcome.ROLLBACK_FAILED

        metrics.record_rollback(run.outcome.value)
        return result

    async def _persist(self, run: MigrationRun) -> str | None:
        try:
            return await self._snapshotter.persist(run)
        except ArtifactError as e:
            logger.error("Failed to persist run %s: %s", run.id, e)
            return None

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self._config.action_timeout_seconds)

    def _adapter_for(self, subsystem: Subsystem) -> SubsystemAdapter:
        try:
            return self._adapters[subsystem]
        except KeyError:
            raise ValidationError(
                f"no adapter for subsystem {subsystem.value!r}",
                environment=self._environment,
            ) from None

    async def _write_config(self, step: StepDefinition, plan: Plan) -> dict[str, Any]:
        values = plan.values_for(step)
        for key, value in values.items():
            await self._call(self._registry.set(key, value))
            logger.debug("Set %s = %r", key, value)
        return values

    async def _apply_forward(
        self, step: StepDefinition, plan: Plan, options: ExecuteOptions
    ) -> None:
        values = await self._write_config(step, plan)
        params = adapter_params(step, values)
        for subsystem in step.target_subsystems:
            await self._call(self._adapter_for(subsystem).apply_forward(step.action, params))

    async def _toggle_dual_write(
        self, step: StepDefinition, plan: Plan, options: ExecuteOptions
    ) -> None:
        await self._write_config(step, plan)
        await self._call(self._dual_write.set_active(bool(step.params.get("active", False))))

    async def _verify_subsystem(
        self, step: StepDefinition, plan: Plan, options: ExecuteOptions
    ) -> None:
        result = await self._verifier.check_subsystem(step.subsystem)
        if result.outcome.is_failure:
            raise StepExecutionError(
                step.name,
                f"{step.subsystem.value} probe failed: {result.detail}",
            )

    async def _verify_integrity(
        self, step: StepDefinition, plan: Plan, options: ExecuteOptions
    ) -> None:
        if options.skip_verification:
            logger.warning("Skipping %s: verification disabled for this run", step.name)
            return
        snapshot = await self._verifier.check_all()
        if not snapshot.healthy:
            raise StepExecutionError(
                step.name,
                "failing subsystems: " + ", ".join(s.value for s in snapshot.failing),
            )


__all__ = [
    "CutoverOrchestrator",
    "INTERRUPTED",
    "VERIFICATION_FAILED",
]
