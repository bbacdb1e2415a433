"""
Unit tests for CutoverOrchestrator.

Tests cover:
- Dry runs touch nothing
- Strict step ordering and per-step persistence
- Failure handling: rollback, force, disabled rollback, missing snapshot
- Verification: verify steps and the final stability poll
- Environment lease, interrupts and validation
- Reporting and artifact-driven rollback
"""

from collections.abc import Callable
from typing import Any

import pytest

from cutover.config import HealthPollConfig, OrchestratorConfig
from cutover.exceptions import (
    MissingTargetConfigError,
    RunInProgressError,
    UnknownPhaseError,
    ValidationError,
)
from cutover.health import HealthVerifier
from cutover.models import (
    ExecuteOptions,
    MigrationPhase,
    MigrationRun,
    ProbeOutcome,
    RunOutcome,
    RunStatus,
    StepAction,
    StepStatus,
    Subsystem,
)
from cutover.observability import MockTracer
from cutover.orchestrator import INTERRUPTED, VERIFICATION_FAILED, CutoverOrchestrator
from cutover.repositories import InMemoryAuditArtifactStore, InMemoryConfigRegistry
from cutover.testing import (
    FAST_CONFIG,
    LIVE_CONFIG,
    TARGET_CONFIG,
    CutoverTestHarness,
    FakeSubsystem,
    ScriptedProbe,
)

# =============================================================================
# Helpers
# =============================================================================


def failing(subsystem: Subsystem, *steps: str, **kwargs: Any) -> dict[Subsystem, FakeSubsystem]:
    return {subsystem: FakeSubsystem(subsystem, fail_steps=set(steps), **kwargs)}


def step_statuses(run: MigrationRun) -> list[StepStatus]:
    return [step.status for step in run.steps]


class InterruptingSubsystem(FakeSubsystem):
    """Requests an interrupt while a given step is in flight."""

    def __init__(self, subsystem: Subsystem, on_step: str) -> None:
        super().__init__(subsystem)
        self.on_step = on_step
        self.orchestrator: CutoverOrchestrator | None = None

    async def apply_forward(self, action: StepAction, params: dict[str, Any]) -> None:
        await super().apply_forward(action, params)
        if params.get("step") == self.on_step and self.orchestrator is not None:
            self.orchestrator.request_interrupt()


# =============================================================================
# Dry run
# =============================================================================


class TestDryRun:
    """Tests for dry-run purity."""

    @pytest.mark.parametrize("phase", list(MigrationPhase))
    async def test_dry_run_touches_nothing(self, phase: MigrationPhase) -> None:
        harness = CutoverTestHarness()

        result = await harness.orchestrator.execute(phase, ExecuteOptions(dry_run=True))

        assert result.outcome is RunOutcome.DRY_RUN
        assert result.exit_code == 0
        assert result.plan == [step.name for step in result.run.steps]
        assert result.problems == []
        assert harness.mutation_count == 0
        assert harness.sink.summaries == []
        assert await harness.lease.holder("test") is None

    async def test_dry_run_reports_problems(self) -> None:
        harness = CutoverTestHarness(target_config={})

        result = await harness.orchestrator.execute("routing", ExecuteOptions(dry_run=True))

        assert result.outcome is RunOutcome.DRY_RUN
        assert result.problems == [
            "step 'revert-dns-records' has no target value for: "
            "routing.primary_target, routing.api_target"
        ]
        assert harness.mutation_count == 0

    async def test_dry_run_ignores_held_lease(self) -> None:
        harness = CutoverTestHarness()
        await harness.lease.acquire("test", "someone-else")

        result = await harness.orchestrator.execute("cache", ExecuteOptions(dry_run=True))

        assert result.outcome is RunOutcome.DRY_RUN


# =============================================================================
# Successful runs
# =============================================================================


class TestSuccessfulRun:
    """Tests for runs that complete."""

    async def test_routing_phase_succeeds(self, harness: CutoverTestHarness) -> None:
        result = await harness.orchestrator.execute("routing")

        assert result.outcome is RunOutcome.SUCCEEDED
        assert result.exit_code == 0
        assert result.run.status is RunStatus.COMPLETED
        assert result.rollback is None
        assert result.verification is not None and result.verification.stable
        assert step_statuses(result.run) == [StepStatus.COMPLETED] * 3
        assert harness.registry.values()["routing.primary_target"] == "lb-old.internal"
        assert harness.registry.values()["routing.api_target"] == "api-old.internal"

    async def test_steps_run_in_catalogue_order(self, harness: CutoverTestHarness) -> None:
        await harness.orchestrator.execute("cache", ExecuteOptions(skip_verification=True))

        assert harness.adapter(Subsystem.CACHE).forward_steps == [
            "stop-rebuild",
            "clear-target",
            "restore-source",
            "update-app-config",
        ]

    async def test_full_phase_stops_every_data_subsystem(
        self, harness: CutoverTestHarness
    ) -> None:
        result = await harness.orchestrator.execute("full")

        assert result.outcome is RunOutcome.SUCCEEDED
        for subsystem in (Subsystem.DATABASE, Subsystem.OBJECT_STORAGE, Subsystem.CACHE):
            assert harness.adapter(subsystem).forward_steps[0] == "stop-all-migrations"

    async def test_snapshot_captured_before_first_mutation(
        self, harness: CutoverTestHarness
    ) -> None:
        result = await harness.orchestrator.execute("routing")

        assert result.run.original_config == LIVE_CONFIG
        first = harness.store.decoded()[0]
        assert first["originalConfig"] == LIVE_CONFIG

    async def test_persists_after_every_step(self, harness: CutoverTestHarness) -> None:
        result = await harness.orchestrator.execute("cache")

        # snapshot + one per step + terminal
        assert len(harness.store.artifacts) == 6
        assert result.artifact_location == "memory:5"

        stored = await harness.store.load(result.artifact_location)
        assert stored.status is RunStatus.COMPLETED
        assert stored.outcome is RunOutcome.SUCCEEDED

    async def test_adapter_receives_written_values(self, harness: CutoverTestHarness) -> None:
        await harness.orchestrator.execute("cache")

        call = harness.adapter(Subsystem.CACHE).forward_calls[-1]
        assert call.action is StepAction.REVERT_CONFIG
        assert call.params["cache_url"] == "redis://cache-old:6379/0"

    async def test_database_phase_disables_dual_write(
        self, harness: CutoverTestHarness
    ) -> None:
        result = await harness.orchestrator.execute("database")

        assert result.outcome is RunOutcome.SUCCEEDED
        assert (await harness.dual_write.status()).active is False

    async def test_lease_released(self, harness: CutoverTestHarness) -> None:
        await harness.orchestrator.execute("routing")
        assert await harness.lease.holder("test") is None


# =============================================================================
# Failure handling
# =============================================================================


class TestStepFailure:
    """Tests for a failing step."""

    async def test_cache_failure_rolls_back(self) -> None:
        harness = CutoverTestHarness(adapters=failing(Subsystem.CACHE, "restore-source"))

        result = await harness.orchestrator.execute("cache")

        assert step_statuses(result.run) == [
            StepStatus.COMPLETED,
            StepStatus.COMPLETED,
            StepStatus.FAILED,
            StepStatus.PENDING,
        ]
        assert result.outcome is RunOutcome.ROLLED_BACK
        assert result.exit_code == 1
        assert result.rollback is not None
        assert result.run.status is RunStatus.FAILED
        assert result.run.error == "step 'restore-source' failed"
        assert "simulated failure" in result.run.steps[2].error
        assert harness.registry.values() == LIVE_CONFIG

    async def test_cache_failure_undoes_completed_steps(self) -> None:
        harness = CutoverTestHarness(adapters=failing(Subsystem.CACHE, "restore-source"))

        result = await harness.orchestrator.execute("cache")

        undone = harness.adapter(Subsystem.CACHE).rollback_calls
        assert [(c.params["step"], c.action) for c in undone] == [
            ("clear-target", StepAction.RESTORE_OBJECT),
            ("stop-rebuild", StepAction.STOP_MIGRATION_PROCESS),
        ]
        assert result.rollback.reverted == [Subsystem.CACHE]
        assert result.rollback.mutations == 2
        assert result.run.rollback_config == {
            "steps.clear-target": ["cache"],
            "steps.stop-rebuild": ["cache"],
        }

    async def test_undone_steps_not_repeated_by_artifact_rollback(self) -> None:
        harness = CutoverTestHarness(adapters=failing(Subsystem.CACHE, "restore-source"))
        result = await harness.orchestrator.execute("cache")
        harness.reset_calls()

        second = await harness.orchestrator.rollback_artifact(result.artifact_location)

        assert second.rollback.mutations == 0
        assert harness.adapter_calls == 0

    async def test_failed_step_stops_later_steps(self) -> None:
        harness = CutoverTestHarness(adapters=failing(Subsystem.CACHE, "clear-target"))

        await harness.orchestrator.execute("cache")

        assert harness.adapter(Subsystem.CACHE).forward_steps == ["stop-rebuild", "clear-target"]

    async def test_rollback_restores_written_config(self) -> None:
        harness = CutoverTestHarness(
            adapters=failing(Subsystem.ROUTING_LAYER, "update-health-checks")
        )

        result = await harness.orchestrator.execute("routing")

        assert result.outcome is RunOutcome.ROLLED_BACK
        assert result.rollback.reverted == [Subsystem.ROUTING_LAYER]
        assert harness.registry.values() == LIVE_CONFIG
        assert result.run.rollback_config == {
            "routing.primary_target": "lb-new.internal",
            "routing.api_target": "api-new.internal",
        }

    async def test_failure_skips_verification(self) -> None:
        probe = ScriptedProbe(Subsystem.CACHE)
        harness = CutoverTestHarness(
            adapters=failing(Subsystem.CACHE, "stop-rebuild"), probes=[probe]
        )

        result = await harness.orchestrator.execute("cache")

        assert result.verification is None
        assert probe.calls == 0

    async def test_force_skips_rollback(self) -> None:
        harness = CutoverTestHarness(
            adapters=failing(Subsystem.ROUTING_LAYER, "update-health-checks")
        )

        result = await harness.orchestrator.execute("routing", ExecuteOptions(force=True))

        assert result.outcome is RunOutcome.ROLLBACK_SKIPPED
        assert result.exit_code == 1
        assert result.rollback is None
        assert harness.adapter(Subsystem.ROUTING_LAYER).rollback_calls == []
        assert harness.registry.values()["routing.primary_target"] == "lb-old.internal"

    async def test_disabled_rollback_is_skipped(self) -> None:
        config = OrchestratorConfig(
            rollback_enabled=False, verification=FAST_CONFIG.verification
        )
        harness = CutoverTestHarness(
            adapters=failing(Subsystem.CACHE, "clear-target"), config=config
        )

        result = await harness.orchestrator.execute("cache")

        assert result.outcome is RunOutcome.ROLLBACK_SKIPPED

    async def test_no_backup_failure_is_rollback_failed(self) -> None:
        harness = CutoverTestHarness(adapters=failing(Subsystem.CACHE, "clear-target"))

        result = await harness.orchestrator.execute(
            "cache", ExecuteOptions(backup_state=False)
        )

        assert result.outcome is RunOutcome.ROLLBACK_FAILED
        assert result.exit_code == 2
        assert result.run.original_config == {}
        assert harness.adapter(Subsystem.CACHE).rollback_calls == []

    async def test_partial_rollback_is_rollback_failed(self) -> None:
        routing = FakeSubsystem(
            Subsystem.ROUTING_LAYER,
            fail_steps={"update-health-checks"},
            fail_rollback={StepAction.UPDATE_ROUTING},
        )
        harness = CutoverTestHarness(adapters={Subsystem.ROUTING_LAYER: routing})

        result = await harness.orchestrator.execute("routing")

        assert result.outcome is RunOutcome.ROLLBACK_FAILED
        assert result.exit_code == 2
        assert set(result.rollback.failures) == {Subsystem.ROUTING_LAYER}
        assert "routing_layer" in result.run.rollback_failures

    async def test_step_timeout_fails_step(self) -> None:
        config = OrchestratorConfig(
            action_timeout_seconds=0.05, verification=FAST_CONFIG.verification
        )
        harness = CutoverTestHarness(
            adapters={
                Subsystem.ROUTING_LAYER: FakeSubsystem(
                    Subsystem.ROUTING_LAYER, delay_seconds=1.0
                )
            },
            config=config,
        )

        result = await harness.orchestrator.execute("routing", ExecuteOptions(force=True))

        assert result.run.steps[0].status is StepStatus.FAILED
        assert result.run.steps[0].error == "TimeoutError"

    async def test_lease_released_after_failure(self) -> None:
        harness = CutoverTestHarness(adapters=failing(Subsystem.CACHE, "clear-target"))
        await harness.orchestrator.execute("cache")
        assert await harness.lease.holder("test") is None


# =============================================================================
# Verification
# =============================================================================


class TestVerification:
    """Tests for verify steps and the final stability poll."""

    async def test_unstable_system_rolls_back(self) -> None:
        harness = CutoverTestHarness(
            probes=[ScriptedProbe(Subsystem.CACHE, [ProbeOutcome.FAIL])]
        )

        result = await harness.orchestrator.execute("cache")

        assert step_statuses(result.run) == [StepStatus.COMPLETED] * 4
        assert result.verification is not None
        assert not result.verification.stable
        assert result.run.error == VERIFICATION_FAILED
        assert result.outcome is RunOutcome.ROLLED_BACK
        assert harness.registry.values() == LIVE_CONFIG

    async def test_skip_verification(self) -> None:
        probe = ScriptedProbe(Subsystem.CACHE, [ProbeOutcome.FAIL])
        harness = CutoverTestHarness(probes=[probe])

        result = await harness.orchestrator.execute(
            "cache", ExecuteOptions(skip_verification=True)
        )

        assert result.outcome is RunOutcome.SUCCEEDED
        assert result.verification is None
        assert probe.calls == 0

    async def test_warn_is_stable(self) -> None:
        harness = CutoverTestHarness(
            probes=[ScriptedProbe(Subsystem.APPLICATION, [ProbeOutcome.WARN])]
        )

        result = await harness.orchestrator.execute("routing")

        assert result.outcome is RunOutcome.SUCCEEDED

    async def test_verify_step_failure(self) -> None:
        harness = CutoverTestHarness(
            probes=[ScriptedProbe(Subsystem.DATABASE, [ProbeOutcome.FAIL])]
        )

        result = await harness.orchestrator.execute("database")

        failed = result.run.failed_step
        assert failed is not None and failed.name == "verify-source-database"
        assert failed.error == (
            "Step 'verify-source-database' failed: database probe failed: scripted fail"
        )
        assert result.outcome is RunOutcome.ROLLED_BACK
        assert (await harness.dual_write.status()).active is True

    async def test_integrity_step_names_failing_subsystems(self) -> None:
        harness = CutoverTestHarness(
            probes=[
                ScriptedProbe(Subsystem.CACHE, [ProbeOutcome.FAIL]),
                ScriptedProbe(Subsystem.APPLICATION, [ProbeOutcome.FAIL]),
            ]
        )

        result = await harness.orchestrator.execute("full", ExecuteOptions(force=True))

        failed = result.run.failed_step
        assert failed.name == "verify-system-integrity"
        assert "failing subsystems: cache, application" in failed.error

    async def test_skip_verification_skips_integrity_step(self) -> None:
        probe = ScriptedProbe(Subsystem.CACHE, [ProbeOutcome.FAIL])
        harness = CutoverTestHarness(probes=[probe])

        result = await harness.orchestrator.execute(
            "full", ExecuteOptions(skip_verification=True)
        )

        assert result.outcome is RunOutcome.SUCCEEDED
        assert step_statuses(result.run) == [StepStatus.COMPLETED] * 7
        assert result.verification is None
        assert probe.calls == 0


# =============================================================================
# Validation, lease and interrupts
# =============================================================================


class TestValidation:
    """Tests for errors raised before anything is touched."""

    async def test_unknown_phase(self, harness: CutoverTestHarness) -> None:
        with pytest.raises(UnknownPhaseError):
            await harness.orchestrator.execute("storage")
        assert harness.mutation_count == 0

    async def test_missing_target_config(self) -> None:
        harness = CutoverTestHarness(target_config={"cache.url": "redis://old"})

        with pytest.raises(MissingTargetConfigError) as exc_info:
            await harness.orchestrator.execute("full")

        assert "revert-dns" in exc_info.value.missing
        assert harness.mutation_count == 0

    async def test_missing_adapter(self) -> None:
        registry = InMemoryConfigRegistry(LIVE_CONFIG)
        orchestrator = CutoverOrchestrator(
            registry,
            InMemoryAuditArtifactStore(),
            HealthVerifier([], enable_tracing=False),
            environment="test",
            adapters={},
            target_config=TARGET_CONFIG,
            config=FAST_CONFIG,
            enable_tracing=False,
            enable_metrics=False,
        )

        with pytest.raises(ValidationError, match="no adapter for subsystem 'cache'"):
            await orchestrator.execute("cache")
        assert registry.writes == []

    async def test_problems_lists_missing_adapters(self) -> None:
        orchestrator = CutoverOrchestrator(
            InMemoryConfigRegistry(),
            InMemoryAuditArtifactStore(),
            HealthVerifier([], enable_tracing=False),
            environment="test",
            target_config=TARGET_CONFIG,
            enable_tracing=False,
            enable_metrics=False,
        )

        problems = orchestrator.problems(orchestrator.plan("database"))

        # Verify and toggle steps need no adapter
        assert problems == [
            "step 'stop-replication' has no adapter for subsystem 'database'",
            "step 'cleanup-replication-resources' has no adapter for subsystem 'database'",
        ]


class TestLease:
    """Tests for the one-run-per-environment guarantee."""

    async def test_held_lease_raises(self, harness: CutoverTestHarness) -> None:
        await harness.lease.acquire("test", "other-run")

        with pytest.raises(RunInProgressError) as exc_info:
            await harness.orchestrator.execute("cache")

        assert exc_info.value.holder == "other-run"
        assert harness.mutation_count == 0

    async def test_other_environment_unaffected(self, harness: CutoverTestHarness) -> None:
        await harness.lease.acquire("production", "other-run")

        result = await harness.orchestrator.execute("routing")

        assert result.outcome is RunOutcome.SUCCEEDED


class TestInterrupt:
    """Tests for graceful interruption."""

    async def test_in_flight_step_completes(self) -> None:
        cache = InterruptingSubsystem(Subsystem.CACHE, on_step="clear-target")
        harness = CutoverTestHarness(adapters={Subsystem.CACHE: cache})
        cache.orchestrator = harness.orchestrator

        result = await harness.orchestrator.execute("cache")

        assert step_statuses(result.run) == [
            StepStatus.COMPLETED,
            StepStatus.COMPLETED,
            StepStatus.PENDING,
            StepStatus.PENDING,
        ]
        assert result.run.error == INTERRUPTED
        assert result.run.status is RunStatus.FAILED
        assert result.outcome is RunOutcome.ROLLED_BACK

    async def test_interrupt_cleared_for_next_run(self) -> None:
        cache = InterruptingSubsystem(Subsystem.CACHE, on_step="stop-rebuild")
        harness = CutoverTestHarness(adapters={Subsystem.CACHE: cache})
        cache.orchestrator = harness.orchestrator
        await harness.orchestrator.execute("cache")

        result = await harness.orchestrator.execute("routing")

        assert result.outcome is RunOutcome.SUCCEEDED


# =============================================================================
# Reporting
# =============================================================================


class TestReporting:
    """Tests for run summaries delivered to sinks."""

    async def test_sink_receives_summary(self, harness: CutoverTestHarness) -> None:
        result = await harness.orchestrator.execute("routing")

        assert len(harness.sink.summaries) == 1
        summary = harness.sink.summaries[0]
        assert summary.success
        assert summary.run_id == result.run.id
        assert summary.outcome is RunOutcome.SUCCEEDED
        assert summary.environment == "test"

    async def test_failed_run_summary(self) -> None:
        harness = CutoverTestHarness(adapters=failing(Subsystem.CACHE, "clear-target"))

        await harness.orchestrator.execute("cache")

        summary = harness.sink.summaries[0]
        assert not summary.success
        assert summary.outcome is RunOutcome.ROLLED_BACK

    async def test_failing_sink_does_not_change_result(
        self, harness: CutoverTestHarness
    ) -> None:
        harness.sink.fail = True

        result = await harness.orchestrator.execute("routing")

        assert result.outcome is RunOutcome.SUCCEEDED


# =============================================================================
# Artifact rollback
# =============================================================================


class TestRollbackArtifact:
    """Tests for rolling back a persisted run."""

    async def test_rolls_back_forced_run(self) -> None:
        harness = CutoverTestHarness(
            adapters=failing(Subsystem.ROUTING_LAYER, "update-health-checks")
        )
        forced = await harness.orchestrator.execute("routing", ExecuteOptions(force=True))

        result = await harness.orchestrator.rollback_artifact(forced.artifact_location)

        assert result.outcome is RunOutcome.ROLLED_BACK
        assert result.rollback.reverted == [Subsystem.ROUTING_LAYER]
        assert harness.registry.values() == LIVE_CONFIG
        stored = await harness.store.load(result.artifact_location)
        assert stored.outcome is RunOutcome.ROLLED_BACK

    async def test_second_rollback_is_a_no_op(self) -> None:
        harness = CutoverTestHarness(
            adapters=failing(Subsystem.ROUTING_LAYER, "update-health-checks")
        )
        forced = await harness.orchestrator.execute("routing", ExecuteOptions(force=True))
        first = await harness.orchestrator.rollback_artifact(forced.artifact_location)
        harness.reset_calls()

        second = await harness.orchestrator.rollback_artifact(first.artifact_location)

        assert second.rollback.mutations == 0
        assert harness.registry.writes == []
        assert harness.adapter_calls == 0

    async def test_recovers_crashed_run(
        self, run_factory: Callable[..., MigrationRun]
    ) -> None:
        harness = CutoverTestHarness(
            live_config={**LIVE_CONFIG, "cache.url": "redis://cache-old:6379/0"}
        )
        crashed = run_factory(status=RunStatus.IN_PROGRESS)
        location = await harness.store.persist(crashed)

        result = await harness.orchestrator.rollback_artifact(location)

        assert result.run.status is RunStatus.FAILED
        assert result.run.error == INTERRUPTED
        assert result.outcome is RunOutcome.ROLLED_BACK
        assert harness.registry.values() == LIVE_CONFIG
        assert await harness.lease.holder("test") is None

    async def test_recovers_crashed_run_still_holding_lease(
        self, run_factory: Callable[..., MigrationRun]
    ) -> None:
        harness = CutoverTestHarness(
            live_config={**LIVE_CONFIG, "cache.url": "redis://cache-old:6379/0"}
        )
        crashed = run_factory(status=RunStatus.IN_PROGRESS)
        location = await harness.store.persist(crashed)
        await harness.lease.acquire("test", str(crashed.id))

        result = await harness.orchestrator.rollback_artifact(location)

        assert result.outcome is RunOutcome.ROLLED_BACK
        assert harness.registry.values() == LIVE_CONFIG
        assert await harness.lease.holder("test") is None

    async def test_finished_run_does_not_take_over_lease(
        self, run_factory: Callable[..., MigrationRun]
    ) -> None:
        harness = CutoverTestHarness()
        finished = run_factory(status=RunStatus.FAILED)
        location = await harness.store.persist(finished)
        await harness.lease.acquire("test", str(finished.id))

        with pytest.raises(RunInProgressError):
            await harness.orchestrator.rollback_artifact(location)

        assert await harness.lease.holder("test") == str(finished.id)


# =============================================================================
# Tracing
# =============================================================================


class TestOrchestratorTracing:
    """Tests for span emission."""

    async def test_emits_step_spans(self, mock_tracer: MockTracer) -> None:
        orchestrator = CutoverOrchestrator(
            InMemoryConfigRegistry(LIVE_CONFIG),
            InMemoryAuditArtifactStore(),
            HealthVerifier([], HealthPollConfig(max_attempts=1, interval_ms=0)),
            environment="test",
            adapters={s: FakeSubsystem(s) for s in Subsystem},
            target_config=TARGET_CONFIG,
            tracer=mock_tracer,
            enable_metrics=False,
        )

        await orchestrator.execute("cache")

        assert mock_tracer.span_names.count("cutover.step") == 4
        assert "cutover.snapshot.capture" in mock_tracer.span_names
        assert mock_tracer.span_names[-1] == "cutover.execute.completed"
        step_attrs = mock_tracer.attributes_of("cutover.step")
        assert step_attrs[0]["cutover.step.name"] == "stop-rebuild"
        assert step_attrs[3]["cutover.step.index"] == 3
