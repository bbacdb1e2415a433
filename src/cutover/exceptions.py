"""
Exceptions for the cutover orchestrator.

Exception Hierarchy:
    CutoverError (base)
    +-- ValidationError
    |   +-- UnknownPhaseError
    |   +-- MissingTargetConfigError
    |   +-- NoSnapshotAvailableError
    +-- UnmappedActionError
    +-- ProbeError
    +-- StepExecutionError
    +-- SubsystemActionError
    +-- RollbackPartialFailure
    +-- RunInProgressError
    +-- DualWriteError
    +-- ArtifactError

Every exception carries an ErrorClassification so the CLI, the audit
artifact and logs can describe a failure uniformly (severity, whether an
operator can recover from it, and a stable error code).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from cutover.models import Subsystem


class ErrorSeverity(Enum):
    """How loudly a failure should be reported."""

    CRITICAL = "critical"
    """The environment may be left in a mixed state; page an operator."""

    ERROR = "error"
    """The run failed and needs operator attention."""

    WARNING = "warning"
    """Worth watching, but the run itself did not fail."""

    INFO = "info"

    @property
    def log_level(self) -> int:
        """Level the CLI logs the failure at."""
        return {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.INFO: logging.INFO,
        }[self]


class ErrorRecoverability(Enum):
    """
    What it takes to get back to a safe environment.

    Attributes:
        RECOVERABLE: Fix the input and re-run (e.g., a bad phase selector).
        TRANSIENT: Re-running later may work (e.g., a probe timeout).
        FATAL: Someone has to intervene by hand (e.g., a partial rollback).
    """

    RECOVERABLE = "recoverable"
    TRANSIENT = "transient"
    FATAL = "fatal"

    @property
    def needs_operator(self) -> bool:
        return self is ErrorRecoverability.FATAL


@dataclass(frozen=True)
class ErrorClassification:
    """
    Stable description of a failure type.

    Each CutoverError subclass declares one as ``_default_classification``;
    ``error_code`` is what the artifact and the CLI report.
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    category: str
    suggested_action: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }


class CutoverError(Exception):
    """
    Root of every error raised by cutover.

    Attributes:
        message: What went wrong.
        run_id: Run that raised the error, when there is one.
        environment: Environment tag involved, when known.
        suggested_action: Replaces the classification's guidance when set.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="CUTOVER_ERROR",
        category="general",
        suggested_action="Review the run artifact and orchestrator logs",
    )

    def __init__(
        self,
        message: str,
        *,
        run_id: UUID | None = None,
        environment: str | None = None,
        suggested_action: str | None = None,
    ) -> None:
        self.message = message
        self.run_id = run_id
        self.environment = environment
        self.suggested_action = suggested_action
        super().__init__(message)

    def __str__(self) -> str:
        context = [
            f"{name}={value}"
            for name, value in (("run_id", self.run_id), ("environment", self.environment))
            if value
        ]
        return " ".join([self.message, *context])

    @property
    def classification(self) -> ErrorClassification:
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        return self.classification.severity

    @property
    def error_code(self) -> str:
        return self.classification.error_code

    @property
    def hint(self) -> str:
        """Operator guidance: the override if one was given, else the default."""
        return self.suggested_action or self.classification.suggested_action

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe form, including the classification."""
        return {
            "message": self.message,
            "run_id": str(self.run_id) if self.run_id else None,
            "environment": self.environment,
            "error_code": self.error_code,
            "suggested_action": self.hint,
            "classification": self.classification.to_dict(),
        }


class ValidationError(CutoverError):
    """
    Raised for invalid input detected before anything executes.

    Validation errors are never retried and never trigger a rollback,
    because no mutation has happened yet.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="VALIDATION_ERROR",
        category="validation",
        suggested_action="Correct the input and re-run",
    )


class UnknownPhaseError(ValidationError):
    """
    Raised when a phase selector does not name a known phase.

    Attributes:
        phase_selector: The value that could not be parsed.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="UNKNOWN_PHASE",
        category="validation",
        suggested_action=(
            "Use one of: database, object-storage, cache, application, routing, full"
        ),
    )

    def __init__(self, phase_selector: str) -> None:
        self.phase_selector = phase_selector
        super().__init__(f"Unknown phase selector: {phase_selector!r}")


class MissingTargetConfigError(ValidationError):
    """
    Raised when a configuration-writing step has no target value to write.

    Attributes:
        missing: Mapping of step name to the registry keys it lacks.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="MISSING_TARGET_CONFIG",
        category="validation",
        suggested_action="Provide target values for every key the phase writes",
    )

    def __init__(self, missing: dict[str, list[str]]) -> None:
        self.missing = missing
        details = "; ".join(f"{step}: {', '.join(keys)}" for step, keys in missing.items())
        super().__init__(f"Missing target configuration ({details})")


class NoSnapshotAvailableError(ValidationError):
    """
    Raised when a rollback is requested for a run without a state snapshot.

    No subsystem is touched when this is raised: without the original
    configuration there is nothing safe to restore.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="NO_SNAPSHOT_AVAILABLE",
        category="rollback",
        suggested_action="Restore the environment manually from the last known configuration",
    )

    def __init__(self, run_id: UUID | None = None) -> None:
        super().__init__(
            "Run has no original configuration snapshot; cannot roll back",
            run_id=run_id,
        )


class UnmappedActionError(CutoverError):
    """
    Raised while building a step dispatch table when an action has no handler.

    Attributes:
        action: The step action that could not be dispatched.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="UNMAPPED_ACTION",
        category="configuration",
        suggested_action="Register a handler for every action in the step catalogue",
    )

    def __init__(self, action: str, step_name: str) -> None:
        self.action = action
        self.step_name = step_name
        super().__init__(f"No handler for action {action!r} (step {step_name!r})")


class ProbeError(CutoverError):
    """
    Raised by a probe implementation that could not determine health.

    The health verifier converts this into a ``fail`` result for the
    subsystem; it is never propagated to the orchestrator.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="PROBE_ERROR",
        category="health",
        suggested_action="Check connectivity to the probed subsystem",
    )

    def __init__(self, subsystem: Subsystem, reason: str) -> None:
        self.subsystem = subsystem
        self.reason = reason
        super().__init__(f"Probe for {subsystem.value} failed: {reason}")


class StepExecutionError(CutoverError):
    """
    Raised when a step's action fails or times out.

    Attributes:
        step_name: The step that failed.
        reason: Detailed reason for the failure.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="STEP_EXECUTION_FAILED",
        category="execution",
        suggested_action="Inspect the failed step in the run artifact before re-running",
    )

    def __init__(
        self,
        step_name: str,
        reason: str,
        *,
        run_id: UUID | None = None,
    ) -> None:
        self.step_name = step_name
        self.reason = reason
        super().__init__(f"Step {step_name!r} failed: {reason}", run_id=run_id)


class SubsystemActionError(CutoverError):
    """
    Raised by a subsystem adapter when a forward or rollback action fails.

    Attributes:
        subsystem: The subsystem the action targeted.
        action: The action value (e.g., "stop-migration-process").
        reason: Detailed reason (exit status, stderr, timeout).
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="SUBSYSTEM_ACTION_FAILED",
        category="execution",
        suggested_action="Check the adapter command output and the subsystem state",
    )

    def __init__(self, subsystem: Subsystem, action: str, reason: str) -> None:
        self.subsystem = subsystem
        self.action = action
        self.reason = reason
        super().__init__(f"{action} on {subsystem.value} failed: {reason}")


class RollbackPartialFailure(CutoverError):
    """
    Raised when one or more subsystems could not be reverted.

    Attributes:
        failures: Mapping of subsystem to the error that prevented its revert.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="ROLLBACK_PARTIAL_FAILURE",
        category="rollback",
        suggested_action=(
            "Revert the listed subsystems manually, then re-run "
            "'cutover rollback <artifact>' to confirm"
        ),
    )

    def __init__(
        self,
        failures: dict[Subsystem, str],
        *,
        run_id: UUID | None = None,
    ) -> None:
        self.failures = failures
        names = ", ".join(sorted(s.value for s in failures))
        super().__init__(f"Rollback incomplete for: {names}", run_id=run_id)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["failures"] = {s.value: error for s, error in self.failures.items()}
        return result


class RunInProgressError(CutoverError):
    """
    Raised when another run already holds the environment lease.

    Attributes:
        holder: Identifier of the run holding the lease, when known.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="RUN_IN_PROGRESS",
        category="state",
        suggested_action="Wait for the running migration to finish",
    )

    def __init__(self, environment: str, holder: str | None = None) -> None:
        self.holder = holder
        message = f"A run is already in progress for environment {environment!r}"
        if holder:
            message += f" (held by {holder})"
        super().__init__(message, environment=environment)


class DualWriteError(CutoverError):
    """
    Raised when the dual-write flag could not be toggled or confirmed.

    Attributes:
        expected: The flag value that was written.
        observed: The value read back from the registry.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="DUAL_WRITE_TOGGLE_FAILED",
        category="dual_write",
        suggested_action="Check the configuration registry and the dual-write flag value",
    )

    def __init__(self, flag_key: str, expected: Any, observed: Any) -> None:
        self.flag_key = flag_key
        self.expected = expected
        self.observed = observed
        super().__init__(
            f"Dual-write flag {flag_key!r} read back {observed!r}, expected {expected!r}"
        )


class ArtifactError(CutoverError):
    """
    Raised when an audit artifact cannot be written or read back.

    Attributes:
        location: Where the artifact lives (path or store reference).
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="ARTIFACT_ERROR",
        category="audit",
        suggested_action="Check the artifact location and its contents",
    )

    def __init__(self, location: str, reason: str) -> None:
        self.location = location
        self.reason = reason
        super().__init__(f"Artifact {location}: {reason}")


__all__ = [
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "CutoverError",
    "ValidationError",
    "UnknownPhaseError",
    "MissingTargetConfigError",
    "NoSnapshotAvailableError",
    "UnmappedActionError",
    "ProbeError",
    "StepExecutionError",
    "SubsystemActionError",
    "RollbackPartialFailure",
    "RunInProgressError",
    "DualWriteError",
    "ArtifactError",
]
