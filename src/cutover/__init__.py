"""
cutover - staged infrastructure migration and rollback orchestrator.

This library provides:
- A phase state machine executing versioned, ordered step plans
- Health verification with bounded, flap-tolerant stability polling
- A dual-write controller backed by a shared configuration registry
- An idempotent, best-effort rollback coordinator
- Immutable run artifacts for crash recovery and audit
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("cutover")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from cutover.adapters import (
    CommandSubsystem,
    HttpProbe,
    Probe,
    RedisProbe,
    SQLAlchemyProbe,
    StaticProbe,
    SubsystemAdapter,
)
from cutover.config import HealthPollConfig, OrchestratorConfig
from cutover.dual_write import DUAL_WRITE_FLAG, DualWriteController, DualWriteInterceptor
from cutover.exceptions import (
    ArtifactError,
    CutoverError,
    DualWriteError,
    ErrorClassification,
    ErrorRecoverability,
    ErrorSeverity,
    MissingTargetConfigError,
    NoSnapshotAvailableError,
    ProbeError,
    RollbackPartialFailure,
    RunInProgressError,
    StepExecutionError,
    SubsystemActionError,
    UnknownPhaseError,
    UnmappedActionError,
    ValidationError,
)
from cutover.health import HealthVerifier
from cutover.models import (
    ExecuteOptions,
    ExecutionResult,
    HealthSnapshot,
    MigrationPhase,
    MigrationRun,
    ProbeOutcome,
    ProbeResult,
    RollbackResult,
    RunOutcome,
    RunStatus,
    RunSummary,
    StabilityResult,
    Step,
    StepAction,
    StepStatus,
    Subsystem,
)
from cutover.orchestrator import CutoverOrchestrator
from cutover.phases import CATALOGUE, PLAN_VERSION, Plan, StepDefinition, build_plan
from cutover.reporting import HttpReportingSink, LoggingReportingSink, ReportingSink
from cutover.repositories import (
    AuditArtifactStore,
    ConfigRegistry,
    EnvironmentLease,
    FileAuditArtifactStore,
    InMemoryAuditArtifactStore,
    InMemoryConfigRegistry,
    InMemoryEnvironmentLease,
    SQLAuditArtifactStore,
    SQLConfigRegistry,
    SQLEnvironmentLease,
    load,
)
from cutover.rollback import RollbackCoordinator
from cutover.snapshot import SNAPSHOT_KEYS, SNAPSHOT_VERSION, StateSnapshotter

__all__ = [
    "__version__",
    # Orchestration
    "CutoverOrchestrator",
    "ExecuteOptions",
    "ExecutionResult",
    "CATALOGUE",
    "PLAN_VERSION",
    "Plan",
    "StepDefinition",
    "build_plan",
    # Models
    "MigrationPhase",
    "MigrationRun",
    "RunStatus",
    "RunOutcome",
    "RunSummary",
    "Step",
    "StepAction",
    "StepStatus",
    "Subsystem",
    # Health
    "HealthVerifier",
    "HealthSnapshot",
    "ProbeOutcome",
    "ProbeResult",
    "StabilityResult",
    # Dual-write
    "DUAL_WRITE_FLAG",
    "DualWriteController",
    "DualWriteInterceptor",
    # Rollback and snapshots
    "RollbackCoordinator",
    "RollbackResult",
    "StateSnapshotter",
    "SNAPSHOT_KEYS",
    "SNAPSHOT_VERSION",
    # Configuration
    "HealthPollConfig",
    "OrchestratorConfig",
    # Adapters
    "Probe",
    "SubsystemAdapter",
    "CommandSubsystem",
    "SQLAlchemyProbe",
    "RedisProbe",
    "HttpProbe",
    "StaticProbe",
    # Reporting
    "ReportingSink",
    "LoggingReportingSink",
    "HttpReportingSink",
    # Repositories
    "ConfigRegistry",
    "InMemoryConfigRegistry",
    "SQLConfigRegistry",
    "EnvironmentLease",
    "InMemoryEnvironmentLease",
    "SQLEnvironmentLease",
    "AuditArtifactStore",
    "InMemoryAuditArtifactStore",
    "FileAuditArtifactStore",
    "SQLAuditArtifactStore",
    "load",
    # Exceptions
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
    "ErrorClassification",
    "ErrorSeverity",
    "ErrorRecoverability",
]
