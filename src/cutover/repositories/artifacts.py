"""
Audit artifacts - immutable, timestamped records of a migration run.

Each persist writes a new artifact; nothing is ever updated in place. The
latest artifact of a run is the single input the rollback coordinator
needs after a crash, and the record operators read after an incident.

Artifact JSON shape (camelCase keys):

    {
        "timestamp": "...", "runId": "...", "phase": "cache",
        "environment": "production", "status": "failed",
        "outcome": "rolled_back", "error": null, "planVersion": 1,
        "startTime": "...", "endTime": "...",
        "steps": [{"name", "action", "subsystem", "status",
                   "startTime", "endTime", "error"}],
        "originalConfig": {...}, "rollbackConfig": {...},
        "rollbackFailures": {...}
    }

Usage:
    >>> store = FileAuditArtifactStore("/var/lib/cutover/artifacts")
    >>> location = await store.persist(run)
    >>> restored = await store.load(location)
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from cutover.exceptions import ArtifactError
from cutover.models import (
    MigrationPhase,
    MigrationRun,
    RunOutcome,
    RunStatus,
    Step,
    StepAction,
    StepStatus,
    Subsystem,
    utcnow,
)
from cutover.observability import (
    ATTR_DB_SYSTEM,
    ATTR_RUN_ID,
    ATTR_RUN_STATUS,
    Tracer,
    create_tracer,
)
from cutover.repositories._connection import dialect_name, execute_with_connection

logger = logging.getLogger(__name__)


class StepRecord(BaseModel):
    """Serialized form of a Step."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    action: StepAction
    subsystem: Subsystem
    status: StepStatus
    start_time: datetime | None = None
    end_time: datetime | None = None
    error: str | None = None


class RunArtifact(BaseModel):
    """
    Serialized form of a MigrationRun.

    Validation on load rejects artifacts with unknown phases, statuses or
    step actions instead of handing a half-understood run to rollback.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    timestamp: datetime
    run_id: UUID
    phase: MigrationPhase
    environment: str
    status: RunStatus
    outcome: RunOutcome | None = None
    error: str | None = None
    plan_version: int = 1
    start_time: datetime
    end_time: datetime | None = None
    steps: list[StepRecord] = Field(default_factory=list)
    original_config: dict[str, Any] = Field(default_factory=dict)
    rollback_config: dict[str, Any] = Field(default_factory=dict)
    rollback_failures: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_run(cls, run: MigrationRun) -> RunArtifact:
        return cls(
            timestamp=utcnow(),
            run_id=run.id,
            phase=run.phase,
            environment=run.environment,
            status=run.status,
            outcome=run.outcome,
            error=run.error,
            plan_version=run.plan_version,
            start_time=run.started_at,
            end_time=run.completed_at,
            steps=[
                StepRecord(
                    name=step.name,
                    action=step.action,
                    subsystem=step.subsystem,
                    status=step.status,
                    start_time=step.started_at,
                    end_time=step.completed_at,
                    error=step.error,
                )
                for step in run.steps
            ],
            original_config=dict(run.original_config),
            rollback_config=dict(run.rollback_config),
            rollback_failures=dict(run.rollback_failures),
        )

    def to_run(self) -> MigrationRun:
        return MigrationRun(
            id=self.run_id,
            phase=self.phase,
            environment=self.environment,
            status=self.status,
            steps=[
                Step(
                    name=record.name,
                    action=record.action,
                    subsystem=record.subsystem,
                    status=record.status,
                    started_at=record.start_time,
                    completed_at=record.end_time,
                    error=record.error,
                )
                for record in self.steps
            ],
            original_config=dict(self.original_config),
            rollback_config=dict(self.rollback_config),
            started_at=self.start_time,
            completed_at=self.end_time,
            error=self.error,
            outcome=self.outcome,
            rollback_failures=dict(self.rollback_failures),
            plan_version=self.plan_version,
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)

    @classmethod
    def parse(cls, data: str | bytes, location: str) -> RunArtifact:
        """
        Parse and validate a serialized artifact.

        Raises:
            ArtifactError: If the content is not a valid run artifact
        """
        try:
            return cls.model_validate_json(data)
        except PydanticValidationError as e:
            raise ArtifactError(location, f"invalid artifact: {e}") from e


@runtime_checkable
class AuditArtifactStore(Protocol):
    """Protocol for append-only run artifact storage."""

    async def persist(self, run: MigrationRun) -> str:
        """
        Write the run as a new immutable artifact.

        Returns:
            Location of the artifact, accepted by ``load``
        """
        ...

    async def load(self, location: str) -> MigrationRun:
        """
        Read an artifact back into a MigrationRun.

        Raises:
            ArtifactError: If the artifact is missing or invalid
        """
        ...


class InMemoryAuditArtifactStore:
    """Keeps serialized artifacts in a list; locations are ``memory:<n>``."""

    def __init__(self) -> None:
        self.artifacts: list[str] = []
        self._lock = asyncio.Lock()

    async def persist(self, run: MigrationRun) -> str:
        body = RunArtifact.from_run(run).to_json()
        async with self._lock:
            self.artifacts.append(body)
            return f"memory:{len(self.artifacts) - 1}"

    async def load(self, location: str) -> MigrationRun:
        try:
            body = self.artifacts[int(location.removeprefix("memory:"))]
        except (ValueError, IndexError):
            raise ArtifactError(location, "no such artifact") from None
        return RunArtifact.parse(body, location).to_run()

    def decoded(self) -> list[dict[str, Any]]:
        """All artifacts as plain dicts, oldest first."""
        return [json.loads(body) for body in self.artifacts]


class FileAuditArtifactStore:
    """
    Writes one JSON file per persist under a directory.

    File names combine the run id, a per-run sequence number and the
    timestamp. Files are opened in exclusive-create mode, so an existing
    artifact is never overwritten.

    Example:
        >>> store = FileAuditArtifactStore(Path("artifacts"))
        >>> await store.persist(run)
        'artifacts/rollback-state-production-cache-20261019T101500123456Z-1f3a9c2e-0001.json'
    """

    def __init__(
        self,
        directory: str | Path,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._directory = Path(directory)
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._sequence: dict[UUID, itertools.count[int]] = {}

    @property
    def directory(self) -> Path:
        return self._directory

    async def persist(self, run: MigrationRun) -> str:
        with self._tracer.span(
            "cutover.artifacts.persist",
            {
                ATTR_RUN_ID: str(run.id),
                ATTR_RUN_STATUS: run.status.value,
            },
        ):
            artifact = RunArtifact.from_run(run)
            counter = self._sequence.setdefault(run.id, itertools.count(1))
            stamp = artifact.timestamp.strftime("%Y%m%dT%H%M%S%fZ")
            name = (
                f"rollback-state-{run.environment}-{run.phase.value}-"
                f"{stamp}-{run.id.hex[:8]}-{next(counter):04d}.json"
            )
            path = self._directory / name

            self._directory.mkdir(parents=True, exist_ok=True)
            try:
                with path.open("x", encoding="utf-8") as f:
                    f.write(artifact.to_json())
            except FileExistsError:
                raise ArtifactError(str(path), "artifact already exists") from None
            except OSError as e:
                raise ArtifactError(str(path), str(e)) from e

            logger.debug("Persisted run %s (%s) to %s", run.id, run.status.value, path)
            return str(path)

    async def load(self, location: str) -> MigrationRun:
        path = Path(location)
        try:
            body = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ArtifactError(location, str(e)) from e
        return RunArtifact.parse(body, location).to_run()


class SQLAuditArtifactStore:
    """
    SQLAlchemy implementation of AuditArtifactStore.

    Appends rows to ``cutover_run_artifacts``; rows are never updated.
    Locations have the form ``cutover_run_artifacts:<id>``.
    """

    _LOCATION_PREFIX = "cutover_run_artifacts:"

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._conn = conn

    async def create_schema(self) -> None:
        """Create the ``cutover_run_artifacts`` table if it does not exist."""
        if dialect_name(self._conn) == "postgresql":
            id_column = "id BIGSERIAL PRIMARY KEY"
        else:
            id_column = "id INTEGER PRIMARY KEY AUTOINCREMENT"
        query = text(f"""
            CREATE TABLE IF NOT EXISTS cutover_run_artifacts (
                {id_column},
                run_id VARCHAR(36) NOT NULL,
                environment VARCHAR(255) NOT NULL,
                status VARCHAR(32) NOT NULL,
                created_at VARCHAR(64) NOT NULL,
                body TEXT NOT NULL
            )
        """)  # nosec B608 - column definition is one of two literals
        async with execute_with_connection(self._conn, transactional=True) as conn:
            await conn.execute(query)

    async def persist(self, run: MigrationRun) -> str:
        with self._tracer.span(
            "cutover.artifacts.persist",
            {
                ATTR_RUN_ID: str(run.id),
                ATTR_RUN_STATUS: run.status.value,
                ATTR_DB_SYSTEM: dialect_name(self._conn),
            },
        ):
            artifact = RunArtifact.from_run(run)
            query = text("""
                INSERT INTO cutover_run_artifacts (
                    run_id, environment, status, created_at, body
                ) VALUES (
                    :run_id, :environment, :status, :created_at, :body
                )
                RETURNING id
            """)
            params = {
                "run_id": str(run.id),
                "environment": run.environment,
                "status": run.status.value,
                "created_at": artifact.timestamp.isoformat(),
                "body": artifact.to_json(),
            }
            async with execute_with_connection(self._conn, transactional=True) as conn:
                result = await conn.execute(query, params)
                row = result.fetchone()

            if row is None:
                raise ArtifactError("cutover_run_artifacts", "insert returned no id")
            return f"{self._LOCATION_PREFIX}{row[0]}"

    async def load(self, location: str) -> MigrationRun:
        try:
            artifact_id = int(location.removeprefix(self._LOCATION_PREFIX))
        except ValueError:
            raise ArtifactError(location, "not a SQL artifact location") from None

        query = text("SELECT body FROM cutover_run_artifacts WHERE id = :id")
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, {"id": artifact_id})
            row = result.fetchone()

        if row is None:
            raise ArtifactError(location, "no such artifact")
        return RunArtifact.parse(row[0], location).to_run()

    async def latest_for_run(self, run_id: UUID) -> MigrationRun | None:
        """Most recent artifact of a run, or None if it was never persisted."""
        query = text("""
            SELECT id, body FROM cutover_run_artifacts
            WHERE run_id = :run_id
            ORDER BY id DESC
            LIMIT 1
        """)
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, {"run_id": str(run_id)})
            row = result.fetchone()

        if row is None:
            return None
        return RunArtifact.parse(row[1], f"{self._LOCATION_PREFIX}{row[0]}").to_run()


async def load(location: str) -> MigrationRun:
    """
    Load a run from an artifact file.

    Args:
        location: Path to a JSON artifact written by FileAuditArtifactStore

    Returns:
        The reconstructed MigrationRun

    Raises:
        ArtifactError: If the file is missing or is not a valid artifact
    """
    store = FileAuditArtifactStore(Path(location).parent, enable_tracing=False)
    return await store.load(location)


__all__ = [
    "StepRecord",
    "RunArtifact",
    "AuditArtifactStore",
    "InMemoryAuditArtifactStore",
    "FileAuditArtifactStore",
    "SQLAuditArtifactStore",
    "load",
]
