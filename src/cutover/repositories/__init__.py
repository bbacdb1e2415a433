"""
Persistence backends for the cutover orchestrator.

Each concern has a runtime-checkable protocol with an in-memory
implementation for tests and dry runs, and a SQLAlchemy implementation
usable with SQLite (aiosqlite) or PostgreSQL (asyncpg):

- ConfigRegistry: shared key/value configuration the application reads
- EnvironmentLease: one run per environment at a time
- AuditArtifactStore: immutable run artifacts (also file-backed)
"""

from cutover.repositories.artifacts import (
    AuditArtifactStore,
    FileAuditArtifactStore,
    InMemoryAuditArtifactStore,
    RunArtifact,
    SQLAuditArtifactStore,
    StepRecord,
    load,
)
from cutover.repositories.config_registry import (
    ConfigRegistry,
    InMemoryConfigRegistry,
    SQLConfigRegistry,
)
from cutover.repositories.lease import (
    EnvironmentLease,
    InMemoryEnvironmentLease,
    SQLEnvironmentLease,
)

__all__ = [
    # Config registry
    "ConfigRegistry",
    "InMemoryConfigRegistry",
    "SQLConfigRegistry",
    # Leases
    "EnvironmentLease",
    "InMemoryEnvironmentLease",
    "SQLEnvironmentLease",
    # Artifacts
    "AuditArtifactStore",
    "InMemoryAuditArtifactStore",
    "FileAuditArtifactStore",
    "SQLAuditArtifactStore",
    "RunArtifact",
    "StepRecord",
    "load",
]
