"""
Database health probe backed by SQLAlchemy.

The probe checks connectivity with ``SELECT 1``. When a target engine and a
list of tables are given it also compares row counts between the source
and target databases, which is how replication correctness is checked
while dual-write is active.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from cutover.models import ProbeResult, Subsystem
from cutover.observability import ATTR_DB_SYSTEM, ATTR_SUBSYSTEM, Tracer, create_tracer

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class SQLAlchemyProbe:
    """
    Probe a relational database through an async SQLAlchemy engine.

    Args:
        engine: Engine for the database the application currently uses
        target_engine: Engine for the replacement database (optional)
        compare_tables: Tables whose row counts must match between the two
        subsystem: Subsystem reported in results (default DATABASE)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing

    Example:
        >>> probe = SQLAlchemyProbe(
        ...     source_engine,
        ...     target_engine=target_engine,
        ...     compare_tables=["users", "orders"],
        ... )
        >>> result = await probe.probe()
    """

    def __init__(
        self,
        engine: AsyncEngine,
        target_engine: AsyncEngine | None = None,
        compare_tables: list[str] | None = None,
        subsystem: Subsystem = Subsystem.DATABASE,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        for table in compare_tables or []:
            if not _IDENTIFIER.match(table):
                raise ValueError(f"Invalid table name: {table!r}")
        self.subsystem = subsystem
        self._engine = engine
        self._target_engine = target_engine
        self._compare_tables = list(compare_tables or [])
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def probe(self) -> ProbeResult:
        with self._tracer.span(
            "cutover.probe.database",
            {
                ATTR_SUBSYSTEM: self.subsystem.value,
                ATTR_DB_SYSTEM: self._engine.dialect.name,
            },
        ):
            try:
                async with self._engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))

                if self._target_engine is None or not self._compare_tables:
                    return ProbeResult.passed("connected")

                mismatches = []
                for table in self._compare_tables:
                    source = await self._count(self._engine, table)
                    target = await self._count(self._target_engine, table)
                    if source != target:
                        mismatches.append(f"{table} source={source} target={target}")
            except (SQLAlchemyError, OSError) as e:
                logger.warning("Database probe failed: %s", e)
                return ProbeResult.failed(str(e))

            if mismatches:
                return ProbeResult.failed("row count mismatch: " + "; ".join(mismatches))
            return ProbeResult.passed(f"row counts match for {len(self._compare_tables)} tables")

    async def _count(self, engine: AsyncEngine, table: str) -> int:
        query = text(f"SELECT COUNT(*) FROM {table}")  # nosec B608 - validated identifier
        async with engine.connect() as conn:
            result = await conn.execute(query)
            return int(result.scalar_one())


__all__ = ["SQLAlchemyProbe"]
