"""
Environment leases - at most one run per environment at a time.

A lease is taken before the first side effect of a run and released in a
``finally`` block once the run ends. Acquisition never waits: a held lease
fails fast with RunInProgressError.

Usage:
    >>> lease = SQLEnvironmentLease(engine)
    >>> await lease.create_schema()
    >>> await lease.acquire("production", holder=str(run.id))
    >>> try:
    ...     ...
    ... finally:
    ...     await lease.release("production", holder=str(run.id))
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from cutover.exceptions import RunInProgressError
from cutover.models import utcnow
from cutover.observability import ATTR_DB_SYSTEM, ATTR_ENVIRONMENT, Tracer, create_tracer
from cutover.repositories._connection import dialect_name, execute_with_connection

logger = logging.getLogger(__name__)


@runtime_checkable
class EnvironmentLease(Protocol):
    """Protocol for per-environment run leases."""

    async def acquire(self, environment: str, holder: str) -> None:
        """
        Take the lease for an environment.

        Raises:
            RunInProgressError: If another holder has the lease
        """
        ...

    async def release(self, environment: str, holder: str) -> None:
        """Release the lease if ``holder`` owns it; otherwise do nothing."""
        ...

    async def take_over(self, environment: str, expected_holder: str, new_holder: str) -> bool:
        """
        Hand the lease from ``expected_holder`` to ``new_holder``.

        Used to recover a lease left behind by a crashed run. Returns False,
        changing nothing, unless ``expected_holder`` currently owns it.
        """
        ...

    async def holder(self, environment: str) -> str | None:
        """Current lease holder, or None when the environment is free."""
        ...


class InMemoryEnvironmentLease:
    """Process-local lease, suitable for tests and single-process use."""

    def __init__(self) -> None:
        self._holders: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, environment: str, holder: str) -> None:
        async with self._lock:
            current = self._holders.get(environment)
            if current is not None:
                raise RunInProgressError(environment, holder=current)
            self._holders[environment] = holder

    async def release(self, environment: str, holder: str) -> None:
        async with self._lock:
            if self._holders.get(environment) == holder:
                del self._holders[environment]

    async def take_over(self, environment: str, expected_holder: str, new_holder: str) -> bool:
        async with self._lock:
            if self._holders.get(environment) != expected_holder:
                return False
            self._holders[environment] = new_holder
            return True

    async def holder(self, environment: str) -> str | None:
        async with self._lock:
            return self._holders.get(environment)


class SQLEnvironmentLease:
    """
    SQLAlchemy implementation of EnvironmentLease.

    One row per environment in ``cutover_leases``; the primary key makes
    the insert the arbitration point between competing processes.
    """

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
        """Create the ``cutover_leases`` table if it does not exist."""
        query = text("""
            CREATE TABLE IF NOT EXISTS cutover_leases (
                environment VARCHAR(255) PRIMARY KEY,
                holder VARCHAR(255) NOT NULL,
                acquired_at VARCHAR(64) NOT NULL
            )
        """)
        async with execute_with_connection(self._conn, transactional=True) as conn:
            await conn.execute(query)

    async def acquire(self, environment: str, holder: str) -> None:
        with self._tracer.span(
            "cutover.lease.acquire",
            {
                ATTR_ENVIRONMENT: environment,
                ATTR_DB_SYSTEM: dialect_name(self._conn),
            },
        ):
            query = text("""
                INSERT INTO cutover_leases (environment, holder, acquired_at)
                VALUES (:environment, :holder, :acquired_at)
            """)
            params = {
                "environment": environment,
                "holder": holder,
                "acquired_at": utcnow().isoformat(),
            }
            try:
                async with execute_with_connection(self._conn, transactional=True) as conn:
                    await conn.execute(query, params)
            except IntegrityError:
                current = await self.holder(environment)
                raise RunInProgressError(environment, holder=current) from None

            logger.info("Lease for environment %s acquired by %s", environment, holder)

    async def release(self, environment: str, holder: str) -> None:
        with self._tracer.span(
            "cutover.lease.release",
            {
                ATTR_ENVIRONMENT: environment,
                ATTR_DB_SYSTEM: dialect_name(self._conn),
            },
        ):
            query = text("""
                DELETE FROM cutover_leases
                WHERE environment = :environment AND holder = :holder
            """)
            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(query, {"environment": environment, "holder": holder})

            logger.info("Lease for environment %s released by %s", environment, holder)

    async def take_over(self, environment: str, expected_holder: str, new_holder: str) -> bool:
        with self._tracer.span(
            "cutover.lease.take_over",
            {
                ATTR_ENVIRONMENT: environment,
                ATTR_DB_SYSTEM: dialect_name(self._conn),
            },
        ):
            # Conditional update: the holder check and the write are one statement.
            query = text("""
                UPDATE cutover_leases
                SET holder = :new_holder, acquired_at = :acquired_at
                WHERE environment = :environment AND holder = :expected_holder
            """)
            params = {
                "environment": environment,
                "expected_holder": expected_holder,
                "new_holder": new_holder,
                "acquired_at": utcnow().isoformat(),
            }
            async with execute_with_connection(self._conn, transactional=True) as conn:
                result = await conn.execute(query, params)
                taken = result.rowcount == 1

            if not taken:
                return False
            logger.warning(
                "Lease for environment %s taken over from %s by %s",
                environment,
                expected_holder,
                new_holder,
            )
            return True

    async def holder(self, environment: str) -> str | None:
        query = text("SELECT holder FROM cutover_leases WHERE environment = :environment")
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, {"environment": environment})
            row = result.fetchone()
        return None if row is None else str(row[0])


__all__ = [
    "EnvironmentLease",
    "InMemoryEnvironmentLease",
    "SQLEnvironmentLease",
]
