"""
Shared plumbing for the SQL-backed registry, lease and artifact store.

Each SQL repository is built from either an AsyncEngine (the CLI passes
one per registry URL) or an AsyncConnection owned by the caller.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Yield a connection to run statements on.

    An engine is checked out per call: ``engine.begin()`` for writes so the
    statement commits on exit, ``engine.connect()`` for reads. A connection
    handed in by the caller is yielded untouched and the caller commits.

    Example:
        >>> async with execute_with_connection(self._conn) as conn:
        ...     await conn.execute(text("DELETE FROM cutover_leases"))
    """
    if not isinstance(conn, AsyncEngine):
        yield conn
        return

    checkout = conn.begin() if transactional else conn.connect()
    async with checkout as connection:
        yield connection


def dialect_name(conn: AsyncConnection | AsyncEngine) -> str:
    """Backend name, e.g. "sqlite" or "postgresql"."""
    return conn.dialect.name
