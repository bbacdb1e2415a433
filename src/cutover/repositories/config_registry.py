"""
Configuration registry - the shared key/value store the application reads.

Routing targets, connection strings and feature flags (dual-write,
maintenance mode) all live here. The registry is always injected; nothing
in the orchestrator keeps this state at module level.

Usage:
    >>> registry = SQLConfigRegistry(engine)
    >>> await registry.create_schema()
    >>> await registry.set("feature.dual_write_enabled", True)
    >>> await registry.get("feature.dual_write_enabled")
    True
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from cutover.models import utcnow
from cutover.observability import ATTR_DB_OPERATION, ATTR_DB_SYSTEM, Tracer, create_tracer
from cutover.repositories._connection import dialect_name, execute_with_connection

logger = logging.getLogger(__name__)


@runtime_checkable
class ConfigRegistry(Protocol):
    """
    Protocol for the shared configuration registry.

    Values are JSON-compatible. A key that was never written reads as None.
    """

    async def get(self, key: str) -> Any:
        """
        Read a value.

        Args:
            key: Registry key (e.g., "routing.primary_target")

        Returns:
            The stored value, or None if the key is absent
        """
        ...

    async def set(self, key: str, value: Any) -> None:
        """
        Write a value, replacing any existing one.

        Args:
            key: Registry key
            value: JSON-compatible value
        """
        ...


class InMemoryConfigRegistry:
    """
    In-memory implementation of ConfigRegistry for tests and dry runs.

    Every write is also appended to ``writes`` so callers can assert on
    exactly which mutations happened.

    Example:
        >>> registry = InMemoryConfigRegistry({"cache.url": "redis://old"})
        >>> await registry.set("cache.url", "redis://new")
        >>> registry.writes
        [('cache.url', 'redis://new')]
    """

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = dict(initial or {})
        self._lock = asyncio.Lock()
        self.writes: list[tuple[str, Any]] = []

    async def get(self, key: str) -> Any:
        async with self._lock:
            return self._values.get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            self._values[key] = value
            self.writes.append((key, value))

    def values(self) -> dict[str, Any]:
        """Copy of the current contents."""
        return dict(self._values)


class SQLConfigRegistry:
    """
    SQLAlchemy implementation of ConfigRegistry.

    Stores one row per key in the ``cutover_config`` table, with the value
    JSON-encoded. Works with SQLite (aiosqlite) and PostgreSQL (asyncpg);
    writes are single-statement upserts.
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the registry.

        Args:
            conn: Database connection or engine
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._conn = conn

    async def create_schema(self) -> None:
        """Create the ``cutover_config`` table if it does not exist."""
        query = text("""
            CREATE TABLE IF NOT EXISTS cutover_config (
                key VARCHAR(255) PRIMARY KEY,
                value TEXT,
                updated_at VARCHAR(64) NOT NULL
            )
        """)
        async with execute_with_connection(self._conn, transactional=True) as conn:
            await conn.execute(query)

    async def get(self, key: str) -> Any:
        with self._tracer.span(
            "cutover.config_registry.get",
            {
                "cutover.config.key": key,
                ATTR_DB_SYSTEM: dialect_name(self._conn),
                ATTR_DB_OPERATION: "SELECT",
            },
        ):
            query = text("SELECT value FROM cutover_config WHERE key = :key")
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"key": key})
                row = result.fetchone()

            if row is None or row[0] is None:
                return None
            return json.loads(row[0])

    async def set(self, key: str, value: Any) -> None:
        with self._tracer.span(
            "cutover.config_registry.set",
            {
                "cutover.config.key": key,
                ATTR_DB_SYSTEM: dialect_name(self._conn),
                ATTR_DB_OPERATION: "UPSERT",
            },
        ):
            query = text("""
                INSERT INTO cutover_config (key, value, updated_at)
                VALUES (:key, :value, :updated_at)
                ON CONFLICT (key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
            """)
            params = {
                "key": key,
                "value": json.dumps(value),
                "updated_at": utcnow().isoformat(),
            }
            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(query, params)

            logger.debug("Registry key %s updated", key)


__all__ = [
    "ConfigRegistry",
    "InMemoryConfigRegistry",
    "SQLConfigRegistry",
]
