"""
Direct PostgreSQL execution path over asyncpg.

Runs the migration text in one transaction on a privileged connection.
Unlike the REST path it can read the catalog, so the reconciler can
tell when a database is already current.
"""

import asyncio
import logging
from typing import Optional, Sequence

import asyncpg

from .base import SqlExecutor, is_concurrent_change
from ..config import ReconcilerSettings
from ..database.connection import ConnectionConfig, ConnectionPool
from ..database.introspection import CatalogSnapshot, SchemaIntrospector
from ..exceptions import (
    ConcurrentSchemaChangeError,
    ConfigurationError,
    DatabaseConnectionError,
    ExecutionError,
    ExecutionPathUnavailableError,
)


logger = logging.getLogger(__name__)

_CONNECTION_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.PostgresConnectionError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.InvalidAuthorizationSpecificationError,
)


class PostgresExecutor(SqlExecutor):
    """Execute SQL on a direct asyncpg connection pool."""

    name = "postgres"
    supports_catalog = True

    def __init__(
        self,
        settings: ReconcilerSettings,
        pool: Optional[ConnectionPool] = None,
    ):
        super().__init__(settings)

        if pool is None:
            if not settings.database_url:
                raise ConfigurationError("Postgres executor requires database_url")
            config = ConnectionConfig.from_url(
                settings.database_url, command_timeout=settings.command_timeout
            )
            pool = ConnectionPool(config)

        self.pool = pool
        self.introspector = SchemaIntrospector(pool)

    async def _ensure_pool(self) -> None:
        if not self.pool.is_initialized:
            await self.pool.initialize()

    async def execute(self, sql: str) -> None:
        await self._ensure_pool()

        try:
            async with self.pool.transaction() as conn:
                await conn.execute(sql)
        except asyncpg.InsufficientPrivilegeError as e:
            raise ExecutionPathUnavailableError(
                f"Connection lacks DDL privileges: {e}", sqlstate=e.sqlstate, cause=e
            ) from e
        except _CONNECTION_ERRORS as e:
            raise DatabaseConnectionError(f"Lost connection to database: {e}", cause=e) from e
        except asyncpg.PostgresError as e:
            if is_concurrent_change(e.sqlstate, getattr(e, "constraint_name", None), str(e)):
                raise ConcurrentSchemaChangeError(str(e), sqlstate=e.sqlstate, cause=e) from e
            raise ExecutionError(f"Migration failed: {e}", sqlstate=e.sqlstate, cause=e) from e

    async def probe(self, schema: str, table: str) -> bool:
        try:
            await self._ensure_pool()
            await self.pool.execute(f"SELECT * FROM {schema}.{table} LIMIT 0")
            return True
        except (DatabaseConnectionError, asyncpg.PostgresError, *_CONNECTION_ERRORS) as e:
            self.logger.warning(f"Probe of {schema}.{table} failed: {e}")
            return False

    async def snapshot(self, schema: str, tables: Sequence[str]) -> CatalogSnapshot:
        await self._ensure_pool()
        return await self.introspector.snapshot(schema, tables)

    async def close(self) -> None:
        await self.pool.close()
