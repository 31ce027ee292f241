"""
Privileged SQL execution paths for pgreconcile.

- REST: PostgREST remote procedure authenticated with the service role key
- Postgres: direct asyncpg connection with catalog access
"""

from .base import SqlExecutor, is_concurrent_change
from .factory import ExecutorFactory
from .postgres_executor import PostgresExecutor
from .rest_executor import RestExecutor

__all__ = [
    "SqlExecutor",
    "ExecutorFactory",
    "PostgresExecutor",
    "RestExecutor",
    "is_concurrent_change",
]
