"""
Abstract base class for privileged SQL execution paths.

An executor runs the rendered migration text against the database,
probes whether target tables are reachable, and (when the backend can
see the catalog) reads a catalog snapshot for the planner.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from ..config import ReconcilerSettings
from ..database.introspection import CatalogSnapshot
from ..exceptions import RACE_SQLSTATES


logger = logging.getLogger(__name__)

_CONSTRAINT_IN_MESSAGE = re.compile(r'constraint "([^"]+)"')


def is_concurrent_change(
    sqlstate: Optional[str],
    constraint_name: Optional[str] = None,
    message: Optional[str] = None,
) -> bool:
    """
    Tell whether a database error comes from a concurrent identical reconciliation.

    Duplicate column and duplicate relation always do. A unique violation
    only does when it hits a system catalog constraint (``pg_*``); on any
    other constraint it means the rows themselves break a new unique index.
    """
    if sqlstate not in RACE_SQLSTATES:
        return False
    if sqlstate != "23505":
        return True

    if constraint_name is None and message:
        match = _CONSTRAINT_IN_MESSAGE.search(message)
        constraint_name = match.group(1) if match else None
    return bool(constraint_name) and constraint_name.startswith("pg_")


class SqlExecutor(ABC):
    """
    Privileged, transaction-capable execution path.

    Implementations map their transport errors onto the project's
    exception hierarchy:

    - ExecutionPathUnavailableError when the path is not provisioned
    - DatabaseConnectionError when the database or credentials are unreachable
    - ConcurrentSchemaChangeError when a concurrent run added the object first
    - ExecutionError for any other database-side failure
    """

    name: str = "base"
    supports_catalog: bool = False

    def __init__(self, settings: ReconcilerSettings):
        self.settings = settings
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    async def execute(self, sql: str) -> None:
        """Run the migration text in a single transaction."""

    @abstractmethod
    async def probe(self, schema: str, table: str) -> bool:
        """Best-effort zero-row read; True when the table is reachable."""

    async def snapshot(self, schema: str, tables: Sequence[str]) -> CatalogSnapshot:
        """Read the live catalog. Only available when ``supports_catalog`` is set."""
        raise NotImplementedError(f"{self.name} executor cannot read the catalog")

    async def close(self) -> None:
        """Release transport resources."""

    async def __aenter__(self) -> "SqlExecutor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
