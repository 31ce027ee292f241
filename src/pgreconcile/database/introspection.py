"""
Database schema introspection for pgreconcile.

Reads the live catalog (information_schema and pg_indexes) into an
immutable snapshot that the planner diffs against a target schema.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .connection import ConnectionPool
from ..exceptions import DatabaseConnectionError, SchemaError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnInfo:
    """Information about a database column."""

    name: str
    data_type: str
    is_nullable: bool = True
    default_value: Optional[str] = None
    ordinal_position: int = 0


@dataclass
class TableInfo:
    """Information about a database table."""

    schema: str
    name: str
    columns: Dict[str, ColumnInfo] = field(default_factory=dict)

    def has_column(self, column_name: str) -> bool:
        """Check if table has a specific column."""
        return column_name in self.columns

    def get_column(self, column_name: str) -> Optional[ColumnInfo]:
        """Get column information by name."""
        return self.columns.get(column_name)


@dataclass
class CatalogSnapshot:
    """
    Observed state of a database schema.

    Only the tables that were asked about are present; a table missing
    from ``tables`` does not exist. ``index_names`` covers every index in
    the schema, since index names are unique per schema regardless of
    the table they belong to.
    """

    schema: str
    tables: Dict[str, TableInfo] = field(default_factory=dict)
    index_names: frozenset = frozenset()

    def table_exists(self, table: str) -> bool:
        return table in self.tables

    def has_column(self, table: str, column: str) -> bool:
        info = self.tables.get(table)
        return info is not None and info.has_column(column)

    def has_index(self, index_name: str) -> bool:
        return index_name in self.index_names


class SchemaIntrospector:
    """Database schema introspection utilities."""

    TABLES_QUERY = """
        SELECT table_name
        FROM information_schema.tables
        WHERE table_schema = $1 AND table_name = ANY($2::text[])
    """

    COLUMNS_QUERY = """
        SELECT
            c.table_name,
            c.column_name,
            c.data_type,
            c.is_nullable,
            c.column_default,
            c.ordinal_position
        FROM information_schema.columns c
        WHERE c.table_schema = $1 AND c.table_name = ANY($2::text[])
        ORDER BY c.table_name, c.ordinal_position
    """

    INDEXES_QUERY = """
        SELECT indexname AS index_name
        FROM pg_indexes
        WHERE schemaname = $1
    """

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    async def snapshot(self, schema: str, tables: Sequence[str]) -> CatalogSnapshot:
        """Read the live catalog for the given tables of one schema."""
        table_names: List[str] = list(tables)
        try:
            table_rows = await self.pool.fetch(self.TABLES_QUERY, schema, table_names)
            column_rows = await self.pool.fetch(self.COLUMNS_QUERY, schema, table_names)
            index_rows = await self.pool.fetch(self.INDEXES_QUERY, schema)
        except DatabaseConnectionError:
            raise
        except Exception as e:
            logger.error(f"Error reading catalog for schema {schema}: {e}")
            raise SchemaError(f"Failed to read catalog: {e}", cause=e) from e

        infos: Dict[str, TableInfo] = {
            row["table_name"]: TableInfo(schema=schema, name=row["table_name"])
            for row in table_rows
        }

        for row in column_rows:
            info = infos.get(row["table_name"])
            if info is None:
                continue
            info.columns[row["column_name"]] = ColumnInfo(
                name=row["column_name"],
                data_type=row["data_type"],
                is_nullable=row["is_nullable"] == "YES",
                default_value=row["column_default"],
                ordinal_position=row["ordinal_position"],
            )

        snapshot = CatalogSnapshot(
            schema=schema,
            tables=infos,
            index_names=frozenset(row["index_name"] for row in index_rows),
        )
        logger.debug(
            f"Catalog snapshot for {schema}: {len(infos)}/{len(table_names)} tables, "
            f"{len(snapshot.index_names)} indexes"
        )
        return snapshot
