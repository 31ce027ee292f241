"""
Additive schema operations for pgreconcile.

Renders the idempotent migration text (conditional DO blocks guarded by
live catalog checks) and the unconditional per-change statements the
planner reports. Nothing here ever renders a DROP or an ALTER TYPE.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List

from ..config import ColumnSpec, TableSpec, TargetSchema, UniqueIndexSpec


RELOAD_SCHEMA_SQL = "NOTIFY pgrst, 'reload schema';"


class ChangeType(str, Enum):
    """Types of schema changes."""

    CREATE_TABLE = "create_table"
    ADD_COLUMN = "add_column"
    CREATE_UNIQUE_INDEX = "create_unique_index"


@dataclass(frozen=True)
class SchemaChange:
    """A single additive change the live database is missing."""

    change_type: ChangeType
    schema: str
    table: str
    target_object: str
    description: str
    sql: str

    @property
    def full_table_name(self) -> str:
        """Get fully qualified table name."""
        return f"{self.schema}.{self.table}"

    @property
    def change_id(self) -> str:
        """Get unique identifier for this change."""
        return f"{self.change_type.value}_{self.schema}_{self.table}_{self.target_object}"

    def to_dict(self) -> dict:
        return {
            "change_type": self.change_type.value,
            "table": self.full_table_name,
            "target": self.target_object,
            "description": self.description,
            "sql": self.sql,
        }


# ---------- unconditional statements (planner output) ----------


def create_table_change(schema: str, table: str) -> SchemaChange:
    return SchemaChange(
        change_type=ChangeType.CREATE_TABLE,
        schema=schema,
        table=table,
        target_object=table,
        description=f"Create table {schema}.{table}",
        sql=f"CREATE TABLE IF NOT EXISTS {schema}.{table} ();",
    )


def add_column_change(schema: str, table: str, column: ColumnSpec) -> SchemaChange:
    return SchemaChange(
        change_type=ChangeType.ADD_COLUMN,
        schema=schema,
        table=table,
        target_object=column.name,
        description=f"Add column {column.name} {column.type.sql_type}",
        sql=f"ALTER TABLE {schema}.{table} ADD COLUMN IF NOT EXISTS {column.definition};",
    )


def create_unique_index_change(schema: str, index: UniqueIndexSpec) -> SchemaChange:
    columns_str = ", ".join(index.columns)
    return SchemaChange(
        change_type=ChangeType.CREATE_UNIQUE_INDEX,
        schema=schema,
        table=index.table,
        target_object=index.name,
        description=f"Create unique index {index.name} on ({columns_str})",
        sql=(
            f"CREATE UNIQUE INDEX IF NOT EXISTS {index.name} "
            f"ON {schema}.{index.table} ({columns_str});"
        ),
    )


# ---------- conditional migration text ----------


def _indent(text: str, spaces: int) -> str:
    pad = " " * spaces
    return "\n".join(pad + line if line else line for line in text.splitlines())


def _create_table_guard(schema: str, table: str) -> str:
    return f"""IF NOT EXISTS (
    SELECT 1 FROM information_schema.tables
    WHERE table_schema = '{schema}'
    AND table_name = '{table}'
) THEN
    BEGIN
        CREATE TABLE {schema}.{table} ();
    EXCEPTION WHEN duplicate_table OR unique_violation THEN
        RAISE NOTICE 'Table %.% already exists', '{schema}', '{table}';
    END;
END IF;"""


def _add_column_guard(schema: str, table: str, column: ColumnSpec) -> str:
    return f"""IF NOT EXISTS (
    SELECT 1 FROM information_schema.columns
    WHERE table_schema = '{schema}'
    AND table_name = '{table}'
    AND column_name = '{column.name}'
) THEN
    BEGIN
        ALTER TABLE {schema}.{table} ADD COLUMN {column.definition};
    EXCEPTION WHEN duplicate_column THEN
        RAISE NOTICE 'Column % already exists in %.%', '{column.name}', '{schema}', '{table}';
    END;
END IF;"""


def _create_index_guard(schema: str, index: UniqueIndexSpec) -> str:
    columns_str = ", ".join(index.columns)
    # A unique_violation on a pg_* catalog constraint means another session
    # created the same index first; on the index itself it means duplicate rows.
    return f"""IF NOT EXISTS (
    SELECT 1 FROM pg_indexes
    WHERE schemaname = '{schema}'
    AND indexname = '{index.name}'
) THEN
    BEGIN
        CREATE UNIQUE INDEX {index.name} ON {schema}.{index.table} ({columns_str});
    EXCEPTION
        WHEN duplicate_table THEN
            RAISE NOTICE 'Index % already exists', '{index.name}';
        WHEN unique_violation THEN
            GET STACKED DIAGNOSTICS violated = CONSTRAINT_NAME;
            IF violated NOT LIKE 'pg\\_%' THEN
                RAISE;
            END IF;
            RAISE NOTICE 'Index % was created concurrently', '{index.name}';
    END;
END IF;"""


def render_table_block(schema: str, table: TableSpec) -> str:
    """Render the DO block that ensures one table and its columns exist."""
    guards = [_create_table_guard(schema, table.name)]
    guards.extend(_add_column_guard(schema, table.name, c) for c in table.columns)
    body = "\n\n".join(_indent(g, 4) for g in guards)
    return f"-- Ensure columns on {schema}.{table.name}\nDO $$\nBEGIN\n{body}\nEND $$;"


def render_index_block(schema: str, indexes: List[UniqueIndexSpec]) -> str:
    """Render the DO block that ensures the unique indexes exist."""
    body = "\n\n".join(_indent(_create_index_guard(schema, i), 4) for i in indexes)
    return (
        f"-- Ensure unique indexes in {schema}\n"
        f"DO $$\nDECLARE\n    violated text;\nBEGIN\n{body}\nEND $$;"
    )


def render_migration(target: TargetSchema) -> str:
    """
    Render the full idempotent migration text for a target schema.

    The text depends only on the target schema: every existence check is
    evaluated by the database against its live catalog when the text runs,
    so the same target always renders the same SQL.
    """
    schema = target.schema_name
    blocks = [render_table_block(schema, table) for table in target.tables]

    indexes = [index for table in target.tables for index in table.unique_indexes]
    if indexes:
        blocks.append(render_index_block(schema, indexes))

    blocks.append(f"-- Reload the query layer's schema cache\n{RELOAD_SCHEMA_SQL}")
    return "\n\n".join(blocks) + "\n"
