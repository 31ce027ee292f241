"""
Planner: target schema + observed catalog -> ordered additive changes.

No side effects; this module only computes changes. Order is tables
first, then each table's columns in declared order, then unique indexes
in declared order, so applying the statements top to bottom always works.
"""

import logging
from typing import Dict, List

from ..config import TableSpec, TargetSchema
from ..database.introspection import CatalogSnapshot
from ..exceptions import SchemaError
from .operations import (
    SchemaChange,
    add_column_change,
    create_table_change,
    create_unique_index_change,
)


logger = logging.getLogger(__name__)


def plan_changes(target: TargetSchema, snapshot: CatalogSnapshot) -> List[SchemaChange]:
    """
    Compute the changes that bring ``snapshot`` to ``target``.

    Existing columns are never altered, even when their type differs from
    the declared one; the mismatch is logged and left alone.

    Raises:
        SchemaError: the snapshot is for another schema, or a missing index
            uses columns that neither exist nor are declared (it could
            never be created).
    """
    schema = target.schema_name
    if snapshot.schema != schema:
        raise SchemaError(
            f"Catalog snapshot is for schema '{snapshot.schema}', target is '{schema}'"
        )

    changes: List[SchemaChange] = []
    index_changes: List[SchemaChange] = []

    for table in target.tables:
        table_missing = not snapshot.table_exists(table.name)
        if table_missing:
            changes.append(create_table_change(schema, table.name))

        for column in table.columns:
            existing = None if table_missing else snapshot.tables[table.name].get_column(column.name)
            if existing is None:
                changes.append(add_column_change(schema, table.name, column))
            elif existing.data_type != column.type.catalog_type:
                logger.warning(
                    f"Column {schema}.{table.name}.{column.name} is {existing.data_type}, "
                    f"target declares {column.type.catalog_type}; leaving it unchanged"
                )

        undeclared = undeclared_index_columns(table)
        for index in table.unique_indexes:
            if snapshot.has_index(index.name):
                continue
            unknown = [
                c for c in undeclared.get(index.name, [])
                if not snapshot.has_column(table.name, c)
            ]
            if unknown:
                raise SchemaError(
                    f"Index {index.name} needs columns {unknown} on "
                    f"{schema}.{table.name}, which neither exist nor are declared"
                )
            index_changes.append(create_unique_index_change(schema, index))

    return changes + index_changes


def undeclared_index_columns(table: TableSpec) -> Dict[str, List[str]]:
    """
    Map each unique index of ``table`` to the columns it uses that the
    table does not declare. Indexes over declared columns only are left out.

    Such columns must already exist; on a table that is still missing the
    index can never be created.
    """
    undeclared: Dict[str, List[str]] = {}
    for index in table.unique_indexes:
        columns = [c for c in index.columns if not table.has_column(c)]
        if columns:
            undeclared[index.name] = columns
    return undeclared
