"""
Database integration package for pgreconcile.

This package provides:
- Async PostgreSQL connection pooling
- Catalog snapshots of tables, columns and indexes
"""

from .connection import ConnectionConfig, ConnectionPool
from .introspection import CatalogSnapshot, ColumnInfo, SchemaIntrospector, TableInfo

__all__ = [
    "ConnectionConfig",
    "ConnectionPool",
    "CatalogSnapshot",
    "ColumnInfo",
    "SchemaIntrospector",
    "TableInfo",
]
