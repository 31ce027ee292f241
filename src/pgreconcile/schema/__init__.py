"""
Schema management package for pgreconcile.

This package provides:
- Rendering of the idempotent, additive migration text
- A pure planner diffing a target schema against a catalog snapshot
- The reconciler that executes the migration and reports the outcome
"""

from .operations import (
    ChangeType,
    RELOAD_SCHEMA_SQL,
    SchemaChange,
    render_migration,
)
from .planner import plan_changes
from .reconciler import ReconciliationResult, ReconciliationStatus, SchemaReconciler

__all__ = [
    "ChangeType",
    "RELOAD_SCHEMA_SQL",
    "SchemaChange",
    "render_migration",
    "plan_changes",
    "ReconciliationResult",
    "ReconciliationStatus",
    "SchemaReconciler",
]
