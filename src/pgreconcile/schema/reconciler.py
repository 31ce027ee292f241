"""
Schema reconciliation core logic for pgreconcile.

Brings a live database into conformance with a declared target schema,
additively and idempotently, with a degraded mode that hands the SQL
back for manual execution when the privileged path is missing.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config import TargetSchema
from ..executors.base import SqlExecutor
from ..exceptions import (
    ConcurrentSchemaChangeError,
    DatabaseConnectionError,
    ExecutionPathUnavailableError,
    PgReconcileError,
)
from .operations import SchemaChange, render_migration
from .planner import plan_changes, undeclared_index_columns


logger = logging.getLogger(__name__)


MANUAL_ACTION_MESSAGE = (
    "The privileged SQL function is not available. Run the SQL manually."
)
MANUAL_ACTION_HINT = (
    "Copy the SQL above and run it in the SQL editor of your database dashboard."
)


class ReconciliationStatus(str, Enum):
    """Outcome of a reconciliation."""

    APPLIED = "applied"
    ALREADY_CURRENT = "already-current"
    MANUAL_ACTION_REQUIRED = "manual-action-required"
    FAILED = "failed"


@dataclass
class ReconciliationResult:
    """Result of a schema reconciliation operation."""

    status: ReconciliationStatus
    sql: str
    message: Optional[str] = None
    hint: Optional[str] = None
    error: Optional[str] = None
    changes: List[SchemaChange] = field(default_factory=list)
    probes: Dict[str, bool] = field(default_factory=dict)
    execution_time_ms: float = 0.0

    @property
    def success(self) -> bool:
        """Whether the database is known to match the target schema."""
        return self.status in (
            ReconciliationStatus.APPLIED,
            ReconciliationStatus.ALREADY_CURRENT,
        )

    @property
    def unreachable_tables(self) -> List[str]:
        return [table for table, ok in self.probes.items() if not ok]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "status": self.status.value,
            "sql": self.sql,
        }
        for key in ("message", "error", "hint"):
            value = getattr(self, key)
            if value:
                data[key] = value
        if self.changes:
            data["changes"] = [c.to_dict() for c in self.changes]
        if self.probes:
            data["probes"] = dict(self.probes)
        return data


class SchemaReconciler:
    """
    Reconcile a live database against a TargetSchema.

    Each call renders the migration text, optionally diffs the live
    catalog, and executes through the given executor. Every outcome is
    reported as a ReconciliationResult; nothing is retried and nothing
    escapes as an exception.
    """

    def __init__(self, executor: SqlExecutor):
        self.executor = executor

    async def reconcile(self, schema: TargetSchema) -> ReconciliationResult:
        """
        Bring the database to ``schema``.

        Returns:
            ReconciliationResult tagged applied, already-current,
            manual-action-required or failed. ``sql`` is always set.
        """
        start_time = asyncio.get_event_loop().time()
        sql = render_migration(schema)
        logger.debug(f"Rendered migration for {schema.table_names}:\n{sql}")

        try:
            result = await self._reconcile(schema, sql)
        except DatabaseConnectionError as e:
            logger.error(f"Reconciliation failed, database unreachable: {e}")
            result = self._failed(sql, e)
        except PgReconcileError as e:
            logger.error(f"Reconciliation failed: {e}")
            result = self._failed(sql, e)
        except Exception as e:
            logger.exception(f"Unexpected error during reconciliation: {e}")
            result = self._failed(sql, e)

        result.execution_time_ms = (asyncio.get_event_loop().time() - start_time) * 1000
        logger.info(
            f"Reconciliation of {schema.table_names} finished: "
            f"{result.status.value} ({result.execution_time_ms:.1f}ms)"
        )
        return result

    async def _reconcile(self, schema: TargetSchema, sql: str) -> ReconciliationResult:
        changes: List[SchemaChange] = []
        if self.executor.supports_catalog:
            changes = await self._plan(schema)
            if not changes:
                return ReconciliationResult(
                    status=ReconciliationStatus.ALREADY_CURRENT,
                    sql=sql,
                    message="Schema is already up to date.",
                )
            logger.info(f"{len(changes)} pending changes: {[c.change_id for c in changes]}")

        try:
            await self.executor.execute(sql)
        except ExecutionPathUnavailableError as e:
            logger.warning(f"Privileged execution unavailable, deferring to manual run: {e}")
            return await self._manual_action(schema, sql, changes)
        except ConcurrentSchemaChangeError as e:
            logger.warning(f"Concurrent reconciliation detected: {e}")
            return await self._after_concurrent_change(schema, sql, changes)

        return ReconciliationResult(
            status=ReconciliationStatus.APPLIED,
            sql=sql,
            message="Migration applied successfully.",
            changes=changes,
        )

    async def _plan(self, schema: TargetSchema) -> List[SchemaChange]:
        snapshot = await self.executor.snapshot(schema.schema_name, schema.table_names)
        return plan_changes(schema, snapshot)

    async def _manual_action(
        self, schema: TargetSchema, sql: str, changes: List[SchemaChange]
    ) -> ReconciliationResult:
        probes: Dict[str, bool] = {}
        for table in schema.table_names:
            probes[schema.qualified(table)] = await self.executor.probe(
                schema.schema_name, table
            )

        return ReconciliationResult(
            status=ReconciliationStatus.MANUAL_ACTION_REQUIRED,
            sql=sql,
            message=MANUAL_ACTION_MESSAGE,
            hint=self._manual_action_hint(schema, probes),
            changes=changes,
            probes=probes,
        )

    @staticmethod
    def _manual_action_hint(schema: TargetSchema, probes: Dict[str, bool]) -> str:
        creatable: List[str] = []
        blocked: List[str] = []
        for table in schema.tables:
            name = schema.qualified(table.name)
            if probes.get(name, True):
                continue
            undeclared = undeclared_index_columns(table)
            if not undeclared:
                creatable.append(name)
                continue
            # a missing table gets only the declared columns
            for index_name, columns in undeclared.items():
                blocked.append(
                    f"{name} must exist with columns {', '.join(columns)} "
                    f"before index {index_name} can be created"
                )

        hint = MANUAL_ACTION_HINT
        if creatable:
            hint += f" Tables not reachable yet, the SQL creates them: {', '.join(creatable)}."
        if blocked:
            hint += f" Tables not reachable yet: {'; '.join(blocked)}."
        return hint

    async def _after_concurrent_change(
        self, schema: TargetSchema, sql: str, changes: List[SchemaChange]
    ) -> ReconciliationResult:
        # The losing transaction rolled back; confirm the winner converged.
        if self.executor.supports_catalog:
            remaining = await self._plan(schema)
            if remaining:
                return ReconciliationResult(
                    status=ReconciliationStatus.FAILED,
                    sql=sql,
                    error=(
                        "A concurrent change interrupted the migration and "
                        f"{len(remaining)} changes are still pending"
                    ),
                    changes=remaining,
                )

        return ReconciliationResult(
            status=ReconciliationStatus.APPLIED,
            sql=sql,
            message="Schema was brought up to date by a concurrent reconciliation.",
            changes=changes,
        )

    @staticmethod
    def _failed(sql: str, error: Exception) -> ReconciliationResult:
        message = error.message if isinstance(error, PgReconcileError) else str(error)
        return ReconciliationResult(
            status=ReconciliationStatus.FAILED,
            sql=sql,
            error=message or error.__class__.__name__,
            hint="Fix the error and retry; the SQL is safe to run again.",
        )
