"""
pgreconcile: idempotent, additive schema reconciliation for PostgreSQL.

pgreconcile makes sure the tables a dashboard depends on carry the columns
and unique indexes it needs, through a privileged SQL path when one is
available and by handing back the SQL for a manual run when it is not.
"""

__version__ = "0.1.0"
__author__ = "pgreconcile Contributors"

from .config import ReconcilerSettings, TargetSchema
from .exceptions import (
    PgReconcileError,
    ConfigurationError,
    DatabaseError,
    ExecutionPathUnavailableError,
)

__all__ = [
    "__version__",
    "ReconcilerSettings",
    "TargetSchema",
    "PgReconcileError",
    "ConfigurationError",
    "DatabaseError",
    "ExecutionPathUnavailableError",
]
