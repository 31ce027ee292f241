"""
Exception classes for pgreconcile.
"""

from typing import Any, Dict, Optional


class PgReconcileError(Exception):
    """Base exception for all pgreconcile errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(PgReconcileError):
    """Raised when there's an error in configuration."""

    pass


class ValidationError(PgReconcileError):
    """Raised when a target schema description is invalid."""

    pass


class DatabaseError(PgReconcileError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when the database or its credentials are unreachable or invalid."""

    pass


class DatabaseConfigurationError(DatabaseError):
    """Raised when there's an error in database configuration."""

    pass


class SchemaError(DatabaseError):
    """Raised when a target schema cannot be reconciled against the live catalog."""

    pass


class ExecutionError(DatabaseError):
    """Raised when the privileged execution path exists but the SQL failed."""

    def __init__(
        self,
        message: str,
        sqlstate: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = dict(details or {})
        if sqlstate:
            details["sqlstate"] = sqlstate
        super().__init__(message, details, cause)
        self.sqlstate = sqlstate


class ExecutionPathUnavailableError(ExecutionError):
    """Raised when the privileged execution path is not provisioned."""

    pass


class ConcurrentSchemaChangeError(ExecutionError):
    """Raised when a concurrent reconciliation added the same column or index first."""

    pass


# SQLSTATE codes raised when two reconciliations race on the same object.
RACE_SQLSTATES = frozenset({
    "42701",  # duplicate_column
    "42P07",  # duplicate_table (also raised for index relations)
    "23505",  # unique_violation on the catalog
})
