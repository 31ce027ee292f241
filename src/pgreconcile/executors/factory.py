"""
Executor factory for creating the configured privileged execution path.
"""

from typing import Dict, Type
import logging

from .base import SqlExecutor
from .postgres_executor import PostgresExecutor
from .rest_executor import RestExecutor
from ..config import ReconcilerSettings
from ..exceptions import ConfigurationError, PgReconcileError


logger = logging.getLogger(__name__)


class ExecutorFactory:
    """Factory for creating SQL executors based on the configured backend."""

    _EXECUTOR_REGISTRY: Dict[str, Type[SqlExecutor]] = {
        "rest": RestExecutor,
        "postgres": PostgresExecutor,
    }

    @classmethod
    def create_executor(cls, settings: ReconcilerSettings) -> SqlExecutor:
        """
        Create the executor for ``settings.backend``.

        Raises:
            ConfigurationError: If the backend is unknown or lacks credentials
        """
        backend = settings.backend.lower()

        if backend not in cls._EXECUTOR_REGISTRY:
            raise ConfigurationError(
                f"Unsupported backend: {backend}. "
                f"Available backends: {cls.get_supported_backends()}"
            )

        settings.validate_settings()

        try:
            executor = cls._EXECUTOR_REGISTRY[backend](settings)
        except PgReconcileError:
            raise
        except Exception as e:
            logger.error(f"Failed to create {backend} executor: {e}")
            raise ConfigurationError(f"Failed to create {backend} executor: {e}") from e

        logger.debug(f"Created {executor!r}")
        return executor

    @classmethod
    def get_supported_backends(cls) -> list[str]:
        return list(cls._EXECUTOR_REGISTRY.keys())
