"""
Supabase / PostgREST execution path.

Runs SQL through a privileged remote procedure (``exec_sql`` by default)
exposed by PostgREST, authenticated with the service role key.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from .base import SqlExecutor, is_concurrent_change
from ..config import ReconcilerSettings
from ..exceptions import (
    ConcurrentSchemaChangeError,
    ConfigurationError,
    DatabaseConnectionError,
    ExecutionError,
    ExecutionPathUnavailableError,
)


logger = logging.getLogger(__name__)

# PostgREST: function not found in the schema cache / Postgres: undefined function
_MISSING_FUNCTION_CODES = {"PGRST202", "42883"}
# Postgres: insufficient privilege on the function
_NO_PRIVILEGE_CODES = {"42501"}
# PostgREST JWT errors / Postgres: invalid password
_AUTH_CODES = {"PGRST300", "PGRST301", "PGRST302", "28P01", "28000"}


class RestExecutor(SqlExecutor):
    """Execute SQL through the PostgREST RPC endpoint."""

    name = "rest"
    supports_catalog = False

    def __init__(self, settings: ReconcilerSettings):
        super().__init__(settings)

        if not settings.supabase_url or not settings.service_role_key:
            raise ConfigurationError("REST executor requires supabase_url and service_role_key")

        self.base_url = f"{settings.supabase_url}/rest/v1"
        self.rpc_function = settings.rpc_function
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def rpc_url(self) -> str:
        return f"{self.base_url}/rpc/{self.rpc_function}"

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout)
            key = self.settings.service_role_key
            headers = {
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
                "User-Agent": "pgreconcile/1.0",
            }
            self._session = aiohttp.ClientSession(timeout=timeout, headers=headers)
        return self._session

    @staticmethod
    async def _read_error(response: aiohttp.ClientResponse) -> Dict[str, Any]:
        try:
            body = await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            body = None
        if isinstance(body, dict):
            return body
        return {"message": (await response.text()) or f"HTTP {response.status}"}

    async def execute(self, sql: str) -> None:
        session = await self._get_session()
        self.logger.debug(f"Calling {self.rpc_url}")

        try:
            async with session.post(self.rpc_url, json={"sql": sql}) as response:
                if response.status < 300:
                    return
                error = await self._read_error(response)
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DatabaseConnectionError(
                f"Could not reach {self.base_url}: {e}", cause=e
            ) from e

        code = error.get("code")
        message = error.get("message") or f"HTTP {status}"
        details = {"status_code": status}
        if error.get("hint"):
            details["hint"] = error["hint"]

        if status == 404 or code in _MISSING_FUNCTION_CODES:
            raise ExecutionPathUnavailableError(
                f"Remote procedure {self.rpc_function} is not available: {message}",
                sqlstate=code,
                details=details,
            )
        if code in _NO_PRIVILEGE_CODES:
            raise ExecutionPathUnavailableError(
                f"Not allowed to call {self.rpc_function}: {message}",
                sqlstate=code,
                details=details,
            )
        if status in (401, 403) or code in _AUTH_CODES:
            raise DatabaseConnectionError(
                f"Authentication rejected by {self.base_url}: {message}", details=details
            )
        if is_concurrent_change(code, message=f"{message} {error.get('details') or ''}"):
            raise ConcurrentSchemaChangeError(message, sqlstate=code, details=details)
        raise ExecutionError(f"Migration failed: {message}", sqlstate=code, details=details)

    async def probe(self, schema: str, table: str) -> bool:
        session = await self._get_session()
        url = f"{self.base_url}/{table}"
        try:
            async with session.get(
                url,
                params={"select": "*", "limit": "0"},
                headers={"Accept-Profile": schema},
            ) as response:
                if response.status < 300:
                    return True
                error = await self._read_error(response)
                self.logger.warning(
                    f"Probe of {schema}.{table} returned HTTP {response.status}: "
                    f"{error.get('message')}"
                )
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.warning(f"Probe of {schema}.{table} failed: {e}")
            return False

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
