"""
Unit tests for the reconciliation HTTP endpoint.
"""

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from pgreconcile import __version__
from pgreconcile.exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    ExecutionPathUnavailableError,
)
from pgreconcile.schema.operations import render_migration
from pgreconcile.schema.reconciler import MANUAL_ACTION_HINT, MANUAL_ACTION_MESSAGE
from pgreconcile.server import CORS_HEADERS, create_app


@pytest.fixture
def executors():
    """Executors handed out by the app, one per request."""
    return []


@pytest_asyncio.fixture
async def client_factory(rest_settings, target_schema, executors):
    """Start a test client whose app builds executors with the given factory."""
    clients = []

    async def factory(executor_factory):
        def tracking_factory(settings):
            executor = executor_factory(settings)
            executors.append(executor)
            return executor

        app = create_app(rest_settings, target_schema, executor_factory=tracking_factory)
        client = TestClient(TestServer(app))
        await client.start_server()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.close()


class TestCors:

    @pytest.mark.asyncio
    async def test_preflight(self, client_factory, fake_executor_class, executors):
        client = await client_factory(lambda settings: fake_executor_class(settings))

        response = await client.options("/run-migration")

        assert response.status == 200
        assert await response.text() == ""
        for name, value in CORS_HEADERS.items():
            assert response.headers[name] == value
        assert executors == []

    @pytest.mark.asyncio
    async def test_preflight_on_root(self, client_factory, fake_executor_class, executors):
        client = await client_factory(lambda settings: fake_executor_class(settings))

        response = await client.options("/")

        assert response.status == 200
        assert executors == []

    @pytest.mark.asyncio
    async def test_preflight_on_unknown_path_is_not_found(
        self, client_factory, fake_executor_class, executors
    ):
        client = await client_factory(lambda settings: fake_executor_class(settings))

        response = await client.options("/no-such-path")

        assert response.status == 404
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert executors == []

    @pytest.mark.asyncio
    async def test_headers_on_every_response(self, client_factory, fake_executor_class):
        client = await client_factory(lambda settings: fake_executor_class(settings))

        for response in (
            await client.post("/run-migration"),
            await client.get("/health"),
            await client.get("/no-such-path"),
        ):
            assert response.headers["Access-Control-Allow-Origin"] == "*"


class TestRunMigration:

    @pytest.mark.asyncio
    async def test_applied(self, client_factory, fake_executor_class, executors, target_schema):
        client = await client_factory(lambda settings: fake_executor_class(settings))

        response = await client.post("/run-migration")
        body = await response.json()

        assert response.status == 200
        assert body["success"] is True
        assert body["status"] == "applied"
        assert body["message"] == "Migration applied successfully."
        assert body["sql"] == render_migration(target_schema)
        assert executors[0].closed is True

    @pytest.mark.asyncio
    async def test_any_method_and_root_path(self, client_factory, fake_executor_class, executors):
        client = await client_factory(lambda settings: fake_executor_class(settings))

        assert (await client.get("/run-migration")).status == 200
        assert (await client.post("/")).status == 200
        assert len(executors) == 2

    @pytest.mark.asyncio
    async def test_manual_action_required(self, client_factory, fake_executor_class, target_schema):
        client = await client_factory(
            lambda settings: fake_executor_class(
                settings,
                execute_error=ExecutionPathUnavailableError("function exec_sql does not exist"),
            )
        )

        response = await client.post("/run-migration")
        body = await response.json()

        assert response.status == 200
        assert body["success"] is False
        assert body["status"] == "manual-action-required"
        assert body["message"] == MANUAL_ACTION_MESSAGE
        assert body["hint"] == MANUAL_ACTION_HINT
        assert body["sql"] == render_migration(target_schema)
        assert "error" not in body

    @pytest.mark.asyncio
    async def test_failed(self, client_factory, fake_executor_class):
        client = await client_factory(
            lambda settings: fake_executor_class(
                settings, execute_error=DatabaseConnectionError("Could not reach database"),
            )
        )

        response = await client.post("/run-migration")
        body = await response.json()

        assert response.status == 500
        assert body["success"] is False
        assert body["status"] == "failed"
        assert body["error"] == "Could not reach database"
        assert "sql" in body

    @pytest.mark.asyncio
    async def test_executor_configuration_error(self, client_factory, target_schema):
        def broken_factory(settings):
            raise ConfigurationError("REST backend requires SUPABASE_SERVICE_ROLE_KEY")

        client = await client_factory(broken_factory)

        response = await client.post("/run-migration")

        assert response.status == 500
        assert await response.json() == {
            "success": False,
            "status": "failed",
            "error": "REST backend requires SUPABASE_SERVICE_ROLE_KEY",
            "sql": render_migration(target_schema),
        }


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client_factory, fake_executor_class, executors):
        client = await client_factory(lambda settings: fake_executor_class(settings))

        response = await client.get("/health")

        assert response.status == 200
        assert await response.json() == {"status": "ok", "version": __version__}
        assert executors == []
