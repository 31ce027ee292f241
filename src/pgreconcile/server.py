"""
HTTP endpoint for pgreconcile.

Exposes the reconciler to a browser-hosted admin page: an OPTIONS
pre-flight answered with permissive CORS headers, and any other method on
the endpoint path runs one reconciliation and answers with a JSON body.
"""

import logging
from typing import Callable, Optional

from aiohttp import web

from . import __version__
from .config import ReconcilerSettings, TargetSchema
from .exceptions import PgReconcileError
from .executors import ExecutorFactory, SqlExecutor
from .schema.operations import render_migration
from .schema.reconciler import ReconciliationStatus, SchemaReconciler


logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
}

ExecutorFactoryFn = Callable[[ReconcilerSettings], SqlExecutor]

SETTINGS_KEY = web.AppKey("settings", ReconcilerSettings)
TARGET_SCHEMA_KEY = web.AppKey("target_schema", TargetSchema)
EXECUTOR_FACTORY_KEY = web.AppKey("executor_factory", object)


@web.middleware
async def cors_middleware(request: web.Request, handler):
    """Answer pre-flight requests and add CORS headers to every response."""
    # only routed paths get a pre-flight answer; the rest fall through to 404/405
    if request.method == "OPTIONS" and request.match_info.http_exception is None:
        return web.Response(status=200, headers=CORS_HEADERS)

    try:
        response = await handler(request)
    except web.HTTPException as e:
        e.headers.update(CORS_HEADERS)
        raise
    response.headers.update(CORS_HEADERS)
    return response


def _failure_response(schema: TargetSchema, error: str) -> web.Response:
    body = {"success": False, "status": "failed", "error": error, "sql": render_migration(schema)}
    return web.json_response(body, status=500)


async def run_migration(request: web.Request) -> web.Response:
    """Run one reconciliation and report it as JSON."""
    app = request.app
    schema = app[TARGET_SCHEMA_KEY]
    logger.info(f"Reconciliation requested via {request.method} {request.path}")

    try:
        executor = app[EXECUTOR_FACTORY_KEY](app[SETTINGS_KEY])
    except PgReconcileError as e:
        logger.error(f"Cannot build executor: {e}")
        return _failure_response(schema, e.message)

    try:
        async with executor:
            result = await SchemaReconciler(executor).reconcile(schema)
    except Exception as e:
        # reconcile() reports its own failures; this only guards executor cleanup
        logger.exception(f"Unexpected error while running reconciliation: {e}")
        return _failure_response(schema, str(e) or e.__class__.__name__)

    status = 500 if result.status == ReconciliationStatus.FAILED else 200
    return web.json_response(result.to_dict(), status=status)


async def health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "version": __version__})


def create_app(
    settings: ReconcilerSettings,
    target_schema: Optional[TargetSchema] = None,
    executor_factory: Optional[ExecutorFactoryFn] = None,
) -> web.Application:
    """
    Build the aiohttp application.

    Args:
        settings: Credentials and endpoint configuration
        target_schema: Schema to reconcile (loaded from settings when omitted)
        executor_factory: Builds a fresh executor per request
    """
    app = web.Application(middlewares=[cors_middleware])
    app[SETTINGS_KEY] = settings
    app[TARGET_SCHEMA_KEY] = target_schema or settings.load_target_schema()
    app[EXECUTOR_FACTORY_KEY] = executor_factory or ExecutorFactory.create_executor

    app.router.add_get("/health", health)
    app.router.add_route("*", settings.endpoint_path, run_migration)
    if settings.endpoint_path != "/":
        app.router.add_route("*", "/", run_migration)
    return app


def run_server(settings: ReconcilerSettings, target_schema: Optional[TargetSchema] = None) -> None:
    """Serve the endpoint until interrupted."""
    app = create_app(settings, target_schema)
    logger.info(
        f"Serving reconciliation endpoint on http://{settings.host}:{settings.port}"
        f"{settings.endpoint_path} (backend={settings.backend})"
    )
    web.run_app(app, host=settings.host, port=settings.port, print=None)
