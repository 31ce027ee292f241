"""
Command-line interface for pgreconcile.
"""

import asyncio
import json
import sys
from functools import wraps
from pathlib import Path
from typing import Any, Optional

import click
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from . import __version__
from .config import ReconcilerSettings, TargetSchema, default_target_schema, setup_logging
from .exceptions import ConfigurationError, PgReconcileError
from .schema.operations import SchemaChange, render_migration
from .schema.planner import plan_changes
from .schema.reconciler import ReconciliationResult, ReconciliationStatus, SchemaReconciler


console = Console()


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PgReconcileError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(0)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
            if "--debug" in sys.argv:
                import traceback
                traceback.print_exc()
            sys.exit(1)
    return wrapper


def _load_settings(ctx: click.Context, **overrides: Any) -> ReconcilerSettings:
    """Build settings from the environment, with CLI options taking precedence."""
    try:
        settings = ReconcilerSettings(
            **{k: v for k, v in overrides.items() if v is not None}
        )
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e

    setup_logging(settings.logging, debug=ctx.obj.get("debug", False))
    return settings


schema_file_option = click.option(
    "--schema-file",
    "-s",
    type=click.Path(exists=True, dir_okay=False),
    help="Target schema YAML (defaults to the bundled cache schema)",
)


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """pgreconcile: idempotent, additive schema reconciliation for PostgreSQL."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="target-schema.yaml",
    help="Output schema file path",
)
@handle_errors
def init(output: str):
    """Write the bundled target schema to a YAML file."""
    if Path(output).exists():
        if not click.confirm(f"Schema file {output} already exists. Overwrite?"):
            return

    default_target_schema().to_yaml(output)
    console.print(f"[green]✓[/green] Schema file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit the tables, columns and unique indexes you need")
    console.print(f"2. Run: pgreconcile validate-schema -s {output}")
    console.print(f"3. Run: pgreconcile reconcile -s {output}")


@main.command()
@schema_file_option
@click.pass_context
@handle_errors
def validate_schema(ctx, schema_file: Optional[str]):
    """Validate a target schema file."""
    settings = _load_settings(ctx, schema_file=schema_file)
    target = settings.load_target_schema()

    console.print("[green]✓[/green] Target schema is valid")
    _display_schema_summary(target)


@main.command()
@schema_file_option
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False),
    help="Write the SQL to a file instead of the console",
)
@click.pass_context
@handle_errors
def render(ctx, schema_file: Optional[str], output: Optional[str]):
    """Print the idempotent migration SQL."""
    settings = _load_settings(ctx, schema_file=schema_file)
    sql = render_migration(settings.load_target_schema())

    if output:
        Path(output).write_text(sql, encoding="utf-8")
        console.print(f"[green]✓[/green] SQL written to {output}")
    else:
        click.echo(sql)


@main.command()
@schema_file_option
@click.option(
    "--database-url",
    help="postgresql:// URL (defaults to DATABASE_URL)",
)
@click.pass_context
@handle_errors
def plan(ctx, schema_file: Optional[str], database_url: Optional[str]):
    """Show which additions the live database is missing."""
    settings = _load_settings(
        ctx, schema_file=schema_file, database_url=database_url, backend="postgres"
    )
    target = settings.load_target_schema()

    from .executors import ExecutorFactory

    async def run_plan():
        async with ExecutorFactory.create_executor(settings) as executor:
            snapshot = await executor.snapshot(target.schema_name, target.table_names)
        return plan_changes(target, snapshot)

    changes = asyncio.run(run_plan())
    if not changes:
        console.print("[green]✓[/green] Schema is already up to date")
        return

    _display_changes(changes)


@main.command()
@schema_file_option
@click.option(
    "--backend",
    type=click.Choice(["rest", "postgres"]),
    help="Privileged execution path (overrides PGRECONCILE_BACKEND)",
)
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    help="Print the result as JSON",
)
@click.pass_context
@handle_errors
def reconcile(ctx, schema_file: Optional[str], backend: Optional[str], as_json: bool):
    """Reconcile the database with the target schema once."""
    settings = _load_settings(ctx, schema_file=schema_file, backend=backend)
    target = settings.load_target_schema()

    from .executors import ExecutorFactory

    async def run_reconcile() -> ReconciliationResult:
        async with ExecutorFactory.create_executor(settings) as executor:
            return await SchemaReconciler(executor).reconcile(target)

    result = asyncio.run(run_reconcile())

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _display_result(result)

    if result.status == ReconciliationStatus.FAILED:
        sys.exit(1)


@main.command()
@schema_file_option
@click.option("--host", help="Bind address")
@click.option("--port", type=int, help="Bind port")
@click.pass_context
@handle_errors
def serve(ctx, schema_file: Optional[str], host: Optional[str], port: Optional[int]):
    """Serve the reconciliation HTTP endpoint."""
    settings = _load_settings(ctx, schema_file=schema_file, host=host, port=port)
    settings.validate_settings()

    from .server import run_server

    console.print(
        f"[blue]Serving on http://{settings.host}:{settings.port}"
        f"{settings.endpoint_path} (backend: {settings.backend})[/blue]"
    )
    run_server(settings, settings.load_target_schema())


def _display_schema_summary(target: TargetSchema) -> None:
    """Display a summary of the target schema."""
    columns_table = Table(title=f"Columns ({target.schema_name})")
    columns_table.add_column("Table", style="cyan")
    columns_table.add_column("Column", style="magenta")
    columns_table.add_column("Type", style="green")
    columns_table.add_column("Default", style="yellow")

    for table in target.tables:
        for column in table.columns:
            columns_table.add_row(
                table.name, column.name, column.type.sql_type, column.default or ""
            )

    console.print(columns_table)

    indexes = [i for t in target.tables for i in t.unique_indexes]
    if indexes:
        index_table = Table(title="Unique Indexes")
        index_table.add_column("Index", style="cyan")
        index_table.add_column("Table", style="magenta")
        index_table.add_column("Columns", style="green")
        for index in indexes:
            index_table.add_row(index.name, index.table, ", ".join(index.columns))
        console.print(index_table)


def _display_changes(changes: list[SchemaChange]) -> None:
    table = Table(title="Pending Changes")
    table.add_column("Type", style="cyan")
    table.add_column("Table", style="magenta")
    table.add_column("Statement", style="green")

    for change in changes:
        table.add_row(change.change_type.value, change.full_table_name, change.sql)

    console.print(table)


def _display_result(result: ReconciliationResult) -> None:
    style = {
        ReconciliationStatus.APPLIED: "green",
        ReconciliationStatus.ALREADY_CURRENT: "green",
        ReconciliationStatus.MANUAL_ACTION_REQUIRED: "yellow",
        ReconciliationStatus.FAILED: "red",
    }[result.status]

    console.print(f"[{style}]{result.status.value}[/{style}] ({result.execution_time_ms:.1f}ms)")
    if result.message:
        console.print(escape(result.message))
    if result.error:
        console.print(f"[red]Error:[/red] {escape(result.error)}")
    if result.changes:
        _display_changes(result.changes)

    if not result.success:
        console.print(Syntax(result.sql, "sql", word_wrap=True))
        if result.hint:
            console.print(f"[yellow]Hint:[/yellow] {escape(result.hint)}")


if __name__ == "__main__":
    main()
