"""
Migration CLI commands for managing database migrations.
"""

import asyncio
import os
import re
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, NoReturn, Optional

import typer

from migrator.cli.output import (
    console,
    print_batch_result,
    print_error,
    print_json,
    print_status_report,
    print_success,
)
from migrator.core.config import settings
from migrator.core.database import ExecutionClient
from migrator.core.exceptions import MigrationError
from migrator.migrations.loader import load_migrations
from migrator.migrations.registry import MigrationRegistry
from migrator.migrations.runner import MigrationRunner

migrate_app = typer.Typer(name="migrate", help="Database migration commands")

MigrationsDirOption = Annotated[
    Optional[Path],
    typer.Option("--dir", "-d", help="Directory containing migration files"),
]
ForceOption = Annotated[
    bool,
    typer.Option("--force", "-f", help="Skip confirmation prompt"),
]


def get_client() -> ExecutionClient:
    """Get an execution client for the configured database."""
    return ExecutionClient(os.getenv("DATABASE_URL") or settings.database_url)


def get_runner(migrations_dir: Optional[Path] = None) -> MigrationRunner:
    """Get migration runner instance with migrations loaded from disk."""
    registry = MigrationRegistry(load_migrations(migrations_dir))
    return MigrationRunner(get_client(), registry)


def run_with_runner(
    migrations_dir: Optional[Path],
    operation: Callable[[MigrationRunner], Awaitable[Any]],
) -> Any:
    """Run an async runner operation and release connections afterwards."""

    async def _run():
        runner = get_runner(migrations_dir)
        try:
            return await operation(runner)
        finally:
            await runner.close()

    return asyncio.run(_run())


def confirm_or_exit(message: str, force: bool) -> None:
    if force:
        return
    if not typer.confirm(message):
        console.print("[yellow]Cancelled.[/yellow]")
        raise typer.Exit(0)


def exit_with_error(prefix: str, error: Exception) -> NoReturn:
    if isinstance(error, MigrationError):
        print_error(f"{prefix}: {error.message}", {"code": error.error_code})
    else:
        print_error(f"{prefix}: {error}")
    raise typer.Exit(1)


@migrate_app.command("up")
def up(migrations_dir: MigrationsDirOption = None):
    """Apply pending migrations."""
    console.print("Applying pending migrations...")

    try:
        result = run_with_runner(migrations_dir, lambda runner: runner.up())
    except Exception as e:
        exit_with_error("Migration failed", e)

    if not result.results:
        console.print("[green]No pending migrations to apply.[/green]")
        return

    print_batch_result(result, verb="Applied")

    if result.has_failures:
        raise typer.Exit(1)


@migrate_app.command("down")
def down(migrations_dir: MigrationsDirOption = None, force: ForceOption = False):
    """Rollback the last batch of migrations."""
    confirm_or_exit(
        "Are you sure you want to rollback the last batch? This may cause data loss.", force
    )

    try:
        result = run_with_runner(migrations_dir, lambda runner: runner.down())
    except Exception as e:
        exit_with_error("Rollback failed", e)

    if not result.results:
        console.print("[yellow]No migrations to rollback.[/yellow]")
        return

    print_batch_result(result, verb="Rolled back")

    if result.has_failures:
        raise typer.Exit(1)


@migrate_app.command("reset")
def reset(migrations_dir: MigrationsDirOption = None, force: ForceOption = False):
    """Rollback all migrations."""
    confirm_or_exit(
        "Are you sure you want to rollback ALL migrations? This may cause data loss.", force
    )

    try:
        results = run_with_runner(migrations_dir, lambda runner: runner.reset())
    except Exception as e:
        exit_with_error("Reset failed", e)

    console.print(f"Rolled back {len(results)} batch(es) of migrations")
    for result in results:
        print_batch_result(result, verb="Rolled back")

    if any(r.has_failures for r in results):
        raise typer.Exit(1)


@migrate_app.command("refresh")
def refresh(migrations_dir: MigrationsDirOption = None, force: ForceOption = False):
    """Rollback all migrations and apply them again."""
    confirm_or_exit(
        "Are you sure you want to rollback and re-apply ALL migrations? This may cause data loss.",
        force,
    )

    try:
        result = run_with_runner(migrations_dir, lambda runner: runner.refresh())
    except Exception as e:
        exit_with_error("Refresh failed", e)

    print_batch_result(result, verb="Applied")

    if result.has_failures:
        raise typer.Exit(1)


@migrate_app.command("status")
def status(
    migrations_dir: MigrationsDirOption = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the report as JSON")] = False,
):
    """Show current migration status."""
    try:
        report = run_with_runner(migrations_dir, lambda runner: runner.get_status())
    except Exception as e:
        exit_with_error("Failed to get migration status", e)

    if as_json:
        print_json(report)
    else:
        print_status_report(report)


def slugify(name: str) -> str:
    """Turn a free-form name into a lowercase identifier."""
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")


@migrate_app.command("create")
def create(
    name: Annotated[str, typer.Argument(help="Name for the migration")],
    migrations_dir: MigrationsDirOption = None,
    description: Annotated[
        Optional[str],
        typer.Option("--description", help="Description of the migration"),
    ] = None,
):
    """Create a new migration file."""
    slug = slugify(name)
    if not slug:
        print_error("Migration name must contain letters or digits")
        raise typer.Exit(1)

    target_dir = Path(migrations_dir or settings.migrations_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    now = datetime.now()
    migration_name = f"{now.strftime('%Y%m%d%H%M%S')}_{slug}"
    filepath = target_dir / f"{migration_name}.py"

    desc = description or name.replace("_", " ")

    template = f'''"""
Migration: {desc}
Created: {now.strftime('%Y-%m-%d')}
"""

from sqlalchemy.ext.asyncio import AsyncConnection

from migrator.core.database import execute_sql

name = "{migration_name}"
description = {desc!r}


async def up(connection: AsyncConnection) -> None:
    """Apply migration."""
    await execute_sql(
        connection,
        """
        -- Your SQL here
        """,
    )


async def down(connection: AsyncConnection) -> None:
    """Rollback migration."""
    await execute_sql(
        connection,
        """
        -- Your rollback SQL here
        """,
    )
'''

    filepath.write_text(template, encoding="utf-8")

    print_success(f"Created migration: {filepath}")
