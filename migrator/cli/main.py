"""CLI entry point for the migration engine."""

import os
from typing import Annotated, Optional

import typer
from rich.console import Console

from migrator import __version__
from migrator.cli.commands import health, migrate

# Create main app
app = typer.Typer(
    name="migrator",
    help="Schema migration CLI - Apply, roll back and inspect database migrations",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Register sub-commands
app.add_typer(health.app, name="health", help="Health check commands")
app.add_typer(migrate.migrate_app, name="migrate", help="Database migration commands")

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"migrator version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
    database_url: Annotated[
        Optional[str],
        typer.Option("--database-url", "-u", envvar="DATABASE_URL", help="Database URL"),
    ] = None,
) -> None:
    """
    Schema migration CLI.

    [bold]Quick Start:[/bold]

        # Create a migration file
        migrator migrate create add_users_table

        # Apply pending migrations
        migrator migrate up

        # Roll back the last batch
        migrator migrate down

        # Show what is applied and what is pending
        migrator migrate status

    [bold]Environment Variables:[/bold]

        DATABASE_URL    - SQLAlchemy async URL of the target database
        MIGRATIONS_DIR  - Directory holding migration files
    """
    # Override config with CLI options
    if database_url:
        os.environ["DATABASE_URL"] = database_url


if __name__ == "__main__":
    app()
