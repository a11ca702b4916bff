"""Health check commands."""

import asyncio
import os

import typer

from migrator.cli.output import console, format_status, print_error
from migrator.core.config import settings
from migrator.core.database import ExecutionClient

app = typer.Typer(help="Health check commands")


def get_client() -> ExecutionClient:
    return ExecutionClient(os.getenv("DATABASE_URL") or settings.database_url)


async def _check(client: ExecutionClient) -> bool:
    try:
        return await client.health_check()
    finally:
        await client.close()


@app.callback(invoke_without_command=True)
def health(ctx: typer.Context) -> None:
    """
    Check that the database answers a trivial query.

    Exits with code 1 when the database is unreachable.
    """
    if ctx.invoked_subcommand is not None:
        return

    client = get_client()

    try:
        healthy = asyncio.run(_check(client))
    except Exception as e:
        print_error(f"Connection failed: {str(e)}")
        raise typer.Exit(1)

    console.print("[bold]Health Status[/bold]")
    console.print("  Database: ", format_status("healthy" if healthy else "unhealthy"))

    if not healthy:
        if client.last_error is not None:
            print_error(f"Health check failed: {client.last_error}")
        raise typer.Exit(1)
