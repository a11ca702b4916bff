"""Output formatting utilities for CLI."""

import json
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

from migrator.migrations.models import MigrationBatchResult

console = Console()
error_console = Console(stderr=True)


def format_timestamp(ts: str | datetime | None) -> str:
    """Format a timestamp for display."""
    if ts is None:
        return "-"
    if isinstance(ts, str):
        try:
            ts = datetime.fromisoformat(ts.replace("Z", "+00:00"))
        except ValueError:
            return ts
    return ts.strftime("%Y-%m-%d %H:%M:%S")


def format_status(status: str) -> Text:
    """Format status with color."""
    colors = {
        "pending": "yellow",
        "applied": "green",
        "rolled_back": "blue",
        "failed": "red",
        "healthy": "green",
        "unhealthy": "red",
        "connected": "green",
        "error": "red",
    }
    color = colors.get(status.lower(), "white")
    return Text(status, style=color)


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, default=str, indent=2))


def print_error(message: str, details: dict | None = None) -> None:
    """Print an error message."""
    error_console.print(f"[red]Error:[/red] {message}")
    if details:
        for key, value in details.items():
            error_console.print(f"  [dim]{key}:[/dim] {value}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]![/yellow] {message}")


def print_batch_result(result: MigrationBatchResult, verb: str = "Applied") -> None:
    """Print the per-migration outcome of an up or down run."""
    console.print(
        f"{verb} [green]{result.migrations_applied}[/green] migration(s), "
        f"failed [red]{result.migrations_failed}[/red] (batch {result.batch})"
    )

    if not result.results:
        return

    table = Table(show_header=True)
    table.add_column("Migration", style="cyan")
    table.add_column("Status")
    table.add_column("Error", style="red")

    for r in result.results:
        table.add_row(r.name, format_status(r.status.value), r.error or "")

    console.print(table)


def print_status_report(report: dict) -> None:
    """Print the runner status report."""
    console.print()
    console.print("[bold]Migration Status[/bold]")
    console.print(f"  Total:       [cyan]{report['total_migrations']}[/cyan]")
    console.print(f"  Applied:     [green]{report['applied_count']}[/green]")
    console.print(f"  Pending:     [yellow]{report['pending_count']}[/yellow]")
    console.print(f"  Failed:      [red]{report['failed_count']}[/red]")
    console.print(f"  Rolled back: [blue]{report['rolled_back_count']}[/blue]")
    console.print(f"  Last batch:  [cyan]{report['latest_batch']}[/cyan]")
    console.print()

    rows = report["applied"] + report["failed"] + report["rolled_back"]
    if rows:
        table = Table(title="Recorded Migrations", show_header=True)
        table.add_column("Name", style="white")
        table.add_column("Batch", style="cyan")
        table.add_column("Status")
        table.add_column("Time", style="dim")

        for m in sorted(rows, key=lambda r: r["applied_at"] or ""):
            table.add_row(
                m["name"],
                str(m["batch"]),
                format_status(m["status"]),
                format_timestamp(m["applied_at"]),
            )

        console.print(table)
        console.print()

    if report["pending"]:
        table = Table(title="Pending Migrations", show_header=True)
        table.add_column("Name", style="yellow")
        table.add_column("Description", style="dim")

        for m in report["pending"]:
            table.add_row(m["name"], m["description"])

        console.print(table)
    else:
        console.print("[green]All migrations are up to date![/green]")

    if report["missing"]:
        console.print()
        print_warning("The following migrations are in the database but not in the code:")
        for m in report["missing"]:
            console.print(f"  • {m['name']} ({m['status']}, batch {m['batch']})")
