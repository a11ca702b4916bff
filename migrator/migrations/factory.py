"""
Constructors for the three migration shapes: function pair, SQL pair and
SQL file pair.

No SQL is validated here; syntax errors surface when the statements run.
"""

from pathlib import Path
from typing import Union

from sqlalchemy.ext.asyncio import AsyncConnection

from migrator.core.database import execute_sql
from migrator.migrations.models import Migration, MigrationOperation

PathLike = Union[str, Path]


def create_migration(
    name: str,
    up: MigrationOperation,
    down: MigrationOperation,
    description: str = "",
) -> Migration:
    """
    Create a migration from a pair of async functions.

    Args:
        name: Migration name (``YYYYMMDDHHMMSS_description``).
        up: Async function applying the migration.
        down: Async function rolling it back.
        description: Optional human-readable description.

    Returns:
        Migration object.
    """
    return Migration(name=name, up=up, down=down, description=description)


def create_sql_migration(
    name: str, up_sql: str, down_sql: str, description: str = ""
) -> Migration:
    """
    Create a migration from a pair of SQL strings.

    Returns:
        Migration object running ``up_sql`` / ``down_sql`` as opaque SQL.
    """

    async def up(connection: AsyncConnection) -> None:
        await execute_sql(connection, up_sql)

    async def down(connection: AsyncConnection) -> None:
        await execute_sql(connection, down_sql)

    return Migration(name=name, up=up, down=down, description=description)


def create_file_migration(
    name: str,
    up_file_path: PathLike,
    down_file_path: PathLike,
    description: str = "",
) -> Migration:
    """
    Create a migration from a pair of SQL files.

    The files are read each time the migration runs, not when it is created,
    so edits on disk are always picked up.

    Returns:
        Migration object.
    """
    up_path = Path(up_file_path)
    down_path = Path(down_file_path)

    async def up(connection: AsyncConnection) -> None:
        await execute_sql(connection, up_path.read_text(encoding="utf-8"))

    async def down(connection: AsyncConnection) -> None:
        await execute_sql(connection, down_path.read_text(encoding="utf-8"))

    return Migration(
        name=name,
        up=up,
        down=down,
        description=description,
        file_path=str(up_path),
    )
