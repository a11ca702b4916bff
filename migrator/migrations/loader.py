"""
Discovery of migration source files in a directory.

Two kinds of sources are recognized:

- ``<name>.py`` modules exposing either a ``migration`` object or async
  ``up(connection)`` / ``down(connection)`` functions;
- ``<name>.up.sql`` / ``<name>.down.sql`` file pairs.

The resulting list is sorted by name, which orders timestamp-prefixed
migrations chronologically.
"""

import importlib.util
import os
from pathlib import Path
from typing import Optional, Union

from migrator.core.config import settings
from migrator.core.exceptions import MigrationLoadError
from migrator.log.logging import logger
from migrator.migrations.factory import create_file_migration
from migrator.migrations.models import Migration

UP_SQL_SUFFIX = ".up.sql"
DOWN_SQL_SUFFIX = ".down.sql"


def _load_module_migration(file_path: Path) -> Optional[Migration]:
    """
    Load a migration from a Python file.

    Returns:
        Migration object if the module defines one, None otherwise.

    Raises:
        MigrationLoadError: If the module fails to import.
    """
    module_name = f"migrator_migration_{file_path.stem}"

    try:
        spec = importlib.util.spec_from_file_location(module_name, file_path)
        if spec is None or spec.loader is None:
            return None

        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
    except Exception as e:
        logger.error(
            "Error loading migration {file_name}",
            file_name=file_path.name,
            error=str(e),
            event_type="migration_load_error",
        )
        raise MigrationLoadError(str(file_path), e) from e

    exported = getattr(module, "migration", None)
    if isinstance(exported, Migration):
        return exported

    up = getattr(module, "up", None)
    down = getattr(module, "down", None)
    if not callable(up) or not callable(down):
        logger.warning(
            "Skipping {file_name}: not a valid migration",
            file_name=file_path.name,
            event_type="migration_invalid",
        )
        return None

    return Migration(
        name=getattr(module, "name", file_path.stem),
        up=up,
        down=down,
        description=getattr(module, "description", ""),
        file_path=str(file_path),
    )


def load_migrations(directory: Optional[Union[str, Path]] = None) -> list[Migration]:
    """
    Discover all migrations in a directory.

    Args:
        directory: Directory to scan (default from config).

    Returns:
        Migrations sorted by name.
    """
    migrations_dir = Path(directory or settings.migrations_dir)

    if not migrations_dir.is_dir():
        logger.warning(
            "Migrations directory not found: {directory}",
            directory=str(migrations_dir),
            event_type="migrations_dir_missing",
        )
        return []

    migrations: list[Migration] = []
    sql_pairs: dict[str, dict[str, Path]] = {}

    for filename in sorted(os.listdir(migrations_dir)):
        file_path = migrations_dir / filename

        if filename.startswith("_") or not file_path.is_file():
            continue

        if filename.endswith(".py"):
            migration = _load_module_migration(file_path)
            if migration:
                migrations.append(migration)
        elif filename.endswith(UP_SQL_SUFFIX):
            sql_pairs.setdefault(filename[: -len(UP_SQL_SUFFIX)], {})["up"] = file_path
        elif filename.endswith(DOWN_SQL_SUFFIX):
            sql_pairs.setdefault(filename[: -len(DOWN_SQL_SUFFIX)], {})["down"] = file_path

    for name, pair in sql_pairs.items():
        if "up" not in pair or "down" not in pair:
            logger.warning(
                "Skipping {name}: SQL migration needs both up and down files",
                name=name,
                event_type="migration_invalid",
            )
            continue
        migrations.append(create_file_migration(name, pair["up"], pair["down"]))

    migrations.sort(key=lambda m: m.name)

    logger.info(
        "Discovered {count} migrations",
        count=len(migrations),
        directory=str(migrations_dir),
        event_type="migrations_discovered",
    )

    return migrations
