"""
In-memory registry of migration definitions.
"""

from typing import Iterable, Iterator, Optional

from migrator.core.exceptions import DuplicateMigrationError
from migrator.log.logging import logger
from migrator.migrations.models import Migration


class MigrationRegistry:
    """
    Holds migrations in registration order.

    Registration order is the apply order; the registry never re-sorts by
    name. Callers that load migrations from storage are expected to hand them
    over already sorted.
    """

    def __init__(self, migrations: Optional[Iterable[Migration]] = None):
        self._migrations: list[Migration] = []
        self._by_name: dict[str, Migration] = {}
        if migrations:
            self.register_many(migrations)

    def register(self, migration: Migration) -> "MigrationRegistry":
        """
        Register a migration.

        Raises:
            DuplicateMigrationError: If the name is already registered.
        """
        if migration.name in self._by_name:
            raise DuplicateMigrationError(migration.name)

        self._migrations.append(migration)
        self._by_name[migration.name] = migration
        return self

    def register_many(self, migrations: Iterable[Migration]) -> "MigrationRegistry":
        """Register several migrations, keeping their order."""
        for migration in migrations:
            self.register(migration)

        logger.debug("Registered {count} migrations", count=len(self._migrations))
        return self

    def get_all(self) -> list[Migration]:
        """Return a copy of the registered migrations in order."""
        return list(self._migrations)

    def get(self, name: str) -> Optional[Migration]:
        return self._by_name.get(name)

    def names(self) -> list[str]:
        return [m.name for m in self._migrations]

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[Migration]:
        return iter(list(self._migrations))

    def __len__(self) -> int:
        return len(self._migrations)
