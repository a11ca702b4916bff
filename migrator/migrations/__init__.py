"""
Relational schema migration system.

This package provides the migration registry and factory, the persistent
ledger of applied migrations and the runner that applies and rolls back
migrations in batches.
"""

from migrator.migrations.factory import create_file_migration, create_migration, create_sql_migration
from migrator.migrations.ledger import MigrationLedger
from migrator.migrations.loader import load_migrations
from migrator.migrations.models import (
    Migration,
    MigrationBatchResult,
    MigrationRecord,
    MigrationResult,
    MigrationStatus,
)
from migrator.migrations.registry import MigrationRegistry
from migrator.migrations.runner import MigrationRunner

__all__ = [
    "Migration",
    "MigrationBatchResult",
    "MigrationLedger",
    "MigrationRecord",
    "MigrationRegistry",
    "MigrationResult",
    "MigrationRunner",
    "MigrationStatus",
    "create_file_migration",
    "create_migration",
    "create_sql_migration",
    "load_migrations",
]
