"""Tests for the migration registry and factory."""

import pytest

from migrator.core.exceptions import DuplicateMigrationError
from migrator.migrations.factory import (
    create_file_migration,
    create_migration,
    create_sql_migration,
)
from migrator.migrations.registry import MigrationRegistry


async def noop(connection):
    return None


class TestMigrationRegistry:
    """Tests for MigrationRegistry."""

    def test_keeps_registration_order(self):
        registry = MigrationRegistry()
        registry.register(create_migration("20250102000000_b", noop, noop))
        registry.register(create_migration("20250101000000_a", noop, noop))

        assert registry.names() == ["20250102000000_b", "20250101000000_a"]

    def test_register_is_chainable(self):
        registry = (
            MigrationRegistry()
            .register(create_migration("a", noop, noop))
            .register_many([create_migration("b", noop, noop), create_migration("c", noop, noop)])
        )

        assert len(registry) == 3
        assert "b" in registry

    def test_duplicate_name_rejected(self):
        registry = MigrationRegistry([create_migration("a", noop, noop)])

        with pytest.raises(DuplicateMigrationError) as exc_info:
            registry.register(create_migration("a", noop, noop))

        assert exc_info.value.name == "a"
        assert len(registry) == 1

    def test_get(self):
        migration = create_migration("a", noop, noop)
        registry = MigrationRegistry([migration])

        assert registry.get("a") is migration
        assert registry.get("missing") is None

    def test_get_all_returns_copy(self):
        registry = MigrationRegistry([create_migration("a", noop, noop)])

        registry.get_all().clear()

        assert len(registry) == 1


class TestMigrationFactory:
    """Tests for the migration constructors."""

    def test_create_migration(self):
        migration = create_migration("a", noop, noop, description="desc")

        assert migration.up is noop
        assert migration.down is noop
        assert migration.description == "desc"

    @pytest.mark.asyncio
    async def test_sql_migration_runs_statements(self, client, table_names):
        migration = create_sql_migration(
            "a",
            "CREATE TABLE a (id INTEGER); CREATE TABLE b (id INTEGER);",
            "DROP TABLE b; DROP TABLE a;",
        )

        await client.execute_with_retry(migration.up)
        assert {"a", "b"} <= await table_names()

        await client.execute_with_retry(migration.down)
        assert not {"a", "b"} & await table_names()

    @pytest.mark.asyncio
    async def test_file_migration_reads_files_when_run(self, client, table_names, tmp_path):
        up_file = tmp_path / "a.up.sql"
        down_file = tmp_path / "a.down.sql"
        up_file.write_text("CREATE TABLE first_version (id INTEGER);")
        down_file.write_text("DROP TABLE first_version;")

        migration = create_file_migration("a", up_file, down_file)

        # Edited after creation; the new content is what runs
        up_file.write_text("CREATE TABLE second_version (id INTEGER);")

        await client.execute_with_retry(migration.up)

        tables = await table_names()
        assert "second_version" in tables
        assert "first_version" not in tables
        assert migration.file_path == str(up_file)

    @pytest.mark.asyncio
    async def test_file_migration_missing_file_fails_on_run(self, client, tmp_path):
        migration = create_file_migration("a", tmp_path / "nope.up.sql", tmp_path / "nope.down.sql")

        with pytest.raises(FileNotFoundError):
            await client.execute_with_retry(migration.up)
