"""Shared fixtures for the migration engine tests."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncConnection

from migrator.core.database import ExecutionClient, execute_sql
from migrator.migrations.factory import create_sql_migration
from migrator.migrations.ledger import MigrationLedger
from migrator.migrations.registry import MigrationRegistry
from migrator.migrations.runner import MigrationRunner


@pytest.fixture
def database_url(tmp_path):
    """SQLite database file unique to each test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest_asyncio.fixture
async def client(database_url):
    """Execution client with retries that never sleep."""
    client = ExecutionClient(
        database_url,
        max_retries=2,
        retry_base_delay=0,
        retry_max_delay=0,
    )
    yield client
    await client.close()


@pytest.fixture
def ledger(client):
    return MigrationLedger(client, table_name="migrations")


@pytest.fixture
def users_migration():
    return create_sql_migration(
        "20250101000000_create_users",
        "CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT NOT NULL)",
        "DROP TABLE users",
        description="Create users table",
    )


@pytest.fixture
def items_migration():
    return create_sql_migration(
        "20250101000001_create_items",
        "CREATE TABLE items (id INTEGER PRIMARY KEY, user_id INTEGER REFERENCES users(id))",
        "DROP TABLE items",
        description="Create items table",
    )


@pytest.fixture
def runner(client, ledger, users_migration, items_migration):
    registry = MigrationRegistry([users_migration, items_migration])
    return MigrationRunner(client, registry, ledger)


@pytest.fixture
def table_names(client):
    """Coroutine function returning the table names in the test database."""

    async def fetch_table_names() -> set[str]:
        async def fetch(connection: AsyncConnection) -> set[str]:
            result = await connection.exec_driver_sql(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            )
            return {row[0] for row in result}

        return await client.execute_with_retry(fetch)

    return fetch_table_names


@pytest.fixture
def run_sql(client):
    """Coroutine function running a SQL script in its own transaction."""

    async def run(sql: str) -> None:
        async def operation(connection: AsyncConnection) -> None:
            await execute_sql(connection, sql)

        await client.execute_with_retry(operation)

    return run
