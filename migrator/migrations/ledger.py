"""
Persistent ledger of applied migrations.

Rows are never deleted: a rollback or a failure changes the row's status so
the table keeps the full history.
"""

import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Optional, TypeVar

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    func,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncConnection

from migrator.core.config import settings
from migrator.core.database import ExecutionClient, is_missing_table_error
from migrator.core.exceptions import LedgerInitError
from migrator.log.logging import logger
from migrator.migrations.models import MigrationRecord, MigrationStatus

T = TypeVar("T")


def build_ledger_table(name: str, metadata: Optional[MetaData] = None) -> Table:
    """Describe the ledger table; one row per migration name."""
    return Table(
        name,
        metadata if metadata is not None else MetaData(),
        Column("id", String(36), primary_key=True),
        Column("name", String(255), nullable=False),
        Column("batch", Integer, nullable=False),
        Column("migration_time", DateTime, nullable=False, server_default=func.now()),
        Column("status", String(50), nullable=False),
        # Monotonic position of the latest apply; orders rollbacks independently of the clock
        Column("apply_order", Integer, nullable=False),
        UniqueConstraint("name", name=f"{name}_name_unique"),
        Index(f"{name}_batch_idx", "batch"),
    )


class MigrationLedger:
    """
    Reads and writes the ledger table through the execution client.

    Mutations accept an optional ``connection`` so they can join a
    transaction the caller already holds; without one they run as their own
    retried transaction.
    """

    def __init__(self, client: ExecutionClient, table_name: Optional[str] = None):
        self._client = client
        self._metadata = MetaData()
        self._table = build_ledger_table(table_name or settings.migrations_table, self._metadata)

    @property
    def table(self) -> Table:
        return self._table

    def _next_apply_order(self):
        # Aliased so an UPDATE does not correlate the subquery with the row being updated
        latest = self._table.alias("latest_apply")
        return select(
            func.coalesce(func.max(latest.c.apply_order), 0) + 1
        ).scalar_subquery()

    async def _run(
        self,
        operation: Callable[[AsyncConnection], Awaitable[T]],
        connection: Optional[AsyncConnection] = None,
    ) -> T:
        if connection is not None:
            return await operation(connection)
        return await self._client.execute_with_retry(operation)

    async def initialize(self) -> None:
        """
        Ensure the ledger table exists.

        Raises:
            LedgerInitError: If probing or creating the table fails for any
                reason other than the table being absent.
        """

        async def probe(connection: AsyncConnection) -> None:
            await connection.execute(select(self._table.c.id).limit(1))

        try:
            await self._client.execute_with_retry(probe)
            return
        except Exception as e:
            if not is_missing_table_error(e):
                logger.error(
                    "Error initializing migration ledger",
                    event_type="ledger_init_failed",
                    table=self._table.name,
                    error=str(e),
                )
                raise LedgerInitError(f"Unable to read ledger table {self._table.name}: {e}") from e

        logger.info(
            "Creating migrations table {table}",
            table=self._table.name,
            event_type="ledger_creating",
        )

        async def create(connection: AsyncConnection) -> None:
            await connection.run_sync(self._metadata.create_all)

        try:
            await self._client.execute_with_retry(create)
        except Exception as e:
            logger.error(
                "Error creating migration ledger",
                event_type="ledger_init_failed",
                table=self._table.name,
                error=str(e),
            )
            raise LedgerInitError(f"Unable to create ledger table {self._table.name}: {e}") from e

        logger.info(
            "Migrations table {table} created successfully",
            table=self._table.name,
            event_type="ledger_created",
        )

    async def get_applied(self) -> list[MigrationRecord]:
        """Return every ledger row in apply order, oldest first."""

        async def fetch(connection: AsyncConnection) -> list[MigrationRecord]:
            result = await connection.execute(
                select(self._table).order_by(self._table.c.apply_order.asc())
            )
            return [MigrationRecord.from_row(row) for row in result.mappings()]

        return await self._client.execute_with_retry(fetch)

    async def get_batch(
        self, batch: int, status: Optional[MigrationStatus] = None
    ) -> list[MigrationRecord]:
        """Return the rows of one batch, most recently applied first."""

        async def fetch(connection: AsyncConnection) -> list[MigrationRecord]:
            query = select(self._table).where(self._table.c.batch == batch)
            if status is not None:
                query = query.where(self._table.c.status == status.value)
            result = await connection.execute(
                query.order_by(self._table.c.apply_order.desc())
            )
            return [MigrationRecord.from_row(row) for row in result.mappings()]

        return await self._client.execute_with_retry(fetch)

    async def get_latest_batch(self, status: Optional[MigrationStatus] = None) -> int:
        """
        Return the highest batch number, or 0 if there are no rows.

        Args:
            status: Only consider rows in this status.
        """

        async def fetch(connection: AsyncConnection) -> int:
            query = select(func.max(self._table.c.batch))
            if status is not None:
                query = query.where(self._table.c.status == status.value)
            latest = (await connection.execute(query)).scalar()
            return latest or 0

        return await self._client.execute_with_retry(fetch)

    async def get_batches(self, status: Optional[MigrationStatus] = None) -> list[int]:
        """Return distinct batch numbers, highest first."""

        async def fetch(connection: AsyncConnection) -> list[int]:
            query = select(self._table.c.batch).distinct()
            if status is not None:
                query = query.where(self._table.c.status == status.value)
            result = await connection.execute(query.order_by(self._table.c.batch.desc()))
            return list(result.scalars())

        return await self._client.execute_with_retry(fetch)

    async def insert(
        self,
        name: str,
        batch: int,
        status: MigrationStatus,
        connection: Optional[AsyncConnection] = None,
    ) -> MigrationRecord:
        """Write a new ledger row."""
        record = MigrationRecord(
            id=str(uuid.uuid4()),
            name=name,
            batch=batch,
            applied_at=datetime.utcnow(),
            status=status,
        )

        async def write(conn: AsyncConnection) -> MigrationRecord:
            await conn.execute(
                self._table.insert().values(
                    id=record.id,
                    name=record.name,
                    batch=record.batch,
                    migration_time=record.applied_at,
                    status=record.status.value,
                    apply_order=self._next_apply_order(),
                )
            )
            return record

        return await self._run(write, connection)

    async def update_status(
        self,
        record_id: str,
        status: MigrationStatus,
        connection: Optional[AsyncConnection] = None,
    ) -> None:
        """Change the status of a single row."""

        async def write(conn: AsyncConnection) -> None:
            await conn.execute(
                update(self._table)
                .where(self._table.c.id == record_id)
                .values(status=status.value)
            )

        await self._run(write, connection)

    async def reapply(
        self,
        record_id: str,
        batch: int,
        status: MigrationStatus,
        connection: Optional[AsyncConnection] = None,
    ) -> None:
        """Move a rolled back row into a new batch with a fresh timestamp."""

        async def write(conn: AsyncConnection) -> None:
            await conn.execute(
                update(self._table)
                .where(self._table.c.id == record_id)
                .values(
                    batch=batch,
                    status=status.value,
                    migration_time=datetime.utcnow(),
                    apply_order=self._next_apply_order(),
                )
            )

        await self._run(write, connection)
