"""
Migration runner for applying and rolling back database migrations.
"""

from typing import Any, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncConnection

from migrator.core.config import settings
from migrator.core.database import ExecutionClient, is_transient_error
from migrator.core.exceptions import (
    InvalidTransitionError,
    LogicalMigrationError,
    MissingDefinitionError,
    TransientError,
)
from migrator.log.logging import logger
from migrator.migrations.ledger import MigrationLedger
from migrator.migrations.models import (
    Migration,
    MigrationBatchResult,
    MigrationRecord,
    MigrationResult,
    MigrationStatus,
)
from migrator.migrations.registry import MigrationRegistry


class MigrationRunner:
    """
    Applies and rolls back migrations in batches.

    Features:
    - Computes pending migrations from the registry and the ledger
    - Applies each migration in its own transaction, in registry order
    - Groups every ``up`` run under a new batch number
    - Rolls back the latest batch in reverse apply order
    - Stops a batch at the first failure, leaving later migrations untouched

    Migrations are never run concurrently; each one may depend on schema
    produced by the one before it.
    """

    def __init__(
        self,
        client: ExecutionClient,
        registry: Optional[MigrationRegistry] = None,
        ledger: Optional[MigrationLedger] = None,
        use_transaction: Optional[bool] = None,
    ):
        """
        Initialize the migration runner.

        Args:
            client: Execution client used for every data store call.
            registry: Registered migrations (an empty registry if omitted).
            ledger: Ledger to record progress in (built on ``client`` if omitted).
            use_transaction: Wrap each migration and its ledger write in one
                transaction (default from config). When off, migration bodies
                run on an autocommit connection with no BEGIN.
        """
        self._client = client
        self._registry = registry if registry is not None else MigrationRegistry()
        self._ledger = ledger if ledger is not None else MigrationLedger(client)
        self._use_transaction = (
            settings.migrations_use_transaction if use_transaction is None else use_transaction
        )

    @property
    def client(self) -> ExecutionClient:
        return self._client

    @property
    def registry(self) -> MigrationRegistry:
        return self._registry

    @property
    def ledger(self) -> MigrationLedger:
        return self._ledger

    def register(self, migration: Migration) -> "MigrationRunner":
        self._registry.register(migration)
        return self

    def register_many(self, migrations: Iterable[Migration]) -> "MigrationRunner":
        self._registry.register_many(migrations)
        return self

    def get_migrations(self) -> list[Migration]:
        """Return all registered migrations in apply order."""
        return self._registry.get_all()

    async def initialize(self) -> None:
        """Ensure the ledger table exists."""
        await self._ledger.initialize()

    async def close(self) -> None:
        """Release the execution client's connections."""
        await self._client.close()

    async def get_applied_migrations(self) -> list[MigrationRecord]:
        """Return every ledger row, oldest first."""
        return await self._ledger.get_applied()

    def _pending_from(self, records: list[MigrationRecord]) -> list[Migration]:
        # A rolled back migration can be applied again; applied and failed ones cannot.
        blocked = {r.name for r in records if r.status is not MigrationStatus.ROLLED_BACK}
        return [m for m in self._registry.get_all() if m.name not in blocked]

    async def get_pending_migrations(self) -> list[Migration]:
        """
        Get migrations that still have to be applied.

        Returns:
            Pending migrations in registry order.
        """
        return self._pending_from(await self._ledger.get_applied())

    async def _invoke(self, migration: Migration, direction: str, connection: AsyncConnection) -> None:
        operation = migration.up if direction == "up" else migration.down
        try:
            await operation(connection)
        except Exception as e:
            if is_transient_error(e):
                raise
            raise LogicalMigrationError(migration.name, direction, e) from e

    async def _write_status(
        self,
        migration_name: str,
        record: Optional[MigrationRecord],
        status: MigrationStatus,
        batch: Optional[int] = None,
        connection: Optional[AsyncConnection] = None,
    ) -> None:
        current = record.status if record is not None else MigrationStatus.PENDING
        if not current.can_transition_to(status):
            raise InvalidTransitionError(migration_name, current.value, status.value)

        if record is None:
            await self._ledger.insert(migration_name, batch, status, connection=connection)
        elif batch is not None:
            await self._ledger.reapply(record.id, batch, status, connection=connection)
        else:
            await self._ledger.update_status(record.id, status, connection=connection)

    async def _apply(
        self, migration: Migration, batch: int, previous: Optional[MigrationRecord]
    ) -> None:
        if self._use_transaction:

            async def apply_in_transaction(connection: AsyncConnection) -> None:
                await self._invoke(migration, "up", connection)
                await self._write_status(
                    migration.name, previous, MigrationStatus.APPLIED, batch, connection
                )

            await self._client.execute_with_retry(apply_in_transaction)
            return

        async def apply_only(connection: AsyncConnection) -> None:
            await self._invoke(migration, "up", connection)

        await self._client.execute_with_retry(apply_only, transactional=False)
        await self._write_status(migration.name, previous, MigrationStatus.APPLIED, batch)

    async def _rollback(self, migration: Migration, record: MigrationRecord) -> None:
        if self._use_transaction:

            async def rollback_in_transaction(connection: AsyncConnection) -> None:
                await self._invoke(migration, "down", connection)
                await self._write_status(
                    migration.name, record, MigrationStatus.ROLLED_BACK, connection=connection
                )

            await self._client.execute_with_retry(rollback_in_transaction)
            return

        async def rollback_only(connection: AsyncConnection) -> None:
            await self._invoke(migration, "down", connection)

        await self._client.execute_with_retry(rollback_only, transactional=False)
        await self._write_status(migration.name, record, MigrationStatus.ROLLED_BACK)

    async def up(self) -> MigrationBatchResult:
        """
        Apply all pending migrations as one batch.

        Each migration runs in its own transaction together with its ledger
        row. The first failure is recorded as ``failed`` and ends the batch;
        migrations after it get no ledger row and stay pending.

        Returns:
            Batch result with one entry per attempted migration.

        Raises:
            LedgerInitError: If the ledger table cannot be ensured.
            TransientError: If a data store call exhausted its retries.
        """
        await self.initialize()

        records = await self._ledger.get_applied()
        pending = self._pending_from(records)

        if not pending:
            logger.info("No pending migrations to apply", event_type="migrations_up_to_date")
            return MigrationBatchResult(batch=await self._ledger.get_latest_batch())

        batch = await self._ledger.get_latest_batch() + 1
        rolled_back = {r.name: r for r in records if r.status is MigrationStatus.ROLLED_BACK}
        result = MigrationBatchResult(batch=batch)

        logger.info(
            "Applying {count} pending migrations in batch {batch}",
            count=len(pending),
            batch=batch,
            event_type="migrations_starting",
        )

        for migration in pending:
            previous = rolled_back.get(migration.name)

            logger.info(
                "Applying migration {name}",
                name=migration.name,
                batch=batch,
                event_type="migration_applying",
            )

            try:
                await self._apply(migration, batch, previous)

            except TransientError:
                raise

            except Exception as e:
                logger.error(
                    "Migration {name} failed",
                    name=migration.name,
                    batch=batch,
                    error=str(e),
                    event_type="migration_failed",
                )

                # The failed transaction is already rolled back
                await self._write_status(migration.name, previous, MigrationStatus.FAILED, batch)

                result.add(MigrationResult(migration.name, MigrationStatus.FAILED, str(e)))
                break

            logger.info(
                "Migration {name} applied successfully",
                name=migration.name,
                batch=batch,
                event_type="migration_applied",
            )
            result.add(MigrationResult(migration.name, MigrationStatus.APPLIED))

        return result

    async def down(self) -> MigrationBatchResult:
        """
        Roll back the most recent batch that still has applied migrations.

        Migrations are rolled back newest first. A failure marks the row
        ``failed`` and ends the rollback; a ledger row with no registered
        migration is reported as failed and also ends it.

        Returns:
            Batch result; ``migrations_applied`` counts rolled back migrations.

        Raises:
            LedgerInitError: If the ledger table cannot be ensured.
            TransientError: If a data store call exhausted its retries.
        """
        await self.initialize()

        batch = await self._ledger.get_latest_batch(status=MigrationStatus.APPLIED)
        if batch == 0:
            logger.info("No migrations to rollback", event_type="migrations_none")
            return MigrationBatchResult(batch=0)

        records = await self._ledger.get_batch(batch, status=MigrationStatus.APPLIED)
        result = MigrationBatchResult(batch=batch)

        logger.info(
            "Rolling back {count} migrations from batch {batch}",
            count=len(records),
            batch=batch,
            event_type="rollback_starting",
        )

        for record in records:
            migration = self._registry.get(record.name)

            if migration is None:
                # Reported through the result, not raised; the row stays applied
                error = MissingDefinitionError(record.name)
                logger.error(
                    "Migration {name} not found in registry",
                    name=record.name,
                    batch=batch,
                    error_code=error.error_code,
                    event_type="migration_missing",
                )
                result.add(MigrationResult(record.name, MigrationStatus.FAILED, str(error)))
                break

            logger.info(
                "Rolling back migration {name}",
                name=record.name,
                batch=batch,
                event_type="migration_rolling_back",
            )

            try:
                await self._rollback(migration, record)

            except TransientError:
                raise

            except Exception as e:
                logger.error(
                    "Rollback of migration {name} failed",
                    name=record.name,
                    batch=batch,
                    error=str(e),
                    event_type="migration_rollback_failed",
                )

                await self._write_status(record.name, record, MigrationStatus.FAILED)

                result.add(MigrationResult(record.name, MigrationStatus.FAILED, str(e)))
                break

            logger.info(
                "Migration {name} rolled back successfully",
                name=record.name,
                batch=batch,
                event_type="migration_rolled_back",
            )
            result.add(MigrationResult(record.name, MigrationStatus.ROLLED_BACK))

        return result

    async def reset(self) -> list[MigrationBatchResult]:
        """
        Roll back every batch that still has applied migrations, highest first.

        Stops after the first batch whose rollback reports a failure.

        Returns:
            One result per batch rolled back.
        """
        await self.initialize()

        batches = await self._ledger.get_batches(status=MigrationStatus.APPLIED)
        if not batches:
            logger.info("No migrations to reset", event_type="migrations_none")
            return []

        logger.info(
            "Resetting {count} batches of migrations",
            count=len(batches),
            event_type="reset_starting",
        )

        results: list[MigrationBatchResult] = []
        for _ in batches:
            result = await self.down()
            results.append(result)
            if result.has_failures:
                logger.warning(
                    "Reset stopped at batch {batch}",
                    batch=result.batch,
                    event_type="reset_halted",
                )
                break

        return results

    async def refresh(self) -> MigrationBatchResult:
        """
        Roll back everything, then apply all pending migrations again.

        The two phases are not atomic: a failure while resetting leaves the
        schema partially rolled back and ``up`` still runs afterwards.

        Returns:
            Result of the final ``up``.
        """
        reset_results = await self.reset()

        if any(r.has_failures for r in reset_results):
            logger.warning(
                "Refresh continues after a failed reset",
                event_type="refresh_partial_reset",
            )

        return await self.up()

    async def get_status(self) -> dict[str, Any]:
        """
        Get current migration status.

        Ledger rows whose migration is no longer registered are listed under
        ``missing`` instead of raising.

        Returns:
            Dictionary with migration status information.
        """
        await self.initialize()

        migrations = self._registry.get_all()
        records = await self._ledger.get_applied()
        pending = self._pending_from(records)

        def with_status(status: MigrationStatus) -> list[MigrationRecord]:
            return [r for r in records if r.status is status]

        applied = with_status(MigrationStatus.APPLIED)
        failed = with_status(MigrationStatus.FAILED)
        rolled_back = with_status(MigrationStatus.ROLLED_BACK)
        missing = [r for r in records if r.name not in self._registry]

        return {
            "total_migrations": len(migrations),
            "applied_count": len(applied),
            "pending_count": len(pending),
            "failed_count": len(failed),
            "rolled_back_count": len(rolled_back),
            "latest_batch": max((r.batch for r in applied), default=0),
            "applied": [r.to_dict() for r in applied],
            "failed": [r.to_dict() for r in failed],
            "rolled_back": [r.to_dict() for r in rolled_back],
            "pending": [
                {"name": m.name, "description": m.description} for m in pending
            ],
            "missing": [r.to_dict() for r in missing],
        }
