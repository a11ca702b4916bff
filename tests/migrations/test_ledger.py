"""Tests for the migration ledger."""

from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import exc as sa_exc

from migrator.core.exceptions import LedgerInitError
from migrator.migrations.ledger import MigrationLedger
from migrator.migrations.models import MigrationStatus


class TestLedgerInitialize:
    """Tests for ledger bootstrap."""

    @pytest.mark.asyncio
    async def test_creates_table_when_missing(self, ledger, table_names):
        await ledger.initialize()

        assert "migrations" in await table_names()

    @pytest.mark.asyncio
    async def test_is_idempotent(self, ledger):
        await ledger.initialize()
        await ledger.insert("a", 1, MigrationStatus.APPLIED)

        await ledger.initialize()

        assert [r.name for r in await ledger.get_applied()] == ["a"]

    @pytest.mark.asyncio
    async def test_custom_table_name(self, client, table_names):
        ledger = MigrationLedger(client, table_name="schema_history")
        await ledger.initialize()

        assert "schema_history" in await table_names()

    @pytest.mark.asyncio
    async def test_unexpected_probe_error(self):
        client = AsyncMock()
        client.execute_with_retry.side_effect = sa_exc.OperationalError(
            "SELECT", {}, Exception("permission denied for table migrations")
        )
        ledger = MigrationLedger(client, table_name="migrations")

        with pytest.raises(LedgerInitError):
            await ledger.initialize()

        assert client.execute_with_retry.await_count == 1

    @pytest.mark.asyncio
    async def test_create_failure(self):
        client = AsyncMock()
        client.execute_with_retry.side_effect = [
            sa_exc.OperationalError("SELECT", {}, Exception("no such table: migrations")),
            sa_exc.OperationalError("CREATE", {}, Exception("disk I/O error")),
        ]
        ledger = MigrationLedger(client, table_name="migrations")

        with pytest.raises(LedgerInitError):
            await ledger.initialize()


class TestLedgerQueries:
    """Tests for ledger reads and writes."""

    @pytest.mark.asyncio
    async def test_insert_and_get_applied_in_time_order(self, ledger):
        await ledger.initialize()
        await ledger.insert("a", 1, MigrationStatus.APPLIED)
        await ledger.insert("b", 1, MigrationStatus.APPLIED)
        await ledger.insert("c", 2, MigrationStatus.FAILED)

        records = await ledger.get_applied()

        assert [r.name for r in records] == ["a", "b", "c"]
        assert records[2].status is MigrationStatus.FAILED
        assert all(r.id for r in records)

    @pytest.mark.asyncio
    async def test_name_is_unique(self, ledger):
        await ledger.initialize()
        await ledger.insert("a", 1, MigrationStatus.APPLIED)

        with pytest.raises(sa_exc.IntegrityError):
            await ledger.insert("a", 2, MigrationStatus.APPLIED)

    @pytest.mark.asyncio
    async def test_get_batch_most_recent_first(self, ledger):
        await ledger.initialize()
        await ledger.insert("a", 1, MigrationStatus.APPLIED)
        await ledger.insert("b", 1, MigrationStatus.APPLIED)
        await ledger.insert("c", 2, MigrationStatus.APPLIED)

        assert [r.name for r in await ledger.get_batch(1)] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_order_survives_clock_going_backwards(self, ledger):
        await ledger.initialize()
        later = datetime(2025, 1, 1, 12, 0, 0)
        earlier = datetime(2025, 1, 1, 11, 0, 0)

        with patch("migrator.migrations.ledger.datetime") as mock_datetime:
            mock_datetime.utcnow.side_effect = [later, earlier]
            await ledger.insert("a", 1, MigrationStatus.APPLIED)
            await ledger.insert("b", 1, MigrationStatus.APPLIED)

        assert [r.name for r in await ledger.get_applied()] == ["a", "b"]
        assert [r.name for r in await ledger.get_batch(1)] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_reapplied_row_moves_to_the_end(self, ledger):
        await ledger.initialize()
        a = await ledger.insert("a", 1, MigrationStatus.APPLIED)
        await ledger.insert("b", 1, MigrationStatus.APPLIED)
        await ledger.update_status(a.id, MigrationStatus.ROLLED_BACK)

        await ledger.reapply(a.id, 2, MigrationStatus.APPLIED)

        assert [r.name for r in await ledger.get_applied()] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_get_batch_filters_by_status(self, ledger):
        await ledger.initialize()
        a = await ledger.insert("a", 1, MigrationStatus.APPLIED)
        await ledger.insert("b", 1, MigrationStatus.APPLIED)
        await ledger.update_status(a.id, MigrationStatus.ROLLED_BACK)

        records = await ledger.get_batch(1, status=MigrationStatus.APPLIED)

        assert [r.name for r in records] == ["b"]

    @pytest.mark.asyncio
    async def test_latest_batch_empty_ledger(self, ledger):
        await ledger.initialize()

        assert await ledger.get_latest_batch() == 0

    @pytest.mark.asyncio
    async def test_latest_batch_by_status(self, ledger):
        await ledger.initialize()
        await ledger.insert("a", 1, MigrationStatus.APPLIED)
        b = await ledger.insert("b", 2, MigrationStatus.APPLIED)
        await ledger.update_status(b.id, MigrationStatus.ROLLED_BACK)

        assert await ledger.get_latest_batch() == 2
        assert await ledger.get_latest_batch(status=MigrationStatus.APPLIED) == 1

    @pytest.mark.asyncio
    async def test_get_batches(self, ledger):
        await ledger.initialize()
        await ledger.insert("a", 1, MigrationStatus.APPLIED)
        await ledger.insert("b", 1, MigrationStatus.APPLIED)
        await ledger.insert("c", 3, MigrationStatus.APPLIED)
        await ledger.insert("d", 4, MigrationStatus.FAILED)

        assert await ledger.get_batches() == [4, 3, 1]
        assert await ledger.get_batches(status=MigrationStatus.APPLIED) == [3, 1]

    @pytest.mark.asyncio
    async def test_reapply_moves_row_to_new_batch(self, ledger):
        await ledger.initialize()
        record = await ledger.insert("a", 1, MigrationStatus.APPLIED)
        await ledger.update_status(record.id, MigrationStatus.ROLLED_BACK)

        await ledger.reapply(record.id, 2, MigrationStatus.APPLIED)

        [updated] = await ledger.get_applied()
        assert updated.id == record.id
        assert updated.batch == 2
        assert updated.status is MigrationStatus.APPLIED
        assert updated.applied_at >= record.applied_at

    @pytest.mark.asyncio
    async def test_writes_join_caller_transaction(self, client, ledger):
        await ledger.initialize()

        async def insert_then_fail(connection):
            await ledger.insert("a", 1, MigrationStatus.APPLIED, connection=connection)
            raise ValueError("abort")

        with pytest.raises(ValueError):
            await client.execute_with_retry(insert_then_fail)

        assert await ledger.get_applied() == []
