"""Tests for migration data models."""

from datetime import datetime

import pytest

from migrator.migrations.models import (
    Migration,
    MigrationBatchResult,
    MigrationRecord,
    MigrationResult,
    MigrationStatus,
)


async def noop(connection):
    return None


class TestMigrationStatus:
    """Tests for status transitions."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (MigrationStatus.PENDING, MigrationStatus.APPLIED),
            (MigrationStatus.PENDING, MigrationStatus.FAILED),
            (MigrationStatus.APPLIED, MigrationStatus.ROLLED_BACK),
            (MigrationStatus.APPLIED, MigrationStatus.FAILED),
            (MigrationStatus.ROLLED_BACK, MigrationStatus.APPLIED),
        ],
    )
    def test_allowed_transitions(self, current, target):
        assert current.can_transition_to(target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (MigrationStatus.PENDING, MigrationStatus.ROLLED_BACK),
            (MigrationStatus.APPLIED, MigrationStatus.APPLIED),
            (MigrationStatus.FAILED, MigrationStatus.APPLIED),
            (MigrationStatus.FAILED, MigrationStatus.ROLLED_BACK),
        ],
    )
    def test_forbidden_transitions(self, current, target):
        assert not current.can_transition_to(target)

    def test_values_match_ledger_strings(self):
        assert MigrationStatus("rolled_back") is MigrationStatus.ROLLED_BACK
        assert MigrationStatus.APPLIED == "applied"


class TestMigration:
    """Tests for the Migration model."""

    def test_equality_by_name(self):
        async def other(connection):
            return None

        first = Migration("20250101000000_a", noop, noop, description="first")
        second = Migration("20250101000000_a", other, other, description="second")

        assert first == second
        assert hash(first) == hash(second)
        assert first != Migration("20250101000000_b", noop, noop)

    def test_is_immutable(self):
        migration = Migration("20250101000000_a", noop, noop)
        with pytest.raises(AttributeError):
            migration.name = "renamed"


class TestMigrationRecord:
    """Tests for ledger records."""

    def test_from_row(self):
        now = datetime(2025, 1, 1, 12, 0, 0)
        record = MigrationRecord.from_row(
            {
                "id": "abc",
                "name": "20250101000000_a",
                "batch": 2,
                "migration_time": now,
                "status": "applied",
            }
        )

        assert record.id == "abc"
        assert record.batch == 2
        assert record.applied_at == now
        assert record.status is MigrationStatus.APPLIED

    def test_to_dict(self):
        record = MigrationRecord(
            id="abc",
            name="20250101000000_a",
            batch=1,
            applied_at=datetime(2025, 1, 1, 12, 0, 0),
            status=MigrationStatus.ROLLED_BACK,
        )

        data = record.to_dict()

        assert data["applied_at"] == "2025-01-01T12:00:00"
        assert data["status"] == "rolled_back"


class TestMigrationBatchResult:
    """Tests for batch results."""

    def test_add_counts_successes_and_failures(self):
        result = MigrationBatchResult(batch=3)
        result.add(MigrationResult("a", MigrationStatus.APPLIED))
        result.add(MigrationResult("b", MigrationStatus.FAILED, "boom"))

        assert result.migrations_applied == 1
        assert result.migrations_failed == 1
        assert result.has_failures

    def test_rolled_back_counts_as_success(self):
        result = MigrationBatchResult(batch=1)
        result.add(MigrationResult("a", MigrationStatus.ROLLED_BACK))

        assert result.migrations_applied == 1
        assert not result.has_failures

    def test_to_dict(self):
        result = MigrationBatchResult(batch=1)
        result.add(MigrationResult("a", MigrationStatus.APPLIED))
        result.add(MigrationResult("b", MigrationStatus.FAILED, "boom"))

        assert result.to_dict() == {
            "batch": 1,
            "migrations_applied": 1,
            "migrations_failed": 1,
            "results": [
                {"name": "a", "status": "applied"},
                {"name": "b", "status": "failed", "error": "boom"},
            ],
        }
