"""
Migration data models and status tracking.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncConnection

MigrationOperation = Callable[[AsyncConnection], Awaitable[None]]


class MigrationStatus(str, Enum):
    """Status of a migration."""

    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    def can_transition_to(self, target: "MigrationStatus") -> bool:
        """Whether a ledger row in this status may move to ``target``."""
        return target in ALLOWED_TRANSITIONS.get(self, frozenset())


# PENDING stands for "no ledger row yet"; it is never persisted.
# FAILED is terminal.
ALLOWED_TRANSITIONS: dict[MigrationStatus, frozenset[MigrationStatus]] = {
    MigrationStatus.PENDING: frozenset({MigrationStatus.APPLIED, MigrationStatus.FAILED}),
    MigrationStatus.APPLIED: frozenset({MigrationStatus.ROLLED_BACK, MigrationStatus.FAILED}),
    MigrationStatus.ROLLED_BACK: frozenset({MigrationStatus.APPLIED, MigrationStatus.FAILED}),
    MigrationStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class Migration:
    """
    Represents a database migration.

    Two migrations are equal when their names are equal.

    Attributes:
        name: Unique name, by convention a sortable timestamp prefix plus a
            description (e.g. ``20250101120000_create_users``).
        up: Async function applying the migration on a connection.
        down: Async function rolling the migration back on a connection.
        description: Human-readable description.
        file_path: Source the migration was loaded from, if any.
    """

    name: str
    up: MigrationOperation = field(compare=False, repr=False)
    down: MigrationOperation = field(compare=False, repr=False)
    description: str = field(default="", compare=False)
    file_path: str = field(default="", compare=False)


@dataclass
class MigrationRecord:
    """
    Ledger row for a migration.

    Attributes:
        id: Opaque unique identifier.
        name: Migration name.
        batch: Batch the migration was applied in.
        applied_at: When the row was written (``migration_time`` column).
        status: Current status of the migration.
    """

    id: str
    name: str
    batch: int
    applied_at: datetime
    status: MigrationStatus

    def to_dict(self) -> dict:
        """Convert to dictionary for display or JSON output."""
        return {
            "id": self.id,
            "name": self.name,
            "batch": self.batch,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
            "status": self.status.value,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "MigrationRecord":
        """Create from a ledger table row mapping."""
        return cls(
            id=row["id"],
            name=row["name"],
            batch=row["batch"],
            applied_at=row["migration_time"],
            status=MigrationStatus(row["status"]),
        )


@dataclass
class MigrationResult:
    """Outcome of applying or rolling back a single migration."""

    name: str
    status: MigrationStatus
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"name": self.name, "status": self.status.value}
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class MigrationBatchResult:
    """
    Outcome of one runner operation over a batch.

    For ``down`` results, ``migrations_applied`` counts migrations that were
    rolled back successfully.
    """

    batch: int
    migrations_applied: int = 0
    migrations_failed: int = 0
    results: list[MigrationResult] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return self.migrations_failed > 0

    def add(self, result: MigrationResult) -> None:
        """Append a per-migration result and update the counters."""
        self.results.append(result)
        if result.status is MigrationStatus.FAILED:
            self.migrations_failed += 1
        else:
            self.migrations_applied += 1

    def to_dict(self) -> dict:
        return {
            "batch": self.batch,
            "migrations_applied": self.migrations_applied,
            "migrations_failed": self.migrations_failed,
            "results": [r.to_dict() for r in self.results],
        }
