"""
Exception hierarchy for the migration engine.

This module provides:
- A single base class, MigrationError, for everything the engine raises
- A closed set of failure kinds the runner branches on (transient, logical,
  missing definition, ledger bootstrap)
- Error codes for programmatic error handling
"""

from typing import Any


class ErrorCode:
    """Error codes for programmatic error handling."""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"

    # Connectivity errors (2xxx)
    TRANSIENT_ERROR = "ERR_2001"
    RETRIES_EXHAUSTED = "ERR_2002"

    # Migration errors (3xxx)
    LOGICAL_MIGRATION_ERROR = "ERR_3001"
    MISSING_DEFINITION = "ERR_3002"
    DUPLICATE_MIGRATION = "ERR_3003"
    MIGRATION_LOAD_FAILED = "ERR_3004"

    # Ledger errors (4xxx)
    LEDGER_INIT_FAILED = "ERR_4001"
    INVALID_TRANSITION = "ERR_4002"


class MigrationError(Exception):
    """Base exception for all migration engine errors."""

    error_code: str = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# =============================================================================
# Connectivity Errors
# =============================================================================


class TransientError(MigrationError):
    """
    Raised for connectivity failures that may succeed on a later attempt.

    Examples: dropped connections, pool timeouts, per-call timeouts.
    """

    error_code = ErrorCode.TRANSIENT_ERROR


class RetriesExhaustedError(TransientError):
    """Raised when every retry attempt of an operation hit a transient error."""

    error_code = ErrorCode.RETRIES_EXHAUSTED

    def __init__(self, message: str, last_error: Exception, attempts: int):
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


# =============================================================================
# Migration Errors
# =============================================================================


class LogicalMigrationError(MigrationError):
    """Raised when the body of a migration's up or down operation fails."""

    error_code = ErrorCode.LOGICAL_MIGRATION_ERROR

    def __init__(self, name: str, direction: str, cause: Exception):
        super().__init__(f"Migration {name} failed during {direction}: {cause}")
        self.name = name
        self.direction = direction
        self.cause = cause


class MissingDefinitionError(MigrationError):
    """Raised when a ledger row names a migration the registry does not hold."""

    error_code = ErrorCode.MISSING_DEFINITION

    def __init__(self, name: str):
        super().__init__(f"Migration {name} not found")
        self.name = name


class DuplicateMigrationError(MigrationError):
    """Raised when a migration name is registered twice."""

    error_code = ErrorCode.DUPLICATE_MIGRATION

    def __init__(self, name: str):
        super().__init__(f"Migration {name} is already registered")
        self.name = name


class MigrationLoadError(MigrationError):
    """Raised when a migration source file cannot be imported."""

    error_code = ErrorCode.MIGRATION_LOAD_FAILED

    def __init__(self, file_path: str, cause: Exception):
        super().__init__(f"Error loading migration {file_path}: {cause}")
        self.file_path = file_path
        self.cause = cause


# =============================================================================
# Ledger Errors
# =============================================================================


class LedgerInitError(MigrationError):
    """Raised when the ledger table can neither be read nor created."""

    error_code = ErrorCode.LEDGER_INIT_FAILED


class InvalidTransitionError(MigrationError):
    """Raised when a ledger row would move to a status it may not reach."""

    error_code = ErrorCode.INVALID_TRANSITION

    def __init__(self, name: str, current: Any, target: Any):
        super().__init__(f"Migration {name} cannot move from {current} to {target}")
        self.name = name
        self.current = current
        self.target = target
