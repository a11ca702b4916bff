"""
Execution client for the relational data store.

This module provides:
- A pooled SQLAlchemy async engine, created lazily and replaceable on error
- Transactional execution of caller-supplied operations with retry and backoff
- Connection status tracking and a health probe
- Classification of driver errors into transient and missing-table cases
- The generic "run opaque SQL" capability used by SQL migrations
"""
import asyncio
import re
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from typing import Any, Optional, TypeVar

from sqlalchemy import event, exc as sa_exc, literal_column, select, table
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from migrator.core.config import settings
from migrator.core.exceptions import RetriesExhaustedError, TransientError
from migrator.core.retry import retry_with_backoff
from migrator.log.logging import logger

T = TypeVar("T")

Operation = Callable[[AsyncConnection], Awaitable[T]]

# SQLSTATE raised by PostgreSQL for "relation does not exist"
UNDEFINED_TABLE_SQLSTATE = "42P01"

AUTOCOMMIT = "AUTOCOMMIT"

TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    sa_exc.DisconnectionError,
    sa_exc.TimeoutError,
    sa_exc.InterfaceError,
)

DOLLAR_QUOTE = re.compile(r"\$[A-Za-z_][A-Za-z0-9_]*\$|\$\$")


class ConnectionStatus(str, Enum):
    """Status of the pooled connection."""

    CONNECTED = "connected"
    CONNECTING = "connecting"
    ERROR = "error"
    DISCONNECTED = "disconnected"


def is_transient_error(error: BaseException) -> bool:
    """
    Decide whether an error is a connectivity failure worth retrying.

    Logical SQL errors (syntax, constraint violations, missing relations) are
    never transient.
    """
    if isinstance(error, TransientError):
        return True
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return True
    return isinstance(error, TRANSIENT_EXCEPTIONS)


def is_missing_table_error(error: BaseException) -> bool:
    """Recognize the data store's "relation does not exist" error class."""
    if not isinstance(error, sa_exc.DBAPIError):
        return False

    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == UNDEFINED_TABLE_SQLSTATE:
        return True

    message = str(orig).lower()
    return "no such table" in message or (
        "relation" in message and "does not exist" in message
    )


def split_sql_statements(sql: str) -> list[str]:
    """
    Split a SQL script into individual statements.

    Semicolons inside quoted strings, quoted identifiers, comments and
    dollar-quoted bodies do not end a statement. Comment-only chunks are
    dropped.
    """
    statements: list[str] = []
    current: list[str] = []
    has_code = False
    quote: Optional[str] = None
    dollar_tag: Optional[str] = None
    i = 0
    length = len(sql)

    def flush() -> None:
        nonlocal has_code
        statement = "".join(current).strip()
        if statement and has_code:
            statements.append(statement)
        current.clear()
        has_code = False

    while i < length:
        ch = sql[i]

        if dollar_tag is not None:
            if sql.startswith(dollar_tag, i):
                current.append(dollar_tag)
                i += len(dollar_tag)
                dollar_tag = None
            else:
                current.append(ch)
                i += 1
            continue

        if quote is not None:
            current.append(ch)
            if ch == quote:
                # Doubled quote is an escaped quote
                if i + 1 < length and sql[i + 1] == quote:
                    current.append(quote)
                    i += 2
                    continue
                quote = None
            i += 1
            continue

        if sql.startswith("--", i):
            end = sql.find("\n", i)
            end = length if end == -1 else end
            current.append(sql[i:end])
            i = end
            continue

        if sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            end = length if end == -1 else end + 2
            current.append(sql[i:end])
            i = end
            continue

        if ch in ("'", '"'):
            quote = ch
            has_code = True
            current.append(ch)
            i += 1
            continue

        if ch == "$":
            match = DOLLAR_QUOTE.match(sql, i)
            if match:
                dollar_tag = match.group(0)
                has_code = True
                current.append(dollar_tag)
                i = match.end()
                continue

        if ch == ";":
            flush()
            i += 1
            continue

        if not ch.isspace():
            has_code = True
        current.append(ch)
        i += 1

    flush()
    return statements


async def execute_sql(connection: AsyncConnection, sql: str) -> None:
    """
    Run an opaque SQL script on a connection.

    Driver errors propagate unchanged; no validation happens beforehand.

    Args:
        connection: Connection the statements run on, usually inside a
            transaction opened by ExecutionClient.execute_with_retry.
        sql: One or more SQL statements.
    """
    for statement in split_sql_statements(sql):
        await connection.exec_driver_sql(statement)


def _enable_sqlite_transactions(engine: AsyncEngine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SQLite DDL is transactional."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        # AUTOCOMMIT connections must not open a transaction
        if conn.get_execution_options().get("isolation_level") != AUTOCOMMIT:
            conn.exec_driver_sql("BEGIN")


class ExecutionClient:
    """
    Wraps a pooled connection to the data store.

    Every operation runs in its own transaction; transient connectivity
    failures are retried with exponential backoff, resetting the pool first
    when the connection is known to be broken.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        *,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        retry_max_delay: Optional[float] = None,
        operation_timeout: Optional[float] = None,
        health_check_table: Optional[str] = None,
        engine_options: Optional[dict[str, Any]] = None,
    ):
        """
        Initialize the execution client.

        Args:
            database_url: SQLAlchemy async URL (default from config).
            max_retries: Default retries per operation (default from config).
            retry_base_delay: Backoff base in seconds (default from config).
            retry_max_delay: Backoff cap in seconds (default from config).
            operation_timeout: Per-call timeout in seconds (default from config).
            health_check_table: Table read by health_check (default from config).
            engine_options: Extra keyword arguments for create_async_engine.
        """
        self._database_url = database_url or settings.database_url
        self._max_retries = settings.max_retries if max_retries is None else max_retries
        self._retry_base_delay = (
            settings.retry_base_delay if retry_base_delay is None else retry_base_delay
        )
        self._retry_max_delay = (
            settings.retry_max_delay if retry_max_delay is None else retry_max_delay
        )
        self._operation_timeout = (
            settings.db_operation_timeout if operation_timeout is None else operation_timeout
        )
        self._health_check_table = health_check_table or settings.db_health_check_table
        self._engine_options = engine_options or {}

        self._engine: Optional[AsyncEngine] = None
        self._status = ConnectionStatus.DISCONNECTED
        self._last_error: Optional[BaseException] = None
        self._connected_at: Optional[datetime] = None

    @property
    def status(self) -> ConnectionStatus:
        """Current connection status."""
        return self._status

    @property
    def last_error(self) -> Optional[BaseException]:
        """Last error observed by an operation or health check."""
        return self._last_error

    @property
    def connected_at(self) -> Optional[datetime]:
        """When the current engine was created."""
        return self._connected_at

    @property
    def database_url(self) -> str:
        return self._database_url

    def _create_engine(self) -> AsyncEngine:
        url = make_url(self._database_url)
        options: dict[str, Any] = {"echo": settings.db_echo}

        if url.get_backend_name() != "sqlite":
            options.update(
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_pre_ping=settings.db_pool_pre_ping,
            )
        options.update(self._engine_options)

        engine = create_async_engine(url, **options)
        if url.get_backend_name() == "sqlite":
            _enable_sqlite_transactions(engine)
        return engine

    def get_client(self) -> AsyncEngine:
        """Get the pooled engine, creating it if needed."""
        if self._engine is None:
            self._engine = self._create_engine()
            self._status = ConnectionStatus.CONNECTED
            self._connected_at = datetime.utcnow()
        return self._engine

    async def reset_connection(self) -> None:
        """Discard the cached engine; the next access reconnects lazily."""
        self._status = ConnectionStatus.CONNECTING
        engine, self._engine = self._engine, None
        self._connected_at = None

        if engine is not None:
            await engine.dispose()

        logger.info("Database connection reset", event_type="connection_reset")

    async def close(self) -> None:
        """Dispose of the pool."""
        engine, self._engine = self._engine, None
        if engine is not None:
            await engine.dispose()
        self._status = ConnectionStatus.DISCONNECTED
        self._connected_at = None

    async def health_check(self) -> bool:
        """
        Check whether the data store answers a trivial read.

        Returns:
            True if healthy, False otherwise.
        """
        if self._health_check_table:
            query = select(literal_column("1")).select_from(table(self._health_check_table)).limit(1)
        else:
            query = select(literal_column("1"))

        try:
            engine = self.get_client()
            async with engine.connect() as connection:
                await asyncio.wait_for(connection.execute(query), timeout=self._operation_timeout)
        except Exception as e:
            self._status = ConnectionStatus.ERROR
            self._last_error = e
            logger.error(
                "Database health check failed",
                event_type="health_check_failed",
                error=str(e),
            )
            return False

        self._status = ConnectionStatus.CONNECTED
        return True

    async def execute_with_retry(
        self,
        operation: Operation[T],
        max_retries: Optional[int] = None,
        *,
        transactional: bool = True,
    ) -> T:
        """
        Run ``operation(connection)`` in a transaction, retrying transient failures.

        The transaction commits when the operation returns and rolls back when
        it raises. Non-transient errors propagate on the first attempt.

        With ``transactional=False`` the operation runs on an AUTOCOMMIT
        connection instead: no BEGIN is issued and each statement commits on
        its own, which statements such as VACUUM or CREATE INDEX CONCURRENTLY
        require.

        Args:
            operation: Coroutine function receiving an AsyncConnection.
            max_retries: Retries after the first attempt (default from client).
            transactional: Wrap the operation in a single transaction.

        Returns:
            Whatever the operation returns.

        Raises:
            RetriesExhaustedError: If every attempt failed transiently.
        """
        retries = self._max_retries if max_retries is None else max_retries
        run = self._run_in_transaction if transactional else self._run_autocommit

        async def _attempt() -> T:
            engine = self.get_client()
            try:
                return await asyncio.wait_for(
                    run(engine, operation),
                    timeout=self._operation_timeout,
                )
            except Exception as e:
                if not is_transient_error(e):
                    raise
                self._status = ConnectionStatus.ERROR
                self._last_error = e
                if isinstance(e, TransientError):
                    raise
                raise TransientError(f"Database operation failed: {e}") from e

        _attempt.__name__ = getattr(operation, "__name__", "operation")

        try:
            return await retry_with_backoff(
                _attempt,
                max_retries=retries,
                base_delay=self._retry_base_delay,
                max_delay=self._retry_max_delay,
                on_retry=self._on_retry,
            )
        except RetriesExhaustedError as e:
            self._last_error = e
            raise

    async def _run_in_transaction(self, engine: AsyncEngine, operation: Operation[T]) -> T:
        async with engine.begin() as connection:
            return await operation(connection)

    async def _run_autocommit(self, engine: AsyncEngine, operation: Operation[T]) -> T:
        async with engine.connect() as connection:
            connection = await connection.execution_options(isolation_level=AUTOCOMMIT)
            return await operation(connection)

    async def _on_retry(self, attempt: int, error: Exception) -> None:
        if self._status is ConnectionStatus.ERROR:
            await self.reset_connection()
