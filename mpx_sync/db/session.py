"""Database session management for the sync store.

``DatabaseSessionManager`` owns the SQLite connection and is the only path
repositories use to reach the database. It provides:
- WAL-mode SQLite connection setup bound to ``database_proxy``
- async wrappers that push blocking peewee calls onto worker threads
- timeout plus locked/busy retry with exponential backoff
- a single in-process writer so concurrent coroutines never race on writes
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import peewee
from playhouse.sqlite_ext import SqliteExtDatabase

from mpx_sync.db.models import ALL_MODELS, database_proxy

# Default database operation constants
DB_OPERATION_TIMEOUT = 30.0
DB_MAX_RETRIES = 3


class RowSqliteDatabase(SqliteExtDatabase):
    """SQLite database subclass that configures the row factory for dict-like access."""

    def _connect(self) -> sqlite3.Connection:
        conn = super()._connect()
        conn.row_factory = sqlite3.Row
        return conn


@dataclass
class DatabaseSessionManager:
    """Peewee-backed database session manager.

    Attributes:
        path: Path to the SQLite database file, or ":memory:" for in-memory
        operation_timeout: Default timeout for database operations in seconds
        max_retries: Maximum retries for transient (locked/busy) database errors
    """

    path: str
    _logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))
    _database: peewee.SqliteDatabase = field(init=False)
    _write_lock: asyncio.Lock = field(init=False)

    operation_timeout: float = field(default=DB_OPERATION_TIMEOUT)
    max_retries: int = field(default=DB_MAX_RETRIES)

    def __post_init__(self) -> None:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._database = RowSqliteDatabase(
            self.path,
            pragmas={
                "journal_mode": "wal",
                "synchronous": "normal",
                "foreign_keys": 1,
                "busy_timeout": 5000,
            },
            check_same_thread=False,
        )
        database_proxy.initialize(self._database)
        self._write_lock = asyncio.Lock()

    @property
    def database(self) -> peewee.SqliteDatabase:
        """Access the underlying Peewee database instance."""
        return self._database

    def connection_context(self) -> Any:
        """Return a connection context manager."""
        return self._database.connection_context()

    def migrate(self) -> None:
        """Create tables that do not exist yet."""
        with self._database.connection_context(), self._database.bind_ctx(ALL_MODELS):
            self._database.create_tables(ALL_MODELS, safe=True)
        self._logger.info("db_migrated", extra={"path": self._mask_path(self.path)})

    def close(self) -> None:
        if not self._database.is_closed():
            self._database.close()

    async def _safe_db_operation(
        self,
        operation: Callable[..., Any],
        *args: Any,
        timeout: float | None = None,
        operation_name: str = "database_operation",
        read_only: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Execute a database operation with timeout, retry and write serialization.

        Args:
            operation: The blocking database callable to execute
            *args: Positional arguments for the operation
            timeout: Timeout in seconds (default: self.operation_timeout)
            operation_name: Name for logging purposes
            read_only: Reads skip the writer lock; WAL lets them run beside a writer
            **kwargs: Keyword arguments for the operation

        Raises:
            TimeoutError: If the operation times out
            peewee.OperationalError: If the database stays locked or busy after retries
            peewee.IntegrityError: If a constraint is violated
        """

        def _op_wrapper() -> Any:
            with self._database.connection_context():
                return operation(*args, **kwargs)

        return await self._run_with_retry(
            _op_wrapper,
            timeout=timeout,
            operation_name=operation_name,
            needs_write_lock=not read_only,
            log_prefix="db",
        )

    async def _safe_db_transaction(
        self,
        operation: Callable[..., Any],
        *args: Any,
        timeout: float | None = None,
        operation_name: str = "database_transaction",
        **kwargs: Any,
    ) -> Any:
        """Execute a database operation inside ``atomic()``.

        Either every change made by ``operation`` is committed or none is.
        Transactions always take the writer lock.
        """

        def _execute_in_transaction() -> Any:
            with self._database.connection_context(), self._database.atomic():
                return operation(*args, **kwargs)

        return await self._run_with_retry(
            _execute_in_transaction,
            timeout=timeout,
            operation_name=operation_name,
            needs_write_lock=True,
            log_prefix="db_transaction",
        )

    async def _run_with_retry(
        self,
        func: Callable[[], Any],
        *,
        timeout: float | None,
        operation_name: str,
        needs_write_lock: bool,
        log_prefix: str,
    ) -> Any:
        if timeout is None:
            timeout = self.operation_timeout

        async def _run() -> Any:
            if not needs_write_lock:
                return await asyncio.to_thread(func)
            async with self._write_lock:
                return await asyncio.to_thread(func)

        retries = 0
        while True:
            try:
                return await asyncio.wait_for(_run(), timeout=timeout)

            except TimeoutError:
                self._logger.exception(
                    f"{log_prefix}_timeout",
                    extra={"operation": operation_name, "timeout": timeout, "retries": retries},
                )
                raise

            except peewee.OperationalError as e:
                error_msg = str(e).lower()
                transient = "locked" in error_msg or "busy" in error_msg
                if transient and retries < self.max_retries:
                    retries += 1
                    wait_time = 0.1 * (2**retries)
                    self._logger.warning(
                        f"{log_prefix}_locked_retrying",
                        extra={
                            "operation": operation_name,
                            "retry": retries,
                            "max_retries": self.max_retries,
                            "wait_time": wait_time,
                            "error": str(e),
                        },
                    )
                    await asyncio.sleep(wait_time)
                    continue

                self._logger.exception(
                    f"{log_prefix}_operational_error",
                    extra={"operation": operation_name, "retries": retries, "error": str(e)},
                )
                raise

            except peewee.IntegrityError as e:
                self._logger.exception(
                    f"{log_prefix}_integrity_error",
                    extra={"operation": operation_name, "error": str(e)},
                )
                raise

    @staticmethod
    def _mask_path(path: str) -> str:
        """Mask a path for logging (show only parent/filename)."""
        try:
            p = Path(path)
            if not p.name:
                return str(p)
            parent = p.parent.name
            if parent:
                return f".../{parent}/{p.name}"
            return p.name
        except (OSError, ValueError, AttributeError):
            return "..."
