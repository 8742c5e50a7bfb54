from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mpx_sync.db.session import DatabaseSessionManager


class SqliteBaseRepository:
    """Base repository for SQLite implementations."""

    def __init__(self, session_manager: DatabaseSessionManager | Any) -> None:
        self._session = session_manager

    async def _execute(
        self,
        operation: Any,
        *args: Any,
        timeout: float | None = None,
        operation_name: str = "repository_operation",
        read_only: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Execute a database operation safely using the session manager."""
        if hasattr(self._session, "_safe_db_operation"):
            return await self._session._safe_db_operation(
                operation,
                *args,
                timeout=timeout,
                operation_name=operation_name,
                read_only=read_only,
                **kwargs,
            )
        return await asyncio.to_thread(self._run_in_context, operation, *args, **kwargs)

    async def _transaction(
        self,
        operation: Any,
        *args: Any,
        timeout: float | None = None,
        operation_name: str = "repository_transaction",
        **kwargs: Any,
    ) -> Any:
        """Execute ``operation`` atomically using the session manager."""
        if hasattr(self._session, "_safe_db_transaction"):
            return await self._session._safe_db_transaction(
                operation,
                *args,
                timeout=timeout,
                operation_name=operation_name,
                **kwargs,
            )

        def _atomic() -> Any:
            with self._session.database.atomic():
                return operation(*args, **kwargs)

        return await asyncio.to_thread(self._run_in_context, _atomic)

    def _run_in_context(self, operation: Any, *args: Any, **kwargs: Any) -> Any:
        if not hasattr(self._session, "connection_context"):
            msg = "Unsupported session manager type for repository execution"
            raise TypeError(msg)
        with self._session.connection_context():
            return operation(*args, **kwargs)
