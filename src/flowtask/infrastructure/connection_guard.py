"""Serialized access to the single SQLite connection."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from aiosqlite import Connection

from flowtask.infrastructure.exceptions import ConnectionGuardError
from flowtask.infrastructure.logger import get_logger

logger = get_logger(__name__)


class ConnectionGuard:
    """Exclusive owner of the storage connection.

    Every store operation holds the guard for its entire duration, so
    operations are totally ordered and never observe each other's partial
    effects. Reads are exclusive too; there is no reader/writer split.

    The guard becomes unusable after close(), or when a rollback fails and
    the connection is left in an unknown state ("poisoned"). From then on
    acquire() raises ConnectionGuardError.
    """

    def __init__(self, conn: Connection) -> None:
        self._conn: Connection | None = conn
        self._lock = asyncio.Lock()
        self._poisoned_reason: str | None = None

    @property
    def is_poisoned(self) -> bool:
        return self._poisoned_reason is not None

    @property
    def is_closed(self) -> bool:
        return self._conn is None

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    def _check_usable(self) -> Connection:
        if self._poisoned_reason is not None:
            raise ConnectionGuardError(
                f"Storage connection is unusable: {self._poisoned_reason}"
            )
        if self._conn is None:
            raise ConnectionGuardError("Storage connection is closed")
        return self._conn

    def poison(self, reason: str) -> None:
        """Mark the connection unusable for all later operations."""
        if self._poisoned_reason is None:
            self._poisoned_reason = reason
            logger.error("connection_guard_poisoned", reason=reason)

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Connection]:
        """Hold the lock and yield the connection.

        An exception escaping the body rolls back any open transaction.

        Raises:
            ConnectionGuardError: If the guard is closed or poisoned
        """
        self._check_usable()
        async with self._lock:
            conn = self._check_usable()
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    await self._rollback(conn)
                raise

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Connection]:
        """Hold the lock for a single atomic unit of work.

        Statements in the body commit together or not at all.
        """
        async with self.acquire() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            yield conn
            await conn.commit()

    async def _rollback(self, conn: Connection) -> None:
        try:
            await conn.rollback()
        except Exception as e:
            self.poison(f"rollback failed: {e}")
            raise ConnectionGuardError(f"Rollback failed, connection poisoned: {e}") from e

    async def close(self) -> None:
        """Close the connection once any in-flight operation finishes."""
        async with self._lock:
            if self._conn is not None:
                conn, self._conn = self._conn, None
                await conn.close()
