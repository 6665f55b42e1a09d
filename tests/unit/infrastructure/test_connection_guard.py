"""Unit tests for ConnectionGuard serialization, rollback and poisoning."""

import asyncio
import sqlite3
from pathlib import Path

import pytest
from flowtask.infrastructure.connection_guard import ConnectionGuard
from flowtask.infrastructure.database import Database
from flowtask.infrastructure.exceptions import ConnectionGuardError


class _BrokenConnection:
    """Stand-in connection whose rollback always fails."""

    in_transaction = True

    def __init__(self) -> None:
        self.closed = False

    async def execute(self, sql: str, *args: object) -> None:
        return None

    async def commit(self) -> None:
        return None

    async def rollback(self) -> None:
        raise sqlite3.OperationalError("disk I/O error")

    async def close(self) -> None:
        self.closed = True


class TestSerialization:
    """The guard admits one operation at a time."""

    @pytest.mark.asyncio
    async def test_operations_do_not_interleave(self, memory_db: Database) -> None:
        guard = memory_db.guard
        events: list[str] = []

        async def operation(name: str) -> None:
            async with guard.acquire():
                events.append(f"{name}:start")
                await asyncio.sleep(0.01)
                events.append(f"{name}:end")

        await asyncio.gather(operation("a"), operation("b"), operation("c"))

        # Every start is immediately followed by its own end
        for i in range(0, len(events), 2):
            assert events[i].split(":")[0] == events[i + 1].split(":")[0]
            assert events[i].endswith("start") and events[i + 1].endswith("end")

    @pytest.mark.asyncio
    async def test_locked_while_held(self, memory_db: Database) -> None:
        guard = memory_db.guard
        assert not guard.locked
        async with guard.acquire():
            assert guard.locked
        assert not guard.locked


class TestTransaction:
    """Transactions commit together or not at all."""

    @pytest.mark.asyncio
    async def test_exception_rolls_back(self, memory_db: Database) -> None:
        guard = memory_db.guard

        with pytest.raises(RuntimeError):
            async with guard.transaction() as conn:
                await conn.execute("DELETE FROM workspaces")
                raise RuntimeError("abort")

        async with guard.acquire() as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM workspaces")
            row = await cursor.fetchone()
            assert row[0] == 1
            assert not conn.in_transaction

    @pytest.mark.asyncio
    async def test_commit_on_success(self, memory_db: Database) -> None:
        guard = memory_db.guard

        async with guard.transaction() as conn:
            await conn.execute("DELETE FROM workspaces")

        async with guard.acquire() as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM workspaces")
            row = await cursor.fetchone()
            assert row[0] == 0

    @pytest.mark.asyncio
    async def test_guard_usable_after_rollback(self, memory_db: Database) -> None:
        guard = memory_db.guard

        with pytest.raises(sqlite3.OperationalError):
            async with guard.transaction() as conn:
                await conn.execute("SELECT * FROM missing_table")

        assert not guard.is_poisoned
        async with guard.acquire() as conn:
            await conn.execute("SELECT 1")


class TestUnusableGuard:
    """Closed or poisoned guards reject every acquire."""

    @pytest.mark.asyncio
    async def test_failed_rollback_poisons_guard(self) -> None:
        guard = ConnectionGuard(_BrokenConnection())  # type: ignore[arg-type]

        with pytest.raises(ConnectionGuardError, match="Rollback failed"):
            async with guard.acquire():
                raise ValueError("statement failed")

        assert guard.is_poisoned
        with pytest.raises(ConnectionGuardError, match="unusable"):
            async with guard.acquire():
                pass

    @pytest.mark.asyncio
    async def test_acquire_after_close(self) -> None:
        conn = _BrokenConnection()
        guard = ConnectionGuard(conn)  # type: ignore[arg-type]

        await guard.close()

        assert conn.closed
        assert guard.is_closed
        with pytest.raises(ConnectionGuardError, match="closed"):
            async with guard.acquire():
                pass

    @pytest.mark.asyncio
    async def test_database_guard_before_initialize(self) -> None:
        database = Database(Path(":memory:"))
        with pytest.raises(ConnectionGuardError):
            database.guard

    @pytest.mark.asyncio
    async def test_database_guard_after_close(self) -> None:
        database = Database(Path(":memory:"))
        await database.initialize()
        await database.close()

        with pytest.raises(ConnectionGuardError):
            database.guard
