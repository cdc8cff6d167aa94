"""Async SQLite connection wrapper with WAL mode and schema initialization."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite

from driverledger.db.schema import PROJECTION_TABLES, SCHEMA_SQL


class SchemaError(Exception):
    pass


class Database:
    """Thin async wrapper around aiosqlite with WAL mode and auto-schema.

    Statements commit immediately unless issued inside `transaction()`, in
    which case they commit (or roll back) together when the block exits.
    """

    def __init__(self, connection: aiosqlite.Connection, schema_sql: str = SCHEMA_SQL) -> None:
        self._conn = connection
        self._schema_sql = schema_sql
        self._in_transaction = False

    @classmethod
    async def connect(
        cls,
        path: str = "driverledger.db",
        *,
        schema_sql: str = SCHEMA_SQL,
        busy_timeout_ms: int = 5000,
        read_only: bool = False,
    ) -> "Database":
        """Create a connection with WAL mode, foreign keys, and schema init.

        A read_only connection skips schema init and refuses writes. It sees
        only what other connections have committed, so the database must
        already exist (WAL mode is persistent).
        """
        conn = await aiosqlite.connect(path)
        conn.row_factory = aiosqlite.Row
        await conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        db = cls(conn, schema_sql)
        if read_only:
            await conn.execute("PRAGMA query_only=ON")
            return db
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        await db._ensure_schema()
        return db

    async def _ensure_schema(self) -> None:
        """Create tables if they don't exist. Idempotent."""
        await self._conn.executescript(self._schema_sql)
        await self._conn.commit()

    async def verify_schema(self, tables: tuple[str, ...] = PROJECTION_TABLES) -> None:
        """Raise SchemaError if any of the given tables is missing."""
        rows = await self.fetchall("SELECT name FROM sqlite_master WHERE type='table'")
        present = {row["name"] for row in rows}
        missing = sorted(set(tables) - present)
        if missing:
            raise SchemaError(f"Tables missing: {', '.join(missing)}")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Database"]:
        """Group several statements into one atomic unit.

        Rolls back on any exception, including cancellation.
        """
        if self._in_transaction:
            raise RuntimeError("Nested transactions are not supported")
        self._in_transaction = True
        try:
            await self._conn.execute("BEGIN")
            yield self
            await self._conn.commit()
        except BaseException:
            await self._conn.rollback()
            raise
        finally:
            self._in_transaction = False

    async def execute(self, sql: str, params: tuple | None = None) -> aiosqlite.Cursor:
        """Execute a single SQL statement."""
        cursor = await self._conn.execute(sql, params or ())
        if not self._in_transaction:
            await self._conn.commit()
        return cursor

    async def fetchone(self, sql: str, params: tuple | None = None) -> aiosqlite.Row | None:
        """Execute and return a single row."""
        async with self._conn.execute(sql, params or ()) as cursor:
            return await cursor.fetchone()

    async def fetchall(self, sql: str, params: tuple | None = None) -> list[aiosqlite.Row]:
        """Execute and return all rows."""
        async with self._conn.execute(sql, params or ()) as cursor:
            return list(await cursor.fetchall())

    async def close(self) -> None:
        """Close the database connection."""
        await self._conn.close()
