"""Integration tests for database connection and schema.

Verifies SQLite setup (WAL mode, foreign keys, table creation) and the
transaction helper the synchronizer relies on for atomic application.
"""

import os
import tempfile

import pytest

from driverledger.db.connection import Database, SchemaError
from driverledger.db.schema import EVENT_LOG_SQL, PROJECTION_TABLES


class TestDatabaseConnection:
    async def test_connect_creates_projection_tables(self):
        db = await Database.connect(":memory:")
        try:
            rows = await db.fetchall(
                "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
            )
            table_names = {row["name"] for row in rows}
            assert set(PROJECTION_TABLES) <= table_names
            assert "events" not in table_names
        finally:
            await db.close()

    async def test_sync_status_singleton_row_exists(self):
        db = await Database.connect(":memory:")
        try:
            rows = await db.fetchall("SELECT * FROM sync_status")
            assert len(rows) == 1
            assert rows[0]["last_block_number"] is None
        finally:
            await db.close()

    async def test_wal_mode_on_file_database(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "test.db")
            db = await Database.connect(path)
            try:
                row = await db.fetchone("PRAGMA journal_mode")
                assert row["journal_mode"] == "wal"
            finally:
                await db.close()

    async def test_foreign_keys_enabled(self):
        db = await Database.connect(":memory:")
        try:
            row = await db.fetchone("PRAGMA foreign_keys")
            assert row["foreign_keys"] == 1
        finally:
            await db.close()

    async def test_schema_idempotent(self):
        db = await Database.connect(":memory:")
        try:
            await db._ensure_schema()
            rows = await db.fetchall("SELECT * FROM sync_status")
            assert len(rows) == 1
        finally:
            await db.close()


class TestSchemaVerification:
    async def test_projection_schema_verifies(self):
        db = await Database.connect(":memory:")
        try:
            await db.verify_schema()
        finally:
            await db.close()

    async def test_event_log_database_is_not_a_projection(self):
        db = await Database.connect(":memory:", schema_sql=EVENT_LOG_SQL)
        try:
            with pytest.raises(SchemaError, match="drivers"):
                await db.verify_schema()
        finally:
            await db.close()


class TestTransactions:
    async def test_statements_commit_together(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "test.db")
            db = await Database.connect(path)
            try:
                async with db.transaction():
                    await db.execute("UPDATE sync_status SET last_block_number = 3 WHERE id = 1")
                    await db.execute("UPDATE ledger_policy SET max_points = 9")
            finally:
                await db.close()

            db = await Database.connect(path)
            try:
                row = await db.fetchone("SELECT last_block_number FROM sync_status")
                assert row["last_block_number"] == 3
            finally:
                await db.close()

    async def test_rollback_on_error(self):
        db = await Database.connect(":memory:")
        try:
            with pytest.raises(ValueError):
                async with db.transaction():
                    await db.execute("UPDATE sync_status SET last_block_number = 3 WHERE id = 1")
                    raise ValueError("abandon")
            row = await db.fetchone("SELECT last_block_number FROM sync_status")
            assert row["last_block_number"] is None
        finally:
            await db.close()

    async def test_nested_transaction_rejected(self):
        db = await Database.connect(":memory:")
        try:
            with pytest.raises(RuntimeError):
                async with db.transaction():
                    async with db.transaction():
                        pass
        finally:
            await db.close()
