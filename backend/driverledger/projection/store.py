"""Projection store: the queryable relational view of the ledger.

All writes are idempotent upserts keyed by natural ids (driver address,
violation_id), so redelivered events land on the same rows. The sync cursor
and the ledger policy are singleton rows that only ever move forward.
"""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from driverledger.db.connection import Database
from driverledger.models import (
    DEFAULT_MAX_POINTS,
    DeferredEvent,
    DriverAggregate,
    LedgerEvent,
    LogPosition,
    SyncCursor,
    ViolationRecord,
    normalize_address,
)

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(UTC).isoformat()


class ProjectionStore:
    """Durable keyed storage for drivers, violations, and sync bookkeeping."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def initialize(self, max_points: int = DEFAULT_MAX_POINTS) -> None:
        """Seed the policy row with the configured max points. No-op if present."""
        await self._db.execute(
            "INSERT OR IGNORE INTO ledger_policy (id, max_points) VALUES (1, ?)",
            (max_points,),
        )

    async def verify(self) -> None:
        """Raise SchemaError if the projection tables are missing."""
        await self._db.verify_schema()

    @asynccontextmanager
    async def unit(self) -> AsyncIterator["ProjectionStore"]:
        """One atomic unit of application: everything inside commits together."""
        async with self._db.transaction():
            yield self

    # -- Drivers --

    async def upsert_driver_aggregate(self, aggregate: DriverAggregate) -> None:
        now = _now()
        await self._db.execute(
            """
            INSERT INTO drivers
                (address, total_points, violation_count, is_suspended, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(address) DO UPDATE SET
                total_points = excluded.total_points,
                violation_count = excluded.violation_count,
                is_suspended = excluded.is_suspended,
                updated_at = excluded.updated_at
            """,
            (
                aggregate.address,
                aggregate.total_points,
                aggregate.violation_count,
                int(aggregate.is_suspended),
                now,
                now,
            ),
        )

    async def get_driver_aggregate(self, address: str) -> DriverAggregate | None:
        """Read projected driver state. Returns None if not found."""
        row = await self._db.fetchone(
            "SELECT * FROM drivers WHERE address = ?", (normalize_address(address),)
        )
        if row is None:
            return None
        return DriverAggregate(
            address=row["address"],
            total_points=row["total_points"],
            violation_count=row["violation_count"],
            is_suspended=bool(row["is_suspended"]),
            updated_at=row["updated_at"],
        )

    # -- Violations --

    async def upsert_violation_record(self, record: ViolationRecord) -> None:
        """Insert or refresh a violation. is_revoked never goes back to false."""
        now = _now()
        await self._db.execute(
            """
            INSERT INTO violations
                (violation_id, driver_address, points, violation_type, timestamp,
                 is_revoked, block_number, log_index, transaction_hash,
                 created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(violation_id) DO UPDATE SET
                points = excluded.points,
                violation_type = excluded.violation_type,
                is_revoked = MAX(violations.is_revoked, excluded.is_revoked),
                block_number = excluded.block_number,
                log_index = excluded.log_index,
                transaction_hash = excluded.transaction_hash,
                updated_at = excluded.updated_at
            """,
            (
                record.violation_id,
                record.driver_address,
                record.points,
                record.violation_type,
                record.timestamp,
                int(record.is_revoked),
                record.block_number,
                record.log_index,
                record.transaction_hash,
                now,
                now,
            ),
        )

    async def get_violation(self, violation_id: int) -> ViolationRecord | None:
        row = await self._db.fetchone(
            "SELECT * FROM violations WHERE violation_id = ?", (violation_id,)
        )
        if row is None:
            return None
        return self._row_to_violation(row)

    async def list_violations(self, address: str) -> list[ViolationRecord]:
        """Violations for a driver, most recent violation_id first."""
        rows = await self._db.fetchall(
            "SELECT * FROM violations WHERE driver_address = ? ORDER BY violation_id DESC",
            (normalize_address(address),),
        )
        return [self._row_to_violation(row) for row in rows]

    @staticmethod
    def _row_to_violation(row) -> ViolationRecord:
        return ViolationRecord(
            violation_id=row["violation_id"],
            driver_address=row["driver_address"],
            points=row["points"],
            violation_type=row["violation_type"],
            timestamp=row["timestamp"],
            is_revoked=bool(row["is_revoked"]),
            block_number=row["block_number"],
            log_index=row["log_index"],
            transaction_hash=row["transaction_hash"],
            updated_at=row["updated_at"],
        )

    # -- Sync cursor --

    async def get_cursor(self) -> SyncCursor:
        row = await self._db.fetchone(
            "SELECT last_block_number, last_log_index, last_sync_time FROM sync_status WHERE id = 1"
        )
        if row is None or row["last_block_number"] is None:
            return SyncCursor(last_sync_time=row["last_sync_time"] if row else None)
        return SyncCursor(
            position=LogPosition(
                block_number=row["last_block_number"],
                log_index=row["last_log_index"],
            ),
            last_sync_time=row["last_sync_time"],
        )

    async def advance_cursor(self, position: LogPosition) -> bool:
        """Move the cursor forward to position. Returns False if that would move it back."""
        current = (await self.get_cursor()).position
        if current is not None and position <= current:
            if position < current:
                logger.debug("Cursor stays at %s, not moving back to %s", current, position)
            await self.touch_sync_time()
            return False
        await self._db.execute(
            """
            UPDATE sync_status
            SET last_block_number = ?, last_log_index = ?, last_sync_time = ?
            WHERE id = 1
            """,
            (position.block_number, position.log_index, _now()),
        )
        return True

    async def touch_sync_time(self) -> None:
        await self._db.execute(
            "UPDATE sync_status SET last_sync_time = ? WHERE id = 1", (_now(),)
        )

    # -- Ledger policy --

    async def get_max_points(self) -> int:
        row = await self._db.fetchone("SELECT max_points FROM ledger_policy WHERE id = 1")
        if row is None:
            return DEFAULT_MAX_POINTS
        return row["max_points"]

    async def set_max_points(self, max_points: int, position: LogPosition) -> bool:
        """Store a new max points value unless a later update is already in place."""
        row = await self._db.fetchone(
            "SELECT updated_block, updated_log_index FROM ledger_policy WHERE id = 1"
        )
        if row is not None and row["updated_block"] is not None:
            applied_at = LogPosition(
                block_number=row["updated_block"], log_index=row["updated_log_index"]
            )
            if position <= applied_at:
                return False
        await self._db.execute(
            """
            INSERT INTO ledger_policy (id, max_points, updated_block, updated_log_index)
            VALUES (1, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                max_points = excluded.max_points,
                updated_block = excluded.updated_block,
                updated_log_index = excluded.updated_log_index
            """,
            (max_points, position.block_number, position.log_index),
        )
        return True

    # -- Deferred events --

    async def defer_event(self, event: LedgerEvent) -> None:
        """Park an event for retry. Deferring the same event again is a no-op."""
        await self._db.execute(
            """
            INSERT OR IGNORE INTO deferred_events
                (block_number, log_index, transaction_hash, event_type, payload, deferred_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                event.block_number,
                event.log_index,
                event.transaction_hash,
                event.event_type,
                json.dumps(event.payload),
                _now(),
            ),
        )

    async def list_deferred(self) -> list[DeferredEvent]:
        """Deferred events in log order."""
        rows = await self._db.fetchall(
            "SELECT * FROM deferred_events ORDER BY block_number, log_index"
        )
        return [
            DeferredEvent(
                event=LedgerEvent(
                    event_type=row["event_type"],
                    block_number=row["block_number"],
                    log_index=row["log_index"],
                    transaction_hash=row["transaction_hash"],
                    payload=json.loads(row["payload"]),
                ),
                attempts=row["attempts"],
                deferred_at=row["deferred_at"],
            )
            for row in rows
        ]

    async def count_deferred(self) -> int:
        row = await self._db.fetchone("SELECT COUNT(*) AS n FROM deferred_events")
        return row["n"] if row else 0

    async def resolve_deferred(self, position: LogPosition) -> None:
        await self._db.execute(
            "DELETE FROM deferred_events WHERE block_number = ? AND log_index = ?",
            (position.block_number, position.log_index),
        )

    async def bump_deferred(self, position: LogPosition) -> None:
        await self._db.execute(
            "UPDATE deferred_events SET attempts = attempts + 1 WHERE block_number = ? AND log_index = ?",
            (position.block_number, position.log_index),
        )
