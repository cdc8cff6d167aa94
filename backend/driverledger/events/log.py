"""Append-only event log backed by SQLite.

Stands in for the ledger node in local deployments and tests: events are
appended with the block number and log index the ledger assigned them, and
read back in log order by backfill or by a polling subscription.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator

import aiosqlite

from driverledger.db.connection import Database
from driverledger.events.source import EventSourceError
from driverledger.models import LedgerEvent, LogPosition

logger = logging.getLogger(__name__)


class SqliteEventLog:
    """Append-only event log. Implements the EventSource protocol."""

    def __init__(self, db: Database, genesis_block: int = 0, poll_interval: float = 1.0) -> None:
        self._db = db
        self.genesis_block = genesis_block
        self._poll_interval = poll_interval

    async def append(self, event: LedgerEvent) -> LogPosition:
        """Append an event at its own position.

        Raises IntegrityError if the position is already taken.
        """
        await self._db.execute(
            """
            INSERT INTO events
                (block_number, log_index, transaction_hash, event_type, payload)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                event.block_number,
                event.log_index,
                event.transaction_hash,
                event.event_type,
                json.dumps(event.payload),
            ),
        )
        return event.position

    async def head(self) -> int:
        """Highest block in the log, or genesis_block - 1 when empty."""
        try:
            row = await self._db.fetchone("SELECT MAX(block_number) AS head FROM events")
        except aiosqlite.Error as e:
            raise EventSourceError(f"Event log unreadable: {e}") from e
        if row is None or row["head"] is None:
            return self.genesis_block - 1
        return row["head"]

    async def get_events(self, from_position: LogPosition, to_block: int) -> list[LedgerEvent]:
        """Get events in [from_position, to_block], ordered by position."""
        from_index = from_position.log_index or 0
        try:
            rows = await self._db.fetchall(
                """
                SELECT * FROM events
                WHERE (block_number > ? OR (block_number = ? AND log_index >= ?))
                  AND block_number <= ?
                ORDER BY block_number, log_index
                """,
                (from_position.block_number, from_position.block_number, from_index, to_block),
            )
        except aiosqlite.Error as e:
            raise EventSourceError(f"Event log unreadable: {e}") from e
        return [self._row_to_event(row) for row in rows]

    async def subscribe(self, from_position: LogPosition) -> AsyncIterator[LedgerEvent]:
        """Poll for new events, yielding each exactly once in log order."""
        next_position = from_position
        while True:
            head = await self.head()
            if head >= next_position.block_number:
                for event in await self.get_events(next_position, head):
                    yield event
                    next_position = event.position.successor()
            await asyncio.sleep(self._poll_interval)

    @staticmethod
    def _row_to_event(row) -> LedgerEvent:
        """Convert a database row to a LedgerEvent."""
        return LedgerEvent(
            event_type=row["event_type"],
            block_number=row["block_number"],
            log_index=row["log_index"],
            transaction_hash=row["transaction_hash"],
            payload=json.loads(row["payload"]),
        )
