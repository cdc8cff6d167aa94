"""Contract tests for the SQLite-backed event log."""

import asyncio

import pytest

from driverledger.db.connection import Database
from driverledger.db.schema import EVENT_LOG_SQL
from driverledger.events.log import SqliteEventLog
from driverledger.models import LogPosition
from tests.fixtures import make_points_revoked, make_violation_recorded


class TestEventLogCanary:
    async def test_event_roundtrip(self, event_log):
        """Append a ViolationRecorded event, get_events returns it unchanged."""
        event = make_violation_recorded(0, points=5, block_number=3, log_index=1)

        await event_log.append(event)
        events = await event_log.get_events(LogPosition(block_number=0, log_index=0), 10)

        assert events == [event]


class TestEventLogReads:
    async def test_head_of_empty_log_is_before_genesis(self):
        database = await Database.connect(":memory:", schema_sql=EVENT_LOG_SQL)
        try:
            log = SqliteEventLog(database, genesis_block=100)
            assert await log.head() == 99
        finally:
            await database.close()

    async def test_head_is_highest_block(self, event_log):
        await event_log.append(make_violation_recorded(0, block_number=4))
        await event_log.append(make_violation_recorded(1, block_number=9))
        assert await event_log.head() == 9

    async def test_events_ordered_by_position(self, event_log):
        await event_log.append(make_points_revoked(0, block_number=5, log_index=0))
        await event_log.append(make_violation_recorded(1, block_number=2, log_index=1))
        await event_log.append(make_violation_recorded(0, block_number=2, log_index=0))

        events = await event_log.get_events(LogPosition(block_number=0, log_index=0), 5)
        assert [(e.block_number, e.log_index) for e in events] == [(2, 0), (2, 1), (5, 0)]

    async def test_range_is_inclusive_and_honors_log_index(self, event_log):
        for index in range(3):
            await event_log.append(make_violation_recorded(index, block_number=7, log_index=index))
        await event_log.append(make_violation_recorded(3, block_number=8, log_index=0))

        events = await event_log.get_events(LogPosition(block_number=7, log_index=1), 7)
        assert [e.log_index for e in events] == [1, 2]

    async def test_duplicate_position_rejected(self, event_log):
        event = make_violation_recorded(0, block_number=1, log_index=0)
        await event_log.append(event)
        with pytest.raises(Exception):  # IntegrityError
            await event_log.append(event)


class TestEventLogSubscription:
    async def test_subscribe_yields_existing_then_new_events(self, event_log):
        await event_log.append(make_violation_recorded(0, block_number=1))
        received = []

        async def consume():
            async for event in event_log.subscribe(LogPosition(block_number=0, log_index=0)):
                received.append(event)
                if len(received) == 2:
                    return

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.05)
        await event_log.append(make_violation_recorded(1, block_number=2))
        await asyncio.wait_for(task, timeout=2)

        assert [e.payload["violation_id"] for e in received] == [0, 1]

    async def test_subscribe_starts_at_position(self, event_log):
        await event_log.append(make_violation_recorded(0, block_number=1))
        await event_log.append(make_violation_recorded(1, block_number=2))

        stream = event_log.subscribe(LogPosition(block_number=2, log_index=0))
        first = await asyncio.wait_for(anext(stream), timeout=2)
        await stream.aclose()

        assert first.payload["violation_id"] == 1
