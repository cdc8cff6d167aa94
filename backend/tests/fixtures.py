"""Shared test helpers: event factories and a scriptable event source."""

import asyncio
from collections.abc import AsyncIterator

from driverledger.models import LedgerEvent, LogPosition

DRIVER_A = "0x1111111111111111111111111111111111111111"
DRIVER_B = "0x2222222222222222222222222222222222222222"


def make_violation_recorded(
    violation_id: int,
    driver: str = DRIVER_A,
    points: int = 3,
    violation_type: str = "Speeding",
    block_number: int = 1,
    log_index: int = 0,
    timestamp: int = 1_700_000_000,
) -> LedgerEvent:
    """Create a ViolationRecorded event for testing."""
    return LedgerEvent(
        event_type="ViolationRecorded",
        block_number=block_number,
        log_index=log_index,
        transaction_hash=f"0x{block_number:032x}{log_index:032x}",
        payload={
            "violation_id": violation_id,
            "driver": driver,
            "points": points,
            "violation_type": violation_type,
            "timestamp": timestamp,
        },
    )


def make_points_revoked(
    violation_id: int,
    driver: str = DRIVER_A,
    points: int = 3,
    block_number: int = 2,
    log_index: int = 0,
) -> LedgerEvent:
    """Create a PointsRevoked event for testing."""
    return LedgerEvent(
        event_type="PointsRevoked",
        block_number=block_number,
        log_index=log_index,
        transaction_hash=f"0x{block_number:032x}{log_index:032x}",
        payload={"violation_id": violation_id, "driver": driver, "points": points},
    )


def make_max_points_updated(new_max: int, block_number: int = 1, log_index: int = 0) -> LedgerEvent:
    return LedgerEvent(
        event_type="MaxPointsUpdated",
        block_number=block_number,
        log_index=log_index,
        payload={"new_max": new_max},
    )


def make_driver_suspended(driver: str = DRIVER_A, block_number: int = 1, log_index: int = 1) -> LedgerEvent:
    return LedgerEvent(
        event_type="DriverSuspended",
        block_number=block_number,
        log_index=log_index,
        payload={"driver": driver},
    )


class ScriptedEventSource:
    """In-memory EventSource whose log and failures are set by the test.

    `live` events are what subscribe() hands out (possibly duplicates or
    events the log already holds); `fail_subscribe` makes the next
    subscription raise after yielding its events.
    """

    def __init__(self, events: list[LedgerEvent] | None = None, genesis_block: int = 0) -> None:
        self.genesis_block = genesis_block
        self.events: list[LedgerEvent] = list(events or [])
        self.live: list[LedgerEvent] = []
        self.fail_head: Exception | None = None
        self.fail_subscribe: Exception | None = None
        self.subscribed_from: list[LogPosition] = []
        self.head_delay = 0.0

    async def head(self) -> int:
        if self.head_delay:
            await asyncio.sleep(self.head_delay)
        if self.fail_head is not None:
            raise self.fail_head
        if not self.events:
            return self.genesis_block - 1
        return max(e.block_number for e in self.events)

    async def get_events(self, from_position: LogPosition, to_block: int) -> list[LedgerEvent]:
        return sorted(
            (
                e for e in self.events
                if e.position >= from_position and e.block_number <= to_block
            ),
            key=lambda e: e.position.sort_key(),
        )

    async def subscribe(self, from_position: LogPosition) -> AsyncIterator[LedgerEvent]:
        self.subscribed_from.append(from_position)
        live, self.live = self.live, []
        for event in live:
            yield event
        if self.fail_subscribe is not None:
            error, self.fail_subscribe = self.fail_subscribe, None
            raise error
