"""Event synchronizer: keeps the projection in step with the event log.

Two activities feed the projection. Backfill reads everything between the
cursor and the log head; the live subscription streams new events through a
bounded queue to a single consumer. Both apply events under one lock, one
transaction per event, so a crash or cancellation leaves the cursor at or
behind what was durably applied. A heal loop re-runs backfill on a fixed
interval, which reconciles anything a lapsed subscription missed.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import TypeVar

import aiosqlite
from pydantic import BaseModel, ValidationError

from driverledger.db.connection import SchemaError
from driverledger.events.source import EventSource, EventSourceError
from driverledger.ledger.state_machine import (
    DerivedSignal,
    Outcome,
    Signal,
    Transition,
    apply_event,
)
from driverledger.models import (
    DriverAggregate,
    LedgerEvent,
    LogPosition,
    MaxPointsUpdatedPayload,
    PointsRevokedPayload,
    SyncCursor,
    ViolationRecord,
    ViolationRecordedPayload,
)
from driverledger.projection.store import ProjectionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures that the next backfill pass or re-subscription recovers from.
TRANSIENT_ERRORS = (TimeoutError, EventSourceError, aiosqlite.Error, OSError)


class SyncState(StrEnum):
    IDLE = "idle"
    BACKFILLING = "backfilling"
    LIVE = "live"
    STOPPED = "stopped"


class SyncStartupError(Exception):
    """The event log or projection store is unusable; the synchronizer won't start."""


@dataclass
class BackfillResult:
    from_position: LogPosition
    head: int
    applied: int = 0
    duplicates: int = 0
    deferred: int = 0
    resolved: int = 0

    def count(self, outcome: Outcome) -> None:
        if outcome == Outcome.APPLIED:
            self.applied += 1
        elif outcome == Outcome.DUPLICATE:
            self.duplicates += 1
        elif outcome == Outcome.DEFERRED:
            self.deferred += 1


class SyncStatus(BaseModel):
    state: SyncState
    last_block_number: int | None = None
    last_log_index: int | None = None
    last_sync_time: datetime | None = None
    deferred_events: int = 0
    max_points: int


class EventSynchronizer:
    """Drives backfill, live subscription and periodic self-healing."""

    def __init__(
        self,
        source: EventSource,
        store: ProjectionStore,
        *,
        backfill_interval: float = 30.0,
        operation_timeout: float = 10.0,
        resubscribe_delay: float = 5.0,
        live_queue_size: int = 1000,
        on_signal: Callable[[DerivedSignal], None] | None = None,
    ) -> None:
        self._source = source
        self._store = store
        self._backfill_interval = backfill_interval
        self._operation_timeout = operation_timeout
        self._resubscribe_delay = resubscribe_delay
        self._live_queue_size = live_queue_size
        self._on_signal = on_signal

        self._lock = asyncio.Lock()
        self._backfill_running = False
        self._live_active = False
        self._state = SyncState.IDLE
        self._tasks: list[asyncio.Task] = []

    @property
    def state(self) -> SyncState:
        return self._state

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        async with asyncio.timeout(self._operation_timeout):
            return await awaitable

    # -- Lifecycle --

    async def start(self) -> None:
        """Check both foundations, backfill once, then go live and start healing.

        Raises SyncStartupError if the event log or the store is unusable.
        """
        self._state = SyncState.IDLE
        try:
            await self._bounded(self._store.verify())
            head = await self._bounded(self._source.head())
        except (SchemaError, *TRANSIENT_ERRORS) as e:
            raise SyncStartupError(f"Refusing to start synchronizer: {e}") from e
        logger.info("Connected to event log, head at block %d", head)

        await self._backfill_logged()
        self._tasks = [
            asyncio.create_task(self.run_live(), name="driverledger-live"),
            asyncio.create_task(self._heal_forever(), name="driverledger-heal"),
        ]
        logger.info("Sync service started")

    async def stop(self) -> None:
        """Cancel background work. In-flight transactions roll back before the cursor moves."""
        self._state = SyncState.STOPPED
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Sync service stopped")

    async def status(self) -> SyncStatus:
        cursor = await self._store.get_cursor()
        position = cursor.position
        return SyncStatus(
            state=self._state,
            last_block_number=position.block_number if position else None,
            last_log_index=position.log_index if position else None,
            last_sync_time=cursor.last_sync_time,
            deferred_events=await self._store.count_deferred(),
            max_points=await self._store.get_max_points(),
        )

    def _settle_state(self) -> None:
        if self._state == SyncState.STOPPED:
            return
        self._state = SyncState.LIVE if self._live_active else SyncState.IDLE

    def _start_position(self, cursor: SyncCursor) -> LogPosition:
        if cursor.position is None:
            return LogPosition(block_number=self._source.genesis_block, log_index=0)
        return cursor.position.successor()

    # -- Backfill --

    async def run_backfill(self) -> BackfillResult | None:
        """Apply every event between the cursor and the current head.

        Returns None without doing anything if a backfill is already running.
        """
        if self._backfill_running:
            logger.debug("Backfill already in flight, dropping request")
            return None
        self._backfill_running = True
        if self._state != SyncState.STOPPED:
            self._state = SyncState.BACKFILLING
        try:
            async with self._lock:
                return await self._backfill()
        finally:
            self._backfill_running = False
            self._settle_state()

    async def _backfill(self) -> BackfillResult:
        cursor = await self._bounded(self._store.get_cursor())
        from_position = self._start_position(cursor)
        head = await self._bounded(self._source.head())
        result = BackfillResult(from_position=from_position, head=head)

        if from_position.block_number > head:
            await self._retry_deferred(result)
            await self._bounded(self._store.touch_sync_time())
            return result

        logger.info("Syncing events from block %d to %d", from_position.block_number, head)
        events = await self._bounded(self._source.get_events(from_position, head))
        events.sort(key=lambda e: e.position.sort_key())

        for event in events:
            transition = await self._bounded(self._apply_one(event))
            result.count(transition.outcome)

        await self._retry_deferred(result)
        await self._bounded(self._store.advance_cursor(LogPosition(block_number=head)))
        logger.info(
            "Historical sync completed: %d applied, %d duplicates, %d deferred, %d resolved",
            result.applied, result.duplicates, result.deferred, result.resolved,
        )
        return result

    async def _retry_deferred(self, result: BackfillResult) -> None:
        for deferred in await self._bounded(self._store.list_deferred()):
            transition = await self._bounded(self._apply_one(deferred.event, retry=True))
            if transition.outcome != Outcome.DEFERRED:
                result.resolved += 1

    async def _backfill_logged(self) -> None:
        try:
            await self.run_backfill()
        except TRANSIENT_ERRORS as e:
            logger.warning("Backfill failed, retrying on the next pass: %r", e)

    async def _heal_forever(self) -> None:
        while self._state != SyncState.STOPPED:
            await asyncio.sleep(self._backfill_interval)
            try:
                await self._backfill_logged()
            except Exception:
                logger.exception("Unexpected error in scheduled backfill")

    # -- Live --

    async def run_live(self) -> None:
        """Stream new events into the projection until cancelled or stopped.

        Each session subscribes from the cursor. When a session breaks, the
        event that failed was not applied and the cursor still points before
        it, so the next session (or backfill) picks it up again.
        """
        try:
            while self._state != SyncState.STOPPED:
                try:
                    await self._live_session()
                except TRANSIENT_ERRORS as e:
                    logger.warning(
                        "Live subscription lost (%r); reconciliation needed, next backfill will catch up",
                        e,
                    )
                except Exception:
                    logger.exception("Unexpected error in live subscription")
                await asyncio.sleep(self._resubscribe_delay)
        finally:
            self._live_active = False
            self._settle_state()

    async def _live_session(self) -> None:
        cursor = await self._bounded(self._store.get_cursor())
        from_position = self._start_position(cursor)
        queue: asyncio.Queue[LedgerEvent] = asyncio.Queue(maxsize=self._live_queue_size)

        self._live_active = True
        if self._state == SyncState.IDLE:
            self._state = SyncState.LIVE
        logger.info("Event listeners started from block %d", from_position.block_number)

        producer = asyncio.create_task(self._produce(from_position, queue))
        consumer = asyncio.create_task(self._consume(queue))
        try:
            done, _ = await asyncio.wait(
                {producer, consumer}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                task.result()
        finally:
            for task in (producer, consumer):
                task.cancel()
            await asyncio.gather(producer, consumer, return_exceptions=True)

    async def _produce(self, from_position: LogPosition, queue: asyncio.Queue[LedgerEvent]) -> None:
        try:
            async for event in self._source.subscribe(from_position):
                await queue.put(event)
        except TRANSIENT_ERRORS:
            # Events queued before the failure are still valid.
            await queue.join()
            raise
        # Subscription closed by the source: let the consumer drain what's queued.
        await queue.join()

    async def _consume(self, queue: asyncio.Queue[LedgerEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                async with self._lock:
                    await self._bounded(self._apply_one(event, advance_cursor=True))
            finally:
                queue.task_done()

    # -- Application --

    async def _apply_one(
        self,
        event: LedgerEvent,
        *,
        advance_cursor: bool = False,
        retry: bool = False,
    ) -> Transition:
        """Apply a single event as one atomic unit.

        advance_cursor moves the cursor to the event's own position in the
        same transaction; retry marks a pass over the deferred table.
        """
        async with self._store.unit() as store:
            try:
                transition = await self._transition(event)
            except ValidationError as e:
                logger.warning("Malformed %s at %s, deferring: %s", event.event_type, event.position, e)
                transition = Transition(Outcome.DEFERRED, await store.get_max_points())

            if transition.outcome == Outcome.DEFERRED:
                if retry:
                    await store.bump_deferred(event.position)
                else:
                    logger.warning(
                        "Deferring %s at %s until its violation is projected",
                        event.event_type, event.position,
                    )
                    await store.defer_event(event)
            elif retry:
                await store.resolve_deferred(event.position)

            if advance_cursor:
                await store.advance_cursor(event.position)

        for signal in transition.signals:
            self._emit(signal)
        return transition

    async def _transition(self, event: LedgerEvent) -> Transition:
        store = self._store
        max_points = await store.get_max_points()
        aggregate: DriverAggregate | None = None
        existing: ViolationRecord | None = None

        payload = event.typed_payload() if event.event_type in _STATEFUL_EVENTS else None
        if isinstance(payload, (ViolationRecordedPayload, PointsRevokedPayload)):
            existing = await store.get_violation(payload.violation_id)
            # A revocation always lands on the driver the violation was recorded against.
            owner = existing.driver_address if existing is not None else payload.driver
            aggregate = await store.get_driver_aggregate(owner)

        transition = apply_event(event, aggregate, existing, max_points)
        if transition.outcome != Outcome.APPLIED:
            return transition

        if transition.aggregate is not None:
            await store.upsert_driver_aggregate(transition.aggregate)
        if transition.record is not None:
            await store.upsert_violation_record(transition.record)
        if isinstance(payload, MaxPointsUpdatedPayload):
            if await store.set_max_points(transition.max_points, event.position):
                logger.info("Max points updated to %d", transition.max_points)
        return transition

    def _emit(self, signal: DerivedSignal) -> None:
        if signal.kind == Signal.DRIVER_SUSPENDED:
            logger.info("Driver %s suspended", signal.driver)
        else:
            logger.info("Driver %s reinstated", signal.driver)
        if self._on_signal is not None:
            self._on_signal(signal)


_STATEFUL_EVENTS = {"ViolationRecorded", "PointsRevoked", "MaxPointsUpdated"}
