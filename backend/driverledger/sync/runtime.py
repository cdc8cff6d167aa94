"""Wiring: open the databases, build the synchronizer, tear it all down."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from driverledger.config import Settings
from driverledger.db.connection import Database
from driverledger.db.schema import EVENT_LOG_SQL
from driverledger.events.log import SqliteEventLog
from driverledger.projection.store import ProjectionStore
from driverledger.sync.synchronizer import EventSynchronizer


@dataclass
class SyncRuntime:
    db: Database
    store: ProjectionStore
    synchronizer: EventSynchronizer
    # Separate read-only connection: sees committed projection state only.
    reader: ProjectionStore


@asynccontextmanager
async def sync_runtime(settings: Settings) -> AsyncIterator[SyncRuntime]:
    """Start a synchronizer for the configured databases; stop it on exit.

    Raises SyncStartupError (before yielding) if it can't start.
    """
    db = await Database.connect(settings.db_path)
    log_db = await Database.connect(settings.event_log_path, schema_sql=EVENT_LOG_SQL)
    read_db = await Database.connect(settings.db_path, read_only=True)
    try:
        store = ProjectionStore(db)
        await store.initialize(settings.max_points)
        source = SqliteEventLog(
            log_db, genesis_block=settings.genesis_block, poll_interval=settings.poll_interval
        )
        synchronizer = EventSynchronizer(
            source,
            store,
            backfill_interval=settings.backfill_interval,
            operation_timeout=settings.operation_timeout,
            resubscribe_delay=settings.resubscribe_delay,
            live_queue_size=settings.live_queue_size,
        )
        await synchronizer.start()
        try:
            yield SyncRuntime(
                db=db, store=store, synchronizer=synchronizer, reader=ProjectionStore(read_db)
            )
        finally:
            await synchronizer.stop()
    finally:
        await read_db.close()
        await log_db.close()
        await db.close()
