"""Shared pytest fixtures for driver ledger tests."""

import pytest
from httpx import ASGITransport, AsyncClient

from driverledger.db.connection import Database
from driverledger.db.schema import EVENT_LOG_SQL
from driverledger.drivers.router import get_driver_service
from driverledger.drivers.service import DriverQueryService
from driverledger.events.log import SqliteEventLog
from driverledger.main import app, get_synchronizer
from driverledger.projection.store import ProjectionStore
from driverledger.sync.synchronizer import EventSynchronizer
from tests.fixtures import ScriptedEventSource


@pytest.fixture
async def db():
    """In-memory projection database for tests."""
    database = await Database.connect(":memory:")
    yield database
    await database.close()


@pytest.fixture
async def store(db):
    """ProjectionStore backed by the in-memory database."""
    projection = ProjectionStore(db)
    await projection.initialize()
    return projection


@pytest.fixture
async def event_log():
    """SqliteEventLog backed by its own in-memory database."""
    database = await Database.connect(":memory:", schema_sql=EVENT_LOG_SQL)
    yield SqliteEventLog(database, poll_interval=0.01)
    await database.close()


@pytest.fixture
def source():
    return ScriptedEventSource()


@pytest.fixture
def synchronizer(source, store):
    """Synchronizer over a scripted source, with short timings for tests."""
    return EventSynchronizer(
        source,
        store,
        backfill_interval=0.05,
        operation_timeout=2.0,
        resubscribe_delay=0.01,
    )


@pytest.fixture
async def client(store, synchronizer):
    """Async test client with the in-memory projection wired into the app."""
    service = DriverQueryService(store)
    app.dependency_overrides[get_driver_service] = lambda: service
    app.dependency_overrides[get_synchronizer] = lambda: synchronizer
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.dependency_overrides.clear()
