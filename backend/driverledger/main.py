"""Driver ledger FastAPI application entry point."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from driverledger.config import Settings, configure_logging
from driverledger.drivers.router import get_driver_service
from driverledger.drivers.router import router as drivers_router
from driverledger.drivers.service import DriverQueryService
from driverledger.sync.runtime import sync_runtime
from driverledger.sync.synchronizer import EventSynchronizer

settings = Settings.from_env()


def get_synchronizer() -> EventSynchronizer | None:
    """Dependency placeholder, overridden at startup."""
    return None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the synchronizer before serving; a failed start aborts startup."""
    configure_logging(settings.log_level)

    async with sync_runtime(settings) as runtime:
        service = DriverQueryService(runtime.reader)
        app.dependency_overrides[get_driver_service] = lambda: service
        app.dependency_overrides[get_synchronizer] = lambda: runtime.synchronizer
        yield
        app.dependency_overrides.clear()


app = FastAPI(
    title="Driver Ledger",
    description="Queryable projection of the driver traffic-violation ledger",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.include_router(drivers_router)


@app.get("/health")
@app.get("/api/health")
async def health(
    synchronizer: EventSynchronizer | None = Depends(get_synchronizer),
) -> dict:
    sync = await synchronizer.status() if synchronizer is not None else None
    return {
        "status": "ok",
        "version": "0.1.0",
        "sync": sync.model_dump(mode="json") if sync is not None else None,
    }
