"""Driver query service: read-only access to the projection.

Never takes the synchronizer's lock, so reads may trail the event log
slightly.
"""

from driverledger.drivers.schemas import DriverResponse, ViolationResponse
from driverledger.projection.store import ProjectionStore


class DriverQueryService:
    def __init__(self, store: ProjectionStore) -> None:
        self._store = store

    async def get_driver(self, address: str) -> DriverResponse | None:
        aggregate = await self._store.get_driver_aggregate(address)
        if aggregate is None:
            return None
        return DriverResponse.model_validate(aggregate.model_dump())

    async def list_violations(self, address: str) -> list[ViolationResponse]:
        records = await self._store.list_violations(address)
        return [ViolationResponse.model_validate(r.model_dump()) for r in records]
