"""Driver read API routes."""

from fastapi import APIRouter, Depends, HTTPException

from driverledger.drivers.schemas import DriverResponse, ViolationResponse
from driverledger.drivers.service import DriverQueryService

router = APIRouter(prefix="/api/driver", tags=["drivers"])


def get_driver_service() -> DriverQueryService:
    """Dependency placeholder, overridden at startup."""
    raise RuntimeError("DriverQueryService not configured")


@router.get("/{address}")
async def get_driver(
    address: str,
    service: DriverQueryService = Depends(get_driver_service),
) -> DriverResponse:
    driver = await service.get_driver(address)
    if driver is None:
        raise HTTPException(status_code=404, detail="Driver not found")
    return driver


@router.get("/{address}/violations")
async def list_violations(
    address: str,
    service: DriverQueryService = Depends(get_driver_service),
) -> list[ViolationResponse]:
    """Violations for a driver, most recent first. Empty for unknown drivers."""
    return await service.list_violations(address)
