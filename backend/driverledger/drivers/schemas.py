"""Response schemas for driver endpoints."""

from datetime import datetime

from pydantic import BaseModel


class DriverResponse(BaseModel):
    address: str
    total_points: int
    violation_count: int
    is_suspended: bool
    updated_at: datetime | None = None


class ViolationResponse(BaseModel):
    violation_id: int
    driver_address: str
    points: int
    violation_type: str
    timestamp: int
    is_revoked: bool
    block_number: int | None = None
    transaction_hash: str | None = None
