"""Canonical data structures and event types for the driver ledger.

Defined once here, referenced everywhere else. Event payloads represent the
type-specific content of each ledger event; LedgerEvent wraps them with the
log position they were read from.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_MAX_POINTS = 12


def normalize_address(value: str) -> str:
    """Canonical form for account addresses: trimmed and lower-cased."""
    return value.strip().lower()


# ---------------------------------------------------------------------------
# Log positions
# ---------------------------------------------------------------------------


class LogPosition(BaseModel):
    """A point in the event log: block number plus log index within the block.

    log_index=None means the whole block has been processed; it sorts after
    every log index of the same block.
    """

    model_config = ConfigDict(frozen=True)

    block_number: int
    log_index: int | None = None

    def sort_key(self) -> tuple[int, float]:
        index = float("inf") if self.log_index is None else self.log_index
        return (self.block_number, index)

    def __lt__(self, other: "LogPosition") -> bool:
        return self.sort_key() < other.sort_key()

    def __le__(self, other: "LogPosition") -> bool:
        return self.sort_key() <= other.sort_key()

    def __gt__(self, other: "LogPosition") -> bool:
        return self.sort_key() > other.sort_key()

    def __ge__(self, other: "LogPosition") -> bool:
        return self.sort_key() >= other.sort_key()

    def successor(self) -> "LogPosition":
        """First position strictly after this one."""
        if self.log_index is None:
            return LogPosition(block_number=self.block_number + 1, log_index=0)
        return LogPosition(block_number=self.block_number, log_index=self.log_index + 1)


# ---------------------------------------------------------------------------
# Event payloads, one per event type
# ---------------------------------------------------------------------------


class _DriverPayload(BaseModel):
    driver: str

    @field_validator("driver")
    @classmethod
    def _normalize_driver(cls, value: str) -> str:
        return normalize_address(value)


class ViolationRecordedPayload(_DriverPayload):
    violation_id: int
    points: int
    violation_type: str
    timestamp: int


class PointsRevokedPayload(_DriverPayload):
    violation_id: int
    points: int


class DriverSuspendedPayload(_DriverPayload):
    pass


class DriverReinstatedPayload(_DriverPayload):
    pass


class MaxPointsUpdatedPayload(BaseModel):
    new_max: int


# ---------------------------------------------------------------------------
# Event type registry
# ---------------------------------------------------------------------------

EVENT_TYPES: dict[str, type[BaseModel]] = {
    "ViolationRecorded": ViolationRecordedPayload,
    "PointsRevoked": PointsRevokedPayload,
    "DriverSuspended": DriverSuspendedPayload,
    "DriverReinstated": DriverReinstatedPayload,
    "MaxPointsUpdated": MaxPointsUpdatedPayload,
}


# ---------------------------------------------------------------------------
# Event envelope
# ---------------------------------------------------------------------------


class LedgerEvent(BaseModel):
    """A finalized log entry, as read from the event source."""

    event_type: str
    block_number: int
    log_index: int
    transaction_hash: str | None = None
    payload: dict[str, Any]

    @property
    def position(self) -> LogPosition:
        return LogPosition(block_number=self.block_number, log_index=self.log_index)

    def typed_payload(self) -> BaseModel:
        """Deserialize payload into the correct Pydantic model based on event_type."""
        payload_cls = EVENT_TYPES[self.event_type]
        return payload_cls.model_validate(self.payload)


# ---------------------------------------------------------------------------
# Projected state
# ---------------------------------------------------------------------------


class DriverAggregate(BaseModel):
    address: str
    total_points: int = 0
    violation_count: int = 0
    is_suspended: bool = False
    updated_at: datetime | None = None

    @field_validator("address")
    @classmethod
    def _normalize_address(cls, value: str) -> str:
        return normalize_address(value)


class ViolationRecord(BaseModel):
    violation_id: int
    driver_address: str
    points: int
    violation_type: str
    timestamp: int
    is_revoked: bool = False
    block_number: int | None = None
    log_index: int | None = None
    transaction_hash: str | None = None
    updated_at: datetime | None = None

    @field_validator("driver_address")
    @classmethod
    def _normalize_address(cls, value: str) -> str:
        return normalize_address(value)


class SyncCursor(BaseModel):
    """Singleton marker of how far synchronization has progressed."""

    position: LogPosition | None = None
    last_sync_time: datetime | None = None


class DeferredEvent(BaseModel):
    """An event that could not be applied yet and waits for a later pass."""

    event: LedgerEvent
    attempts: int = 0
    deferred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
