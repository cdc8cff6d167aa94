"""Ledger state machine: pure transitions from (state, event) to new state.

No I/O. The event log is trusted as already-validated fact, so nothing here
rejects an event. Points bounds and ownership checks happened when the event
was accepted into the log. Duplicates (same violation_id and event kind) come
back as DUPLICATE transitions that change nothing, which is what makes replay
idempotent.
"""

from dataclasses import dataclass, field
from enum import StrEnum

from driverledger.models import (
    EVENT_TYPES,
    DriverAggregate,
    LedgerEvent,
    MaxPointsUpdatedPayload,
    PointsRevokedPayload,
    ViolationRecord,
    ViolationRecordedPayload,
)


class Outcome(StrEnum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    DEFERRED = "deferred"
    INFORMATIONAL = "informational"


class Signal(StrEnum):
    DRIVER_SUSPENDED = "DriverSuspended"
    DRIVER_REINSTATED = "DriverReinstated"


@dataclass(frozen=True)
class DerivedSignal:
    kind: Signal
    driver: str


@dataclass(frozen=True)
class Transition:
    """Result of applying one event. Fields left as None are untouched."""

    outcome: Outcome
    max_points: int
    aggregate: DriverAggregate | None = None
    record: ViolationRecord | None = None
    signals: list[DerivedSignal] = field(default_factory=list)


def is_suspended(total_points: int, max_points: int) -> bool:
    return total_points >= max_points


def apply_violation_recorded(
    payload: ViolationRecordedPayload,
    event: LedgerEvent,
    aggregate: DriverAggregate | None,
    existing: ViolationRecord | None,
    max_points: int,
) -> Transition:
    """Record a violation and add its points to the driver."""
    if existing is not None:
        return Transition(Outcome.DUPLICATE, max_points)

    current = aggregate or DriverAggregate(address=payload.driver)
    total = current.total_points + payload.points
    suspended = is_suspended(total, max_points)

    signals = []
    if suspended and not current.is_suspended:
        signals.append(DerivedSignal(Signal.DRIVER_SUSPENDED, payload.driver))

    record = ViolationRecord(
        violation_id=payload.violation_id,
        driver_address=payload.driver,
        points=payload.points,
        violation_type=payload.violation_type,
        timestamp=payload.timestamp,
        is_revoked=False,
        block_number=event.block_number,
        log_index=event.log_index,
        transaction_hash=event.transaction_hash,
    )
    updated = current.model_copy(update={
        "total_points": total,
        "violation_count": current.violation_count + 1,
        "is_suspended": suspended,
    })
    return Transition(Outcome.APPLIED, max_points, updated, record, signals)


def apply_points_revoked(
    payload: PointsRevokedPayload,
    event: LedgerEvent,
    aggregate: DriverAggregate | None,
    existing: ViolationRecord | None,
    max_points: int,
) -> Transition:
    """Revoke a violation and take its points back off the driver.

    A revocation for a violation that isn't projected yet is DEFERRED, one for
    an already revoked violation is a DUPLICATE.
    """
    if existing is None:
        return Transition(Outcome.DEFERRED, max_points)
    if existing.is_revoked:
        return Transition(Outcome.DUPLICATE, max_points)

    current = aggregate or DriverAggregate(address=existing.driver_address)
    total = max(current.total_points - payload.points, 0)
    suspended = is_suspended(total, max_points)

    signals = []
    if current.is_suspended and not suspended:
        signals.append(DerivedSignal(Signal.DRIVER_REINSTATED, current.address))

    record = existing.model_copy(update={"is_revoked": True})
    updated = current.model_copy(update={
        "total_points": total,
        "violation_count": max(current.violation_count - 1, 0),
        "is_suspended": suspended,
    })
    return Transition(Outcome.APPLIED, max_points, updated, record, signals)


def apply_event(
    event: LedgerEvent,
    aggregate: DriverAggregate | None,
    existing: ViolationRecord | None,
    max_points: int,
) -> Transition:
    """Apply one ledger event to the driver aggregate and violation it touches.

    `aggregate` is the current state of the event's driver (None if unseen),
    `existing` the projected violation named by the event (None if absent or
    the event names no violation).
    """
    if event.event_type not in EVENT_TYPES:
        return Transition(Outcome.INFORMATIONAL, max_points)

    payload = event.typed_payload()

    if isinstance(payload, ViolationRecordedPayload):
        return apply_violation_recorded(payload, event, aggregate, existing, max_points)
    if isinstance(payload, PointsRevokedPayload):
        return apply_points_revoked(payload, event, aggregate, existing, max_points)
    if isinstance(payload, MaxPointsUpdatedPayload):
        # Existing aggregates keep their is_suspended until their next event.
        return Transition(Outcome.APPLIED, payload.new_max)

    # DriverSuspended / DriverReinstated are derived by the ledger itself;
    # the projection computes its own, so these carry no state.
    return Transition(Outcome.INFORMATIONAL, max_points)
