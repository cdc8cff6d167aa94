"""Ledger state machine: how violation events change driver state."""

from driverledger.ledger.state_machine import (
    DerivedSignal,
    Outcome,
    Signal,
    Transition,
    apply_event,
)

__all__ = ["DerivedSignal", "Outcome", "Signal", "Transition", "apply_event"]
