"""The contract between the synchronizer and whatever delivers ledger events."""

from collections.abc import AsyncIterator
from typing import Protocol

from driverledger.models import LedgerEvent, LogPosition


class EventSourceError(Exception):
    """The event log could not be read (connection drop, node error, ...)."""


class EventSource(Protocol):
    """An ordered, append-only log of finalized ledger events."""

    genesis_block: int

    async def head(self) -> int:
        """Highest block number currently in the log."""
        ...

    async def get_events(self, from_position: LogPosition, to_block: int) -> list[LedgerEvent]:
        """Events at or after from_position up to and including to_block, in log order."""
        ...

    def subscribe(self, from_position: LogPosition) -> AsyncIterator[LedgerEvent]:
        """Yield events at or after from_position as they are appended, in log order."""
        ...
