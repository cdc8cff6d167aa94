"""Event log access: the source protocol and a SQLite-backed log."""

from driverledger.events.log import SqliteEventLog
from driverledger.events.source import EventSource, EventSourceError

__all__ = ["EventSource", "EventSourceError", "SqliteEventLog"]
