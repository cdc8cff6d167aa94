"""Projection: the relational read model kept in step with the ledger."""

from driverledger.projection.store import ProjectionStore

__all__ = ["ProjectionStore"]
