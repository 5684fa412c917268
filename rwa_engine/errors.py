"""Exception types raised by the valuation engine and its collaborators."""
from __future__ import annotations


class EngineError(Exception):
    """Base class for engine errors."""


class NotFoundError(EngineError):
    """A specific entity required by a computation does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class StoreError(EngineError):
    """The row store rejected or failed a request."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class PriceFeedError(EngineError):
    """An external price feed returned no usable quote."""
