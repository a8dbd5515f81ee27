"""Failures surfaced by the cart and wishlist stores.

Every store failure is a ``StoreError`` carrying a short, human-readable
message. Stores record them in ``last_error`` instead of raising, so a
failed tap never takes the client down. Transport exceptions from the
document store are chained as ``__cause__``.
"""

from typing import Optional


class StoreError(Exception):
    """Base class for store failures."""

    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotAuthenticated(StoreError):
    default_message = "User not authenticated"


class StoreNotReady(StoreError):
    default_message = "Data is still loading, try again"


class ItemNotFound(StoreError):
    default_message = "Item not found"


class RemoteWriteFailed(StoreError):
    default_message = "Could not save your change"


class RemoteFetchFailed(StoreError):
    default_message = "Could not load data"


class StockExceeded(StoreError):
    """Insert would push a line item past the known stock ceiling."""

    def __init__(self, available: int):
        self.available = available
        super().__init__(f"Only {available} items available in stock")


class LoadCancelled(StoreError):
    """A newer load superseded this one. Never shown to the user."""

    default_message = "Load superseded"
