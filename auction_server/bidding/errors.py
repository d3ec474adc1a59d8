"""Domain errors raised by the bidding core and storage backends."""

from __future__ import annotations

from decimal import Decimal


class AuctionError(Exception):
    """Base class for every error the core reports to callers."""


class ValidationError(AuctionError, ValueError):
    """Raised when a request is incomplete, malformed, or breaks a bidding rule."""


class BidTooLowError(ValidationError):
    """Raised when a bid does not strictly exceed the current price."""

    def __init__(self, current_price: Decimal) -> None:
        super().__init__("bid too low")
        self.current_price = current_price


class NotFoundError(AuctionError, LookupError):
    """Raised when the referenced listing or category does not exist."""


class StorageError(AuctionError):
    """Raised when the storage backend fails; the attempted write is rolled back."""
