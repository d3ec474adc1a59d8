"""Shared listing and bid data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from .pricing import current_price


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    created_at: datetime


@dataclass(frozen=True)
class NewBid:
    first_name: str
    last_name: str
    phone_number: str
    amount: Decimal
    is_anonymous: bool = False


@dataclass(frozen=True)
class Bid:
    id: int
    listing_id: int
    first_name: str
    last_name: str
    phone_number: str
    amount: Decimal
    is_anonymous: bool
    created_at: datetime

    @property
    def bidder_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


@dataclass(frozen=True)
class ListingDraft:
    title: str
    description: str
    starting_price: Decimal
    end_time: datetime
    category_id: Optional[int] = None
    images: tuple[str, ...] = ()
    active: bool = True


@dataclass
class Listing:
    id: int
    title: str
    description: str
    starting_price: Decimal
    end_time: datetime
    active: bool = True
    images: list[str] = field(default_factory=list)
    category_id: Optional[int] = None
    category: Optional[str] = None
    created_at: Optional[datetime] = None
    # Aggregated by the storage backend on every read; bids is only filled for detail reads.
    highest_bid: Optional[Decimal] = None
    bids_count: int = 0
    bids: list[Bid] = field(default_factory=list)

    @property
    def current_price(self) -> Decimal:
        amounts = () if self.highest_bid is None else (self.highest_bid,)
        return current_price(self.starting_price, amounts)


@dataclass(frozen=True)
class BidContext:
    """Listing state observed inside the atomic bid-insert unit."""

    listing_id: int
    starting_price: Decimal
    end_time: datetime
    active: bool
    amounts: tuple[Decimal, ...] = ()

    @property
    def current_price(self) -> Decimal:
        return current_price(self.starting_price, self.amounts)


@dataclass(frozen=True)
class PlacedBid:
    bid: Bid
    listing: Listing


BidGuard = Callable[[BidContext], None]


def sort_bids(bids: list[Bid]) -> list[Bid]:
    """Order bids for display: amount, then creation time, then id, all descending."""
    return sorted(bids, key=lambda bid: (bid.amount, bid.created_at, bid.id), reverse=True)
