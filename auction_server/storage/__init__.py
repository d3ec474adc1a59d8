"""Storage backend factory."""

from __future__ import annotations

from typing import Any, Optional, Protocol

from ..bidding.models import Bid, BidGuard, Category, Listing, ListingDraft, NewBid
from ..config import ServerConfig
from .in_memory import InMemoryStorage
from .postgres import PostgresStorage
from .redis import RedisStorage


class AuctionStorage(Protocol):
    async def get_listing(self, listing_id: int, *, with_bids: bool = True) -> Optional[Listing]: ...

    async def list_listings(self, *, active_only: bool = False) -> list[Listing]: ...

    async def create_listing(self, draft: ListingDraft) -> Listing: ...

    async def update_listing(self, listing_id: int, updates: dict[str, Any]) -> Listing: ...

    async def delete_listing(self, listing_id: int) -> None: ...

    async def list_categories(self) -> list[Category]: ...

    async def create_category(self, name: str) -> Category: ...

    async def insert_bid(self, listing_id: int, bid: NewBid, guard: BidGuard) -> Bid:
        """Run guard against the listing state and insert bid as one atomic unit.

        Raises NotFoundError when the listing is missing; any exception raised by
        guard aborts the insert and is propagated unchanged.
        """
        ...

    async def close(self) -> None: ...


def build_storage(config: ServerConfig) -> AuctionStorage:
    backend = config.storage.backend
    options = dict(config.storage.options)
    if backend == "in_memory":
        return InMemoryStorage()
    if backend == "postgres":
        return PostgresStorage(**options)
    if backend == "redis":
        return RedisStorage(**options)
    raise ValueError(f"unknown storage backend {backend}")
