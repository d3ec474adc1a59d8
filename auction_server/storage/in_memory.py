"""In-memory storage backend for listings, categories, and bids."""

from __future__ import annotations

import asyncio
import itertools
from collections import defaultdict
from copy import deepcopy
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from ..bidding.errors import NotFoundError, ValidationError
from ..bidding.models import (
    Bid,
    BidContext,
    BidGuard,
    Category,
    Listing,
    ListingDraft,
    NewBid,
    sort_bids,
)
from ..bidding.pricing import highest_bid

_UPDATABLE_FIELDS = {"title", "description", "category_id", "images", "active"}


class InMemoryStorage:
    def __init__(self) -> None:
        self._listings: dict[int, Listing] = {}
        self._bids: dict[int, list[Bid]] = defaultdict(list)
        self._categories: dict[int, Category] = {}
        self._listing_ids = itertools.count(1)
        self._bid_ids = itertools.count(1)
        self._category_ids = itertools.count(1)
        self._lock = asyncio.Lock()
        # One lock per existing listing serializes read-validate-insert of its bids.
        self._bid_locks: dict[int, asyncio.Lock] = {}

    def _snapshot(self, listing: Listing, *, with_bids: bool) -> Listing:
        bids = self._bids.get(listing.id, [])
        category = self._categories.get(listing.category_id) if listing.category_id else None
        return replace(
            deepcopy(listing),
            category=category.name if category else None,
            highest_bid=highest_bid(bid.amount for bid in bids),
            bids_count=len(bids),
            bids=sort_bids(bids) if with_bids else [],
        )

    def _assert_category(self, category_id: Optional[int]) -> None:
        if category_id is not None and category_id not in self._categories:
            raise NotFoundError(f"category {category_id} not found")

    async def get_listing(self, listing_id: int, *, with_bids: bool = True) -> Optional[Listing]:
        async with self._lock:
            listing = self._listings.get(listing_id)
            if listing is None:
                return None
            return self._snapshot(listing, with_bids=with_bids)

    async def list_listings(self, *, active_only: bool = False) -> list[Listing]:
        async with self._lock:
            listings = [
                self._snapshot(listing, with_bids=False)
                for listing in self._listings.values()
                if listing.active or not active_only
            ]
        return sorted(listings, key=lambda listing: (listing.created_at, listing.id), reverse=True)

    async def create_listing(self, draft: ListingDraft) -> Listing:
        async with self._lock:
            self._assert_category(draft.category_id)
            listing = Listing(
                id=next(self._listing_ids),
                title=draft.title,
                description=draft.description,
                starting_price=draft.starting_price,
                end_time=draft.end_time,
                active=draft.active,
                images=list(draft.images),
                category_id=draft.category_id,
                created_at=datetime.now(timezone.utc),
            )
            self._listings[listing.id] = listing
            self._bid_locks[listing.id] = asyncio.Lock()
            return self._snapshot(listing, with_bids=True)

    async def update_listing(self, listing_id: int, updates: dict[str, Any]) -> Listing:
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"cannot update {', '.join(sorted(unknown))}")
        async with self._lock:
            listing = self._listings.get(listing_id)
            if listing is None:
                raise NotFoundError(f"listing {listing_id} not found")
            if "category_id" in updates:
                self._assert_category(updates["category_id"])
            changes = dict(updates)
            if "images" in changes:
                changes["images"] = list(changes["images"])
            listing = replace(listing, **changes)
            self._listings[listing_id] = listing
            return self._snapshot(listing, with_bids=True)

    async def delete_listing(self, listing_id: int) -> None:
        bid_lock = self._bid_locks.get(listing_id)
        if bid_lock is None:
            raise NotFoundError(f"listing {listing_id} not found")
        async with bid_lock:
            async with self._lock:
                if listing_id not in self._listings:
                    raise NotFoundError(f"listing {listing_id} not found")
                if self._bids.get(listing_id):
                    raise ValidationError("listing has bids; deactivate it instead")
                del self._listings[listing_id]
                self._bids.pop(listing_id, None)
                self._bid_locks.pop(listing_id, None)

    async def list_categories(self) -> list[Category]:
        async with self._lock:
            return sorted(self._categories.values(), key=lambda category: category.name)

    async def create_category(self, name: str) -> Category:
        async with self._lock:
            if any(category.name == name for category in self._categories.values()):
                raise ValidationError(f"category {name} already exists")
            category = Category(
                id=next(self._category_ids),
                name=name,
                created_at=datetime.now(timezone.utc),
            )
            self._categories[category.id] = category
            return category

    async def _bid_context(self, listing_id: int) -> BidContext:
        listing = self._listings.get(listing_id)
        if listing is None:
            raise NotFoundError(f"listing {listing_id} not found")
        return BidContext(
            listing_id=listing_id,
            starting_price=listing.starting_price,
            end_time=listing.end_time,
            active=listing.active,
            amounts=tuple(existing.amount for existing in self._bids.get(listing_id, [])),
        )

    async def insert_bid(self, listing_id: int, bid: NewBid, guard: BidGuard) -> Bid:
        bid_lock = self._bid_locks.get(listing_id)
        if bid_lock is None:
            raise NotFoundError(f"listing {listing_id} not found")
        async with bid_lock:
            guard(await self._bid_context(listing_id))
            stored = Bid(
                id=next(self._bid_ids),
                listing_id=listing_id,
                first_name=bid.first_name,
                last_name=bid.last_name,
                phone_number=bid.phone_number,
                amount=bid.amount,
                is_anonymous=bid.is_anonymous,
                created_at=datetime.now(timezone.utc),
            )
            self._bids[listing_id].append(stored)
            return stored

    async def close(self) -> None:
        return None
