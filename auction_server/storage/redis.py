"""Redis storage backend using redis-py asyncio client."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Optional

import orjson
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from ..bidding.errors import NotFoundError, StorageError, ValidationError
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


class RedisStorage:
    def __init__(self, *, url: str, prefix: str = "auction") -> None:
        if not url:
            raise ValueError("redis url missing")
        self._redis = aioredis.from_url(url)
        self._prefix = prefix.rstrip(":")

    def _key(self, *parts: Any) -> str:
        return ":".join([self._prefix, *(str(part) for part in parts)])

    def _listing_key(self, listing_id: int) -> str:
        return self._key("listing", listing_id)

    def _bids_key(self, listing_id: int) -> str:
        return self._key("listing", listing_id, "bids")

    @asynccontextmanager
    async def _errors(self) -> AsyncIterator[None]:
        try:
            yield
        except (RedisError, OSError) as exc:
            raise StorageError(f"redis operation failed: {exc}") from exc

    # Encoding ---------------------------------------------------------------

    def _encode_listing(self, listing: Listing) -> bytes:
        return orjson.dumps(
            {
                "id": listing.id,
                "title": listing.title,
                "description": listing.description,
                "starting_price": str(listing.starting_price),
                "end_time": listing.end_time.isoformat(),
                "active": listing.active,
                "images": list(listing.images),
                "category_id": listing.category_id,
                "created_at": listing.created_at.isoformat() if listing.created_at else None,
            }
        )

    def _decode_listing(self, raw: bytes) -> Listing:
        data = orjson.loads(raw)
        created_at = data.get("created_at")
        return Listing(
            id=data["id"],
            title=data["title"],
            description=data["description"],
            starting_price=Decimal(data["starting_price"]),
            end_time=datetime.fromisoformat(data["end_time"]),
            active=data["active"],
            images=list(data.get("images") or []),
            category_id=data.get("category_id"),
            created_at=datetime.fromisoformat(created_at) if created_at else None,
        )

    def _encode_bid(self, bid: Bid) -> bytes:
        return orjson.dumps(
            {
                "id": bid.id,
                "listing_id": bid.listing_id,
                "first_name": bid.first_name,
                "last_name": bid.last_name,
                "phone_number": bid.phone_number,
                "amount": str(bid.amount),
                "is_anonymous": bid.is_anonymous,
                "created_at": bid.created_at.isoformat(),
            }
        )

    def _decode_bid(self, raw: bytes) -> Bid:
        data = orjson.loads(raw)
        return Bid(
            id=data["id"],
            listing_id=data["listing_id"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            phone_number=data["phone_number"],
            amount=Decimal(data["amount"]),
            is_anonymous=data["is_anonymous"],
            created_at=datetime.fromisoformat(data["created_at"]),
        )

    def _decode_category(self, raw: bytes) -> Category:
        data = orjson.loads(raw)
        return Category(
            id=data["id"],
            name=data["name"],
            created_at=datetime.fromisoformat(data["created_at"]),
        )

    async def _hydrate(self, listing: Listing, *, with_bids: bool) -> Listing:
        bids = [self._decode_bid(raw) for raw in await self._redis.lrange(self._bids_key(listing.id), 0, -1)]
        listing.highest_bid = highest_bid(bid.amount for bid in bids)
        listing.bids_count = len(bids)
        listing.bids = sort_bids(bids) if with_bids else []
        if listing.category_id is not None:
            raw = await self._redis.hget(self._key("categories"), str(listing.category_id))
            listing.category = self._decode_category(raw).name if raw else None
        return listing

    async def _assert_category(self, category_id: Optional[int]) -> None:
        if category_id is None:
            return
        if not await self._redis.hexists(self._key("categories"), str(category_id)):
            raise NotFoundError(f"category {category_id} not found")

    # Listings ---------------------------------------------------------------

    async def get_listing(self, listing_id: int, *, with_bids: bool = True) -> Optional[Listing]:
        async with self._errors():
            raw = await self._redis.get(self._listing_key(listing_id))
            if raw is None:
                return None
            return await self._hydrate(self._decode_listing(raw), with_bids=with_bids)

    async def list_listings(self, *, active_only: bool = False) -> list[Listing]:
        async with self._errors():
            ids = sorted(int(member) for member in await self._redis.smembers(self._key("listings")))
            if not ids:
                return []
            values = await self._redis.mget([self._listing_key(listing_id) for listing_id in ids])
            listings = []
            for raw in values:
                if not raw:
                    continue
                listing = self._decode_listing(raw)
                if active_only and not listing.active:
                    continue
                listings.append(await self._hydrate(listing, with_bids=False))
        return sorted(listings, key=lambda listing: (listing.created_at, listing.id), reverse=True)

    async def create_listing(self, draft: ListingDraft) -> Listing:
        async with self._errors():
            await self._assert_category(draft.category_id)
            listing = Listing(
                id=await self._redis.incr(self._key("seq", "listing")),
                title=draft.title,
                description=draft.description,
                starting_price=draft.starting_price,
                end_time=draft.end_time,
                active=draft.active,
                images=list(draft.images),
                category_id=draft.category_id,
                created_at=datetime.now(timezone.utc),
            )
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(self._listing_key(listing.id), self._encode_listing(listing))
                pipe.sadd(self._key("listings"), listing.id)
                await pipe.execute()
            return await self._hydrate(listing, with_bids=True)

    async def update_listing(self, listing_id: int, updates: dict[str, Any]) -> Listing:
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"cannot update {', '.join(sorted(unknown))}")
        listing_key = self._listing_key(listing_id)

        async def apply(pipe) -> Listing:
            raw = await pipe.get(listing_key)
            if raw is None:
                raise NotFoundError(f"listing {listing_id} not found")
            listing = self._decode_listing(raw)
            for field_name, value in updates.items():
                setattr(listing, field_name, list(value) if field_name == "images" else value)
            pipe.multi()
            pipe.set(listing_key, self._encode_listing(listing))
            return listing

        async with self._errors():
            if "category_id" in updates:
                await self._assert_category(updates["category_id"])
            listing = await self._redis.transaction(apply, listing_key, value_from_callable=True)
            return await self._hydrate(listing, with_bids=True)

    async def delete_listing(self, listing_id: int) -> None:
        listing_key = self._listing_key(listing_id)
        bids_key = self._bids_key(listing_id)

        async def apply(pipe) -> None:
            if not await pipe.exists(listing_key):
                raise NotFoundError(f"listing {listing_id} not found")
            if await pipe.llen(bids_key):
                raise ValidationError("listing has bids; deactivate it instead")
            pipe.multi()
            pipe.delete(listing_key)
            pipe.srem(self._key("listings"), listing_id)

        async with self._errors():
            await self._redis.transaction(apply, listing_key, bids_key)

    # Categories -------------------------------------------------------------

    async def list_categories(self) -> list[Category]:
        async with self._errors():
            values = await self._redis.hvals(self._key("categories"))
        return sorted((self._decode_category(raw) for raw in values), key=lambda category: category.name)

    async def create_category(self, name: str) -> Category:
        async with self._errors():
            category_id = await self._redis.incr(self._key("seq", "category"))
            if not await self._redis.hsetnx(self._key("category_names"), name, category_id):
                raise ValidationError(f"category {name} already exists")
            category = Category(id=category_id, name=name, created_at=datetime.now(timezone.utc))
            payload = {"id": category.id, "name": category.name, "created_at": category.created_at.isoformat()}
            await self._redis.hset(self._key("categories"), str(category.id), orjson.dumps(payload))
        return category

    # Bids -------------------------------------------------------------------

    async def insert_bid(self, listing_id: int, bid: NewBid, guard: BidGuard) -> Bid:
        listing_key = self._listing_key(listing_id)
        bids_key = self._bids_key(listing_id)

        async def attempt(pipe) -> Bid:
            # WATCH is active: a concurrent write to either key aborts EXEC and
            # redis-py re-runs this read-validate step against the new state.
            raw = await pipe.get(listing_key)
            if raw is None:
                raise NotFoundError(f"listing {listing_id} not found")
            listing = self._decode_listing(raw)
            existing = [self._decode_bid(item) for item in await pipe.lrange(bids_key, 0, -1)]
            guard(
                BidContext(
                    listing_id=listing_id,
                    starting_price=listing.starting_price,
                    end_time=listing.end_time,
                    active=listing.active,
                    amounts=tuple(item.amount for item in existing),
                )
            )
            stored = Bid(
                id=await pipe.incr(self._key("seq", "bid")),
                listing_id=listing_id,
                first_name=bid.first_name,
                last_name=bid.last_name,
                phone_number=bid.phone_number,
                amount=bid.amount,
                is_anonymous=bid.is_anonymous,
                created_at=datetime.now(timezone.utc),
            )
            pipe.multi()
            pipe.rpush(bids_key, self._encode_bid(stored))
            return stored

        async with self._errors():
            return await self._redis.transaction(
                attempt, listing_key, bids_key, value_from_callable=True
            )

    async def close(self) -> None:
        await self._redis.aclose()
