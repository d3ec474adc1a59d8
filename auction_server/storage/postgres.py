"""Postgres storage backend leveraging asyncpg."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import asyncpg

from ..bidding.errors import NotFoundError, StorageError, ValidationError
from ..bidding.models import (
    Bid,
    BidContext,
    BidGuard,
    Category,
    Listing,
    ListingDraft,
    NewBid,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS categories (
    id SERIAL PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE TABLE IF NOT EXISTS products (
    id SERIAL PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    starting_price NUMERIC(12, 2) NOT NULL,
    end_time TIMESTAMPTZ NOT NULL,
    category_id INTEGER REFERENCES categories(id) ON DELETE SET NULL,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE TABLE IF NOT EXISTS product_images (
    id SERIAL PRIMARY KEY,
    product_id INTEGER NOT NULL REFERENCES products(id) ON DELETE CASCADE,
    image_url TEXT NOT NULL,
    display_order INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS bids (
    id SERIAL PRIMARY KEY,
    product_id INTEGER NOT NULL REFERENCES products(id) ON DELETE RESTRICT,
    bidder_firstname TEXT NOT NULL,
    bidder_lastname TEXT NOT NULL DEFAULT '',
    phone_number TEXT NOT NULL,
    amount NUMERIC(12, 2) NOT NULL,
    is_anonymous BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
);
CREATE INDEX IF NOT EXISTS idx_bids_product_amount ON bids (product_id, amount DESC);
CREATE INDEX IF NOT EXISTS idx_product_images_order ON product_images (product_id, display_order);
"""

_LISTING_SELECT = """
    SELECT
        p.id, p.title, p.description, p.starting_price, p.end_time, p.active,
        p.category_id, p.created_at, c.name AS category_name,
        (SELECT MAX(amount) FROM bids WHERE product_id = p.id) AS highest_bid,
        (SELECT COUNT(*) FROM bids WHERE product_id = p.id) AS bids_count
    FROM products p
    LEFT JOIN categories c ON p.category_id = c.id
"""

_BID_COLUMNS = (
    "id, product_id, bidder_firstname, bidder_lastname, phone_number, "
    "amount, is_anonymous, created_at"
)

_UPDATABLE_COLUMNS = {
    "title": "title",
    "description": "description",
    "category_id": "category_id",
    "active": "active",
}

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class PostgresStorage:
    def __init__(self, *, dsn: str | None = None, **connect_kwargs: Any) -> None:
        if not dsn and not connect_kwargs:
            raise ValueError("postgres connection details missing")
        self._dsn = dsn
        self._connect_kwargs = connect_kwargs
        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()

    async def _ensure_pool(self) -> asyncpg.Pool:
        async with self._pool_lock:
            if self._pool is None:
                pool = await asyncpg.create_pool(dsn=self._dsn, **self._connect_kwargs)
                async with pool.acquire() as conn:
                    await conn.execute(_SCHEMA)
                self._pool = pool
                logger.info("postgres pool ready")
        return self._pool

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a pooled connection, translating driver failures into StorageError."""
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                yield conn
        except _DRIVER_ERRORS as exc:
            raise StorageError(f"postgres operation failed: {exc}") from exc

    def _listing_from_row(self, row: asyncpg.Record, images: list[str]) -> Listing:
        return Listing(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            starting_price=row["starting_price"],
            end_time=row["end_time"],
            active=row["active"],
            images=images,
            category_id=row["category_id"],
            category=row["category_name"],
            created_at=row["created_at"],
            highest_bid=row["highest_bid"],
            bids_count=row["bids_count"],
        )

    def _bid_from_row(self, row: asyncpg.Record) -> Bid:
        return Bid(
            id=row["id"],
            listing_id=row["product_id"],
            first_name=row["bidder_firstname"],
            last_name=row["bidder_lastname"],
            phone_number=row["phone_number"],
            amount=row["amount"],
            is_anonymous=row["is_anonymous"],
            created_at=row["created_at"],
        )

    async def _images_for(self, conn: asyncpg.Connection, listing_ids: list[int]) -> dict[int, list[str]]:
        rows = await conn.fetch(
            """SELECT product_id, image_url FROM product_images
               WHERE product_id = ANY($1::int[])
               ORDER BY product_id, display_order""",
            listing_ids,
        )
        images: dict[int, list[str]] = {listing_id: [] for listing_id in listing_ids}
        for row in rows:
            images[row["product_id"]].append(row["image_url"])
        return images

    async def _replace_images(self, conn: asyncpg.Connection, listing_id: int, images: list[str]) -> None:
        await conn.execute("DELETE FROM product_images WHERE product_id = $1", listing_id)
        if images:
            await conn.executemany(
                """INSERT INTO product_images (product_id, image_url, display_order)
                   VALUES ($1, $2, $3)""",
                [(listing_id, url, index) for index, url in enumerate(images)],
            )

    async def get_listing(self, listing_id: int, *, with_bids: bool = True) -> Optional[Listing]:
        async with self._connection() as conn:
            async with conn.transaction(isolation="repeatable_read", readonly=True):
                row = await conn.fetchrow(f"{_LISTING_SELECT} WHERE p.id = $1", listing_id)
                if row is None:
                    return None
                images = await self._images_for(conn, [listing_id])
                listing = self._listing_from_row(row, images[listing_id])
                if with_bids:
                    bid_rows = await conn.fetch(
                        f"""SELECT {_BID_COLUMNS} FROM bids WHERE product_id = $1
                            ORDER BY amount DESC, created_at DESC, id DESC""",
                        listing_id,
                    )
                    listing.bids = [self._bid_from_row(bid_row) for bid_row in bid_rows]
        return listing

    async def list_listings(self, *, active_only: bool = False) -> list[Listing]:
        where = "WHERE p.active = TRUE" if active_only else ""
        async with self._connection() as conn:
            async with conn.transaction(isolation="repeatable_read", readonly=True):
                rows = await conn.fetch(f"{_LISTING_SELECT} {where} ORDER BY p.created_at DESC, p.id DESC")
                images = await self._images_for(conn, [row["id"] for row in rows])
        return [self._listing_from_row(row, images[row["id"]]) for row in rows]

    async def create_listing(self, draft: ListingDraft) -> Listing:
        async with self._connection() as conn:
            async with conn.transaction():
                try:
                    listing_id = await conn.fetchval(
                        """INSERT INTO products (title, description, starting_price, end_time, category_id, active)
                           VALUES ($1, $2, $3, $4, $5, $6) RETURNING id""",
                        draft.title,
                        draft.description,
                        draft.starting_price,
                        draft.end_time,
                        draft.category_id,
                        draft.active,
                    )
                except asyncpg.ForeignKeyViolationError as exc:
                    raise NotFoundError(f"category {draft.category_id} not found") from exc
                await self._replace_images(conn, listing_id, list(draft.images))
        listing = await self.get_listing(listing_id)
        if listing is None:
            raise StorageError(f"listing {listing_id} vanished after insert")
        return listing

    async def update_listing(self, listing_id: int, updates: dict[str, Any]) -> Listing:
        unknown = set(updates) - set(_UPDATABLE_COLUMNS) - {"images"}
        if unknown:
            raise ValidationError(f"cannot update {', '.join(sorted(unknown))}")
        assignments = ["updated_at = NOW()"]
        values: list[Any] = [listing_id]
        for key, column in _UPDATABLE_COLUMNS.items():
            if key in updates:
                values.append(updates[key])
                assignments.append(f"{column} = ${len(values)}")
        async with self._connection() as conn:
            async with conn.transaction():
                try:
                    updated = await conn.fetchval(
                        f"UPDATE products SET {', '.join(assignments)} WHERE id = $1 RETURNING id",
                        *values,
                    )
                except asyncpg.ForeignKeyViolationError as exc:
                    raise NotFoundError(f"category {updates.get('category_id')} not found") from exc
                if updated is None:
                    raise NotFoundError(f"listing {listing_id} not found")
                if "images" in updates:
                    await self._replace_images(conn, listing_id, list(updates["images"]))
        listing = await self.get_listing(listing_id)
        if listing is None:
            raise NotFoundError(f"listing {listing_id} not found")
        return listing

    async def delete_listing(self, listing_id: int) -> None:
        async with self._connection() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT id FROM products WHERE id = $1 FOR UPDATE", listing_id
                )
                if row is None:
                    raise NotFoundError(f"listing {listing_id} not found")
                has_bids = await conn.fetchval(
                    "SELECT EXISTS (SELECT 1 FROM bids WHERE product_id = $1)", listing_id
                )
                if has_bids:
                    raise ValidationError("listing has bids; deactivate it instead")
                await conn.execute("DELETE FROM products WHERE id = $1", listing_id)

    async def list_categories(self) -> list[Category]:
        async with self._connection() as conn:
            rows = await conn.fetch("SELECT id, name, created_at FROM categories ORDER BY name")
        return [Category(id=row["id"], name=row["name"], created_at=row["created_at"]) for row in rows]

    async def create_category(self, name: str) -> Category:
        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    "INSERT INTO categories (name) VALUES ($1) RETURNING id, name, created_at",
                    name,
                )
            except asyncpg.UniqueViolationError as exc:
                raise ValidationError(f"category {name} already exists") from exc
        return Category(id=row["id"], name=row["name"], created_at=row["created_at"])

    async def insert_bid(self, listing_id: int, bid: NewBid, guard: BidGuard) -> Bid:
        async with self._connection() as conn:
            async with conn.transaction():
                # The row lock serializes concurrent bids on this listing until commit.
                row = await conn.fetchrow(
                    """SELECT id, starting_price, end_time, active FROM products
                       WHERE id = $1 FOR UPDATE""",
                    listing_id,
                )
                if row is None:
                    raise NotFoundError(f"listing {listing_id} not found")
                highest = await conn.fetchval(
                    "SELECT MAX(amount) FROM bids WHERE product_id = $1", listing_id
                )
                guard(
                    BidContext(
                        listing_id=listing_id,
                        starting_price=row["starting_price"],
                        end_time=row["end_time"],
                        active=row["active"],
                        amounts=() if highest is None else (highest,),
                    )
                )
                # clock_timestamp(), not NOW(): a bid that waited on the row lock
                # must not be stamped earlier than the bid it queued behind.
                inserted = await conn.fetchrow(
                    f"""INSERT INTO bids (product_id, bidder_firstname, bidder_lastname,
                                          phone_number, amount, is_anonymous, created_at)
                        VALUES ($1, $2, $3, $4, $5, $6, clock_timestamp())
                        RETURNING {_BID_COLUMNS}""",
                    listing_id,
                    bid.first_name,
                    bid.last_name,
                    bid.phone_number,
                    bid.amount,
                    bid.is_anonymous,
                )
        return self._bid_from_row(inserted)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
