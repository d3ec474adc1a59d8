"""Listing reads and administration on top of the storage backend."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..bidding.acceptor import parse_amount
from ..bidding.errors import NotFoundError, ValidationError
from ..bidding.models import Category, Listing, ListingDraft
from ..storage import AuctionStorage
from .timestamps import parse_timestamp

logger = logging.getLogger(__name__)

_FIXED_FIELDS = ("startingPrice", "endTime")


def _required_text(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("missing required fields")
    return value.strip()


def _category_id(value: Any) -> int | None:
    if value in (None, "", 0):
        return None
    if isinstance(value, bool):
        raise ValidationError("invalid category id")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("invalid category id") from exc


def _images(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise ValidationError("images must be a list of URLs")
    return tuple(str(url).strip() for url in value if str(url).strip())


@dataclass
class CatalogService:
    storage: AuctionStorage

    async def list_listings(self, *, active_only: bool = True) -> list[Listing]:
        return await self.storage.list_listings(active_only=active_only)

    async def get_listing(self, listing_id: int) -> Listing:
        listing = await self.storage.get_listing(listing_id)
        if listing is None:
            raise NotFoundError(f"listing {listing_id} not found")
        return listing

    async def create_listing(self, payload: dict[str, Any]) -> Listing:
        title = _required_text(payload, "title")
        description = _required_text(payload, "description")
        if payload.get("startingPrice") is None or payload.get("endTime") is None:
            raise ValidationError("missing required fields")
        try:
            starting_price = parse_amount(payload["startingPrice"])
        except ValidationError as exc:
            raise ValidationError(f"invalid starting price: {exc}") from exc
        draft = ListingDraft(
            title=title,
            description=description,
            starting_price=starting_price,
            end_time=parse_timestamp(payload["endTime"]),
            category_id=_category_id(payload.get("categoryId")),
            images=_images(payload.get("images")),
            active=bool(payload.get("active", True)),
        )
        listing = await self.storage.create_listing(draft)
        logger.info("listing %s created: %r starting at %s", listing.id, listing.title, listing.starting_price)
        return listing

    async def update_listing(self, listing_id: int, payload: dict[str, Any]) -> Listing:
        fixed = [key for key in _FIXED_FIELDS if key in payload]
        if fixed:
            raise ValidationError("starting price and end time are fixed at creation")
        updates: dict[str, Any] = {}
        for key in ("title", "description"):
            if key in payload:
                updates[key] = _required_text(payload, key)
        if "categoryId" in payload:
            updates["category_id"] = _category_id(payload["categoryId"])
        if "images" in payload:
            updates["images"] = _images(payload["images"])
        if "active" in payload:
            updates["active"] = bool(payload["active"])
        listing = await self.storage.update_listing(listing_id, updates)
        logger.info("listing %s updated: %s", listing_id, ", ".join(sorted(updates)) or "no changes")
        return listing

    async def delete_listing(self, listing_id: int) -> None:
        await self.storage.delete_listing(listing_id)
        logger.info("listing %s deleted", listing_id)

    async def list_categories(self) -> list[Category]:
        return await self.storage.list_categories()

    async def create_category(self, name: Any) -> Category:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("missing required fields")
        return await self.storage.create_category(name.strip())
