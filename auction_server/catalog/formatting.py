"""Response shaping for listings, bids, and categories."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from ..bidding.models import Bid, Category, Listing
from ..config import DisplayConfig
from .timestamps import to_epoch_ms


def format_bid(bid: Bid, display: DisplayConfig, *, mask_anonymous: bool) -> dict[str, Any]:
    masked = mask_anonymous and bid.is_anonymous
    return {
        "id": bid.id,
        "bidderName": display.anonymous_label if masked else bid.bidder_name,
        "phoneNumber": "" if masked else bid.phone_number,
        "amount": float(bid.amount),
        "isAnonymous": bid.is_anonymous,
        "timestamp": to_epoch_ms(bid.created_at),
    }


def format_listing(
    listing: Listing,
    display: DisplayConfig,
    *,
    mask_anonymous: bool = True,
    current_price: Optional[Decimal] = None,
) -> dict[str, Any]:
    price = listing.current_price if current_price is None else current_price
    return {
        "id": listing.id,
        "title": listing.title,
        "description": listing.description,
        "images": list(listing.images),
        "startingPrice": float(listing.starting_price),
        "currentPrice": float(price),
        "endTime": to_epoch_ms(listing.end_time),
        "bids": [format_bid(bid, display, mask_anonymous=mask_anonymous) for bid in listing.bids],
        "bidsCount": listing.bids_count,
        "category": listing.category or display.default_category,
        "categoryId": listing.category_id,
        "active": listing.active,
    }


def format_category(category: Category) -> dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "created_at": category.created_at.isoformat(),
    }
