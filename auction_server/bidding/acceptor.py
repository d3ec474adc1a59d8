"""Bid acceptance: validate a bid and commit it atomically against its listing."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from ..storage import AuctionStorage
from .errors import BidTooLowError, NotFoundError, ValidationError
from .models import BidContext, BidGuard, NewBid, PlacedBid

logger = logging.getLogger(__name__)

AMOUNT_QUANTUM = Decimal("0.01")
MAX_AMOUNT = Decimal("10000000000")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_amount(value: Any) -> Decimal:
    """Convert a submitted amount (number or numeric string) into an exact Decimal."""
    if _is_blank(value):
        raise ValidationError("missing required fields")
    if isinstance(value, bool):
        raise ValidationError("invalid amount")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationError("invalid amount") from exc
    if not amount.is_finite() or amount <= 0 or amount >= MAX_AMOUNT:
        raise ValidationError("invalid amount")
    if amount != amount.quantize(AMOUNT_QUANTUM):
        raise ValidationError("amount supports at most two decimal places")
    return amount


def split_bidder_name(bidder_name: Any) -> tuple[str, str]:
    parts = str(bidder_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


@dataclass
class BidAcceptor:
    storage: AuctionStorage
    enforce_end_time: bool = False
    clock: Callable[[], datetime] = field(default=_utcnow)

    async def submit_bid(self, listing_id: int, payload: dict[str, Any]) -> PlacedBid:
        """Adapt an inbound bid payload (bidderName, phoneNumber, amount, isAnonymous)."""
        first_name, last_name = split_bidder_name(payload.get("bidderName"))
        phone_number = payload.get("phoneNumber")
        return await self.place_bid(
            listing_id,
            first_name=first_name,
            last_name=last_name,
            phone_number=str(phone_number).strip() if phone_number is not None else "",
            amount=payload.get("amount"),
            is_anonymous=bool(payload.get("isAnonymous", False)),
        )

    async def place_bid(
        self,
        listing_id: int,
        *,
        first_name: str,
        last_name: str,
        phone_number: str,
        amount: Any,
        is_anonymous: bool = False,
    ) -> PlacedBid:
        if _is_blank(first_name) or _is_blank(phone_number) or _is_blank(amount):
            raise ValidationError("missing required fields")
        bid = NewBid(
            first_name=first_name.strip(),
            last_name=(last_name or "").strip(),
            phone_number=phone_number.strip(),
            amount=parse_amount(amount),
            is_anonymous=is_anonymous,
        )
        try:
            stored = await self.storage.insert_bid(listing_id, bid, self._guard(bid.amount))
        except BidTooLowError as exc:
            logger.info(
                "bid rejected on listing %s: amount=%s current_price=%s",
                listing_id,
                bid.amount,
                exc.current_price,
            )
            raise
        logger.info("bid %s accepted on listing %s: amount=%s", stored.id, listing_id, stored.amount)
        listing = await self.storage.get_listing(listing_id)
        if listing is None:
            raise NotFoundError(f"listing {listing_id} not found")
        return PlacedBid(bid=stored, listing=listing)

    def _guard(self, amount: Decimal) -> BidGuard:
        def check(context: BidContext) -> None:
            if self.enforce_end_time and context.end_time <= self.clock():
                raise ValidationError("auction has ended")
            price = context.current_price
            if amount <= price:
                raise BidTooLowError(price)

        return check
