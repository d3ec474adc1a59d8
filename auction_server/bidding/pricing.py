"""Current-price derivation shared by bid validation and listing reads."""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional


def highest_bid(amounts: Iterable[Decimal]) -> Optional[Decimal]:
    return max(amounts, default=None)


def current_price(starting_price: Decimal, amounts: Iterable[Decimal]) -> Decimal:
    """Return the highest bid amount, or the starting price when there are no bids."""
    highest = highest_bid(amounts)
    if highest is None:
        return starting_price
    return highest
