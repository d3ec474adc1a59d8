"""Unit tests for the bid acceptor against the in-memory backend."""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from auction_server.bidding.acceptor import BidAcceptor, parse_amount, split_bidder_name
from auction_server.bidding.errors import (
    BidTooLowError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from auction_server.bidding.models import ListingDraft
from auction_server.storage.in_memory import InMemoryStorage


class YieldingStorage(InMemoryStorage):
    """In-memory storage that hands control to the event loop after reading a listing's bids."""

    async def _bid_context(self, listing_id):
        context = await super()._bid_context(listing_id)
        await asyncio.sleep(0)
        return context


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def acceptor(storage):
    return BidAcceptor(storage)


@pytest.fixture
def yielding_storage():
    return YieldingStorage()


async def create_listing(storage, starting_price="100", end_time=None):
    draft = ListingDraft(
        title="Montre ancienne",
        description="Montre de gousset en argent",
        starting_price=Decimal(starting_price),
        end_time=end_time or datetime.now(timezone.utc) + timedelta(days=7),
    )
    return await storage.create_listing(draft)


async def bid(acceptor, listing_id, amount, **overrides):
    fields = {
        "first_name": "Jeanne",
        "last_name": "Martin",
        "phone_number": "0612345678",
        "amount": amount,
        "is_anonymous": False,
    }
    fields.update(overrides)
    return await acceptor.place_bid(listing_id, **fields)


class TestBidScenario:
    """Listing starts at 100: 100 rejected, 101 accepted, 101 rejected, 150 accepted."""

    @pytest.mark.asyncio
    async def test_full_scenario(self, storage, acceptor):
        """Test that each bid must strictly exceed the price left by the previous one."""
        listing = await create_listing(storage, "100")
        assert listing.current_price == Decimal("100")

        with pytest.raises(BidTooLowError) as excinfo:
            await bid(acceptor, listing.id, 100)
        assert excinfo.value.current_price == Decimal("100")

        placed = await bid(acceptor, listing.id, 101)
        assert placed.bid.amount == Decimal("101")
        assert placed.listing.current_price == Decimal("101")

        with pytest.raises(BidTooLowError):
            await bid(acceptor, listing.id, 101)

        placed = await bid(acceptor, listing.id, 150)
        assert placed.listing.current_price == Decimal("150")
        assert [item.amount for item in placed.listing.bids] == [Decimal("150"), Decimal("101")]
        assert placed.listing.bids_count == 2

    @pytest.mark.asyncio
    async def test_one_cent_above_price_is_accepted(self, storage, acceptor):
        """Test that the smallest representable increment is enough."""
        listing = await create_listing(storage, "100")
        placed = await bid(acceptor, listing.id, "100.01")
        assert placed.listing.current_price == Decimal("100.01")

    @pytest.mark.asyncio
    async def test_rejected_bid_leaves_listing_unchanged(self, storage, acceptor):
        """Test that a rejected bid leaves history and price untouched."""
        listing = await create_listing(storage, "100")
        await bid(acceptor, listing.id, 120)
        before = await storage.get_listing(listing.id)

        with pytest.raises(BidTooLowError):
            await bid(acceptor, listing.id, 110)

        after = await storage.get_listing(listing.id)
        assert after.bids == before.bids
        assert after.current_price == before.current_price == Decimal("120")

    @pytest.mark.asyncio
    async def test_repeated_reads_return_same_price(self, storage, acceptor):
        """Test that reading a listing twice without bids in between gives one price."""
        listing = await create_listing(storage, "100")
        await bid(acceptor, listing.id, 130)
        first = await storage.get_listing(listing.id)
        second = await storage.get_listing(listing.id)
        assert first.current_price == second.current_price == Decimal("130")

    @pytest.mark.asyncio
    async def test_starting_price_is_not_rewritten(self, storage, acceptor):
        """Test that accepting a bid keeps the original starting price."""
        listing = await create_listing(storage, "100")
        placed = await bid(acceptor, listing.id, 140)
        assert placed.listing.starting_price == Decimal("100")


class TestBidValidation:
    """Test rejection of bids before anything is written."""

    @pytest.mark.asyncio
    async def test_unknown_listing_raises_not_found(self, storage, acceptor):
        """Test that bidding on listing 9999 fails and records nothing."""
        await create_listing(storage, "100")

        with pytest.raises(NotFoundError):
            await bid(acceptor, 9999, 500)

        listings = await storage.list_listings()
        assert all(listing.bids_count == 0 for listing in listings)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"first_name": ""},
            {"first_name": "   "},
            {"phone_number": ""},
            {"amount": None},
            {"amount": ""},
        ],
    )
    async def test_missing_fields(self, storage, acceptor, overrides):
        """Test that a blank name, phone or amount is reported as missing."""
        listing = await create_listing(storage, "100")
        fields = {"amount": 200, **overrides}
        amount = fields.pop("amount")

        with pytest.raises(ValidationError, match="missing required fields"):
            await bid(acceptor, listing.id, amount, **fields)

    @pytest.mark.asyncio
    async def test_missing_fields_checked_before_listing_lookup(self, acceptor):
        """Test that presence is checked before the listing is looked up."""
        with pytest.raises(ValidationError, match="missing required fields"):
            await bid(acceptor, 9999, None)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["abc", "NaN", "100.001", True, -5, 0])
    async def test_malformed_amount(self, storage, acceptor, amount):
        """Test that unparseable, non-positive or over-precise amounts are rejected."""
        listing = await create_listing(storage, "1")

        with pytest.raises(ValidationError):
            await bid(acceptor, listing.id, amount)

        assert (await storage.get_listing(listing.id)).bids == []

    @pytest.mark.asyncio
    async def test_storage_failure_propagates(self):
        """Test that a storage error reaches the caller without a follow-up read."""
        storage = AsyncMock()
        storage.insert_bid.side_effect = StorageError("connection lost")
        acceptor = BidAcceptor(storage)

        with pytest.raises(StorageError):
            await bid(acceptor, 1, 200)

        storage.get_listing.assert_not_called()


class TestEndTimeEnforcement:
    """Test the optional end-time check."""

    @pytest.mark.asyncio
    async def test_bids_after_end_time_accepted_by_default(self, storage, acceptor):
        """Test that end time is ignored unless enforcement is enabled."""
        listing = await create_listing(
            storage, "100", end_time=datetime.now(timezone.utc) - timedelta(hours=1)
        )
        placed = await bid(acceptor, listing.id, 200)
        assert placed.listing.current_price == Decimal("200")

    @pytest.mark.asyncio
    async def test_bids_after_end_time_rejected_when_enforced(self, storage):
        """Test that a late bid is rejected when enforcement is enabled."""
        end_time = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
        listing = await create_listing(storage, "100", end_time=end_time)
        acceptor = BidAcceptor(
            storage,
            enforce_end_time=True,
            clock=lambda: end_time + timedelta(seconds=1),
        )

        with pytest.raises(ValidationError, match="auction has ended"):
            await bid(acceptor, listing.id, 200)

        assert (await storage.get_listing(listing.id)).bids_count == 0

    @pytest.mark.asyncio
    async def test_bids_before_end_time_accepted_when_enforced(self, storage):
        """Test that an on-time bid passes when enforcement is enabled."""
        end_time = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
        listing = await create_listing(storage, "100", end_time=end_time)
        acceptor = BidAcceptor(
            storage,
            enforce_end_time=True,
            clock=lambda: end_time - timedelta(minutes=1),
        )
        placed = await bid(acceptor, listing.id, 200)
        assert placed.bid.amount == Decimal("200")


class TestConcurrentBids:
    """Test concurrent bids on one listing."""

    @pytest.mark.asyncio
    async def test_lower_bid_first_then_higher(self, storage, acceptor):
        """Test that 200 then 250 both land and 250 ends up as the price."""
        listing = await create_listing(storage, "150")

        results = await asyncio.gather(
            bid(acceptor, listing.id, 200),
            bid(acceptor, listing.id, 250),
            return_exceptions=True,
        )

        final = await storage.get_listing(listing.id)
        assert final.current_price == Decimal("250")
        assert [item.amount for item in final.bids].count(Decimal("250")) == 1
        accepted = [result for result in results if not isinstance(result, Exception)]
        assert accepted[-1].bid.amount == Decimal("250")

    @pytest.mark.asyncio
    async def test_higher_bid_first_rejects_lower(self, storage, acceptor):
        """Test that 200 is rejected once 250 has committed."""
        listing = await create_listing(storage, "150")

        results = await asyncio.gather(
            bid(acceptor, listing.id, 250),
            bid(acceptor, listing.id, 200),
            return_exceptions=True,
        )

        assert results[0].bid.amount == Decimal("250")
        assert isinstance(results[1], BidTooLowError)
        final = await storage.get_listing(listing.id)
        assert [item.amount for item in final.bids] == [Decimal("250")]

    @pytest.mark.asyncio
    async def test_interleaved_reads_do_not_let_lower_bid_through(self, yielding_storage):
        """Test that a bid reading the price while another is in flight waits for it to commit."""
        acceptor = BidAcceptor(yielding_storage)
        listing = await create_listing(yielding_storage, "150")

        results = await asyncio.gather(
            bid(acceptor, listing.id, 250),
            bid(acceptor, listing.id, 200),
            return_exceptions=True,
        )

        assert results[0].bid.amount == Decimal("250")
        assert isinstance(results[1], BidTooLowError)
        assert results[1].current_price == Decimal("250")
        final = await yielding_storage.get_listing(listing.id)
        assert [item.amount for item in final.bids] == [Decimal("250")]

    @pytest.mark.asyncio
    async def test_interleaved_reads_commit_in_increasing_order(self, yielding_storage):
        """Test that interleaved random bids still commit in strictly increasing order."""
        acceptor = BidAcceptor(yielding_storage)
        listing = await create_listing(yielding_storage, "100")
        rng = random.Random(7)
        amounts = [rng.randint(90, 400) for _ in range(40)]

        await asyncio.gather(
            *(bid(acceptor, listing.id, amount) for amount in amounts),
            return_exceptions=True,
        )

        final = await yielding_storage.get_listing(listing.id)
        committed = [item.amount for item in sorted(final.bids, key=lambda item: item.id)]
        assert committed == sorted(set(committed))
        assert committed[0] > Decimal("100")

    @pytest.mark.asyncio
    async def test_committed_bids_strictly_increase_in_commit_order(self, storage, acceptor):
        """Test that every committed bid beats the one committed before it."""
        listing = await create_listing(storage, "100")
        rng = random.Random(42)
        amounts = [rng.randint(90, 400) for _ in range(60)]

        await asyncio.gather(
            *(bid(acceptor, listing.id, amount) for amount in amounts),
            return_exceptions=True,
        )

        final = await storage.get_listing(listing.id)
        committed = sorted(final.bids, key=lambda item: item.id)
        price = Decimal("100")
        for item in committed:
            assert item.amount > price
            price = item.amount
        assert final.current_price == max(item.amount for item in committed)

    @pytest.mark.asyncio
    async def test_listings_are_independent(self, storage, acceptor):
        """Test that bids on different listings do not affect each other."""
        first = await create_listing(storage, "100")
        second = await create_listing(storage, "100")

        await asyncio.gather(
            bid(acceptor, first.id, 200),
            bid(acceptor, second.id, 200),
        )

        assert (await storage.get_listing(first.id)).current_price == Decimal("200")
        assert (await storage.get_listing(second.id)).current_price == Decimal("200")


class TestBidLocks:
    """Test the lifetime of per-listing bid locks."""

    @pytest.mark.asyncio
    async def test_unknown_listing_bids_create_no_lock(self, storage, acceptor):
        """Test that bids on missing listings leave no lock behind."""
        for listing_id in range(1000, 1050):
            with pytest.raises(NotFoundError):
                await bid(acceptor, listing_id, 200)

        assert storage._bid_locks == {}

    @pytest.mark.asyncio
    async def test_delete_releases_lock(self, storage):
        """Test that deleting a listing drops its lock."""
        listing = await create_listing(storage, "100")
        assert listing.id in storage._bid_locks

        await storage.delete_listing(listing.id)

        assert listing.id not in storage._bid_locks

    @pytest.mark.asyncio
    async def test_bid_after_delete_not_found(self, storage, acceptor):
        """Test that a deleted listing no longer accepts bids."""
        listing = await create_listing(storage, "100")
        await storage.delete_listing(listing.id)

        with pytest.raises(NotFoundError):
            await bid(acceptor, listing.id, 200)

        with pytest.raises(NotFoundError):
            await storage.delete_listing(listing.id)


class TestSubmitBid:
    """Test the camelCase payload adapter."""

    @pytest.mark.asyncio
    async def test_splits_bidder_name(self, storage, acceptor):
        """Test that the first token is the first name and the rest the last name."""
        listing = await create_listing(storage, "100")
        placed = await acceptor.submit_bid(
            listing.id,
            {
                "bidderName": "Jean  Pierre Dupont",
                "phoneNumber": "0612345678",
                "amount": "120.50",
                "isAnonymous": True,
            },
        )
        assert placed.bid.first_name == "Jean"
        assert placed.bid.last_name == "Pierre Dupont"
        assert placed.bid.amount == Decimal("120.50")
        assert placed.bid.is_anonymous is True

    @pytest.mark.asyncio
    async def test_missing_name_rejected(self, storage, acceptor):
        """Test that a payload without bidderName is reported as missing fields."""
        listing = await create_listing(storage, "100")
        with pytest.raises(ValidationError, match="missing required fields"):
            await acceptor.submit_bid(listing.id, {"phoneNumber": "0612345678", "amount": 120})

    def test_single_token_name(self):
        """Test that a one-word name has an empty last name."""
        assert split_bidder_name("Madonna") == ("Madonna", "")

    def test_blank_name(self):
        """Test that a blank name splits into two empty parts."""
        assert split_bidder_name("   ") == ("", "")

    def test_parse_amount_from_float(self):
        """Test that float amounts convert without binary noise."""
        assert parse_amount(101.5) == Decimal("101.5")
