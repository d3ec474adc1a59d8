"""Auction listing server: listings, bids, and the atomic bid-acceptance core."""
