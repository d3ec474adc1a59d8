"""Operational stats endpoint."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from ..bidding.errors import StorageError
from ..catalog.service import CatalogService
from ..config import ServerConfig

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_catalog(request: Request) -> CatalogService:
    return request.app.state.catalog


def _get_config(request: Request) -> ServerConfig:
    return request.app.state.server_config


@router.get("/stats")
async def stats(
    catalog: CatalogService = Depends(_get_catalog),
    config: ServerConfig = Depends(_get_config),
) -> dict[str, Any]:
    try:
        listings = await catalog.list_listings(active_only=False)
    except StorageError as exc:
        logger.error("failed to load listings for stats", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to compute stats") from exc
    total_listings = len(listings)
    active_listings = sum(1 for listing in listings if listing.active)
    total_bids = sum(listing.bids_count for listing in listings)
    unbid = sum(1 for listing in listings if not listing.bids_count)

    bids_by_category: Counter[str] = Counter()
    for listing in listings:
        bids_by_category[listing.category or config.display.default_category] += listing.bids_count

    return {
        "total_listings": total_listings,
        "active_listings": active_listings,
        "total_bids": total_bids,
        "unbid_rate": round(unbid / total_listings, 4) if total_listings else 0.0,
        "average_bids_per_listing": round(total_bids / total_listings, 4) if total_listings else 0.0,
        "bids_by_category": dict(bids_by_category),
    }
