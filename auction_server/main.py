from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from jsonschema import ValidationError as SchemaValidationError

from .admin import config as admin_config
from .admin import health as admin_health
from .admin import listings as admin_listings
from .admin import stats as admin_stats
from .bidding.acceptor import BidAcceptor
from .bidding.errors import NotFoundError, StorageError, ValidationError
from .catalog.formatting import format_category, format_listing
from .catalog.service import CatalogService
from .config import ServerConfig, get_server_config
from .storage import AuctionStorage, build_storage
from .validation.validator import SchemaRegistry, get_schema_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    server_config = get_server_config()
    logging.getLogger("auction_server").setLevel(server_config.log_level)
    schema_registry = get_schema_registry()
    storage = build_storage(server_config)
    bid_acceptor = BidAcceptor(
        storage,
        enforce_end_time=server_config.bidding.enforce_end_time,
    )
    catalog = CatalogService(storage)

    app.state.server_config = server_config
    app.state.schema_registry = schema_registry
    app.state.storage = storage
    app.state.bid_acceptor = bid_acceptor
    app.state.catalog = catalog
    app.state.start_time = datetime.now(timezone.utc)
    logger.info("auction server started with %s storage", server_config.storage.backend)

    try:
        yield
    finally:
        await storage.close()


app = FastAPI(
    title="Auction Listing Server",
    version="1.0.0",
    docs_url="/docs",
    lifespan=lifespan,
)

app.include_router(admin_health.router)
app.include_router(admin_stats.router)
app.include_router(admin_config.router)
app.include_router(admin_listings.router)


# Dependency helpers ---------------------------------------------------------


def get_server_settings(request: Request) -> ServerConfig:
    return request.app.state.server_config


def get_schema_service(request: Request) -> SchemaRegistry:
    return request.app.state.schema_registry


def get_storage_backend(request: Request) -> AuctionStorage:
    return request.app.state.storage


def get_bid_acceptor(request: Request) -> BidAcceptor:
    return request.app.state.bid_acceptor


def get_catalog_service(request: Request) -> CatalogService:
    return request.app.state.catalog


# Routes ---------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root(settings: ServerConfig = Depends(get_server_settings)) -> dict[str, Any]:
    return {
        "service": "auction-server",
        "version": app.version,
        "storage_backend": settings.storage.backend,
        "bidding": {"enforce_end_time": settings.bidding.enforce_end_time},
    }


@app.get("/health", tags=["meta"])
async def health() -> dict[str, str]:
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/api/products", tags=["products"])
async def list_products(
    catalog: CatalogService = Depends(get_catalog_service),
    settings: ServerConfig = Depends(get_server_settings),
) -> list[dict[str, Any]]:
    try:
        listings = await catalog.list_listings(active_only=True)
    except StorageError as exc:
        logger.error("Error fetching products: %s", exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch products") from exc
    return [format_listing(listing, settings.display) for listing in listings]


@app.get("/api/products/{listing_id}", tags=["products"])
async def get_product(
    listing_id: int,
    catalog: CatalogService = Depends(get_catalog_service),
    settings: ServerConfig = Depends(get_server_settings),
) -> dict[str, Any]:
    try:
        listing = await catalog.get_listing(listing_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Product not found") from exc
    except StorageError as exc:
        logger.error("Error fetching product %s: %s", listing_id, exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch product") from exc
    return format_listing(listing, settings.display)


@app.post("/api/products/{listing_id}/bids", tags=["bids"])
async def place_bid(
    listing_id: int,
    payload: dict[str, Any] = Body(...),
    acceptor: BidAcceptor = Depends(get_bid_acceptor),
    schemas: SchemaRegistry = Depends(get_schema_service),
    settings: ServerConfig = Depends(get_server_settings),
) -> dict[str, Any]:
    try:
        schemas.validate("bid_request", payload)
    except SchemaValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc.message)) from exc
    try:
        placed = await acceptor.submit_bid(listing_id, payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Product not found") from exc
    except StorageError as exc:
        logger.error("Error placing bid on product %s: %s", listing_id, exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to place bid") from exc
    # The accepted amount is the new maximum by construction.
    return format_listing(placed.listing, settings.display, current_price=placed.bid.amount)


@app.get("/api/categories", tags=["categories"])
async def list_categories(
    catalog: CatalogService = Depends(get_catalog_service),
) -> list[dict[str, Any]]:
    try:
        categories = await catalog.list_categories()
    except StorageError as exc:
        logger.error("Error fetching categories: %s", exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch categories") from exc
    return [format_category(category) for category in categories]
