"""Admin listing and category management."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from jsonschema import ValidationError as SchemaValidationError

from ..bidding.errors import NotFoundError, StorageError, ValidationError
from ..catalog.formatting import format_category, format_listing
from ..catalog.service import CatalogService
from ..config import ServerConfig
from ..validation.validator import SchemaRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _get_catalog(request: Request) -> CatalogService:
    return request.app.state.catalog


def _get_config(request: Request) -> ServerConfig:
    return request.app.state.server_config


def _get_schema_registry(request: Request) -> SchemaRegistry:
    return request.app.state.schema_registry


def _validate(schemas: SchemaRegistry, schema_name: str, payload: dict[str, Any]) -> None:
    try:
        schemas.validate(schema_name, payload)
    except SchemaValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc.message)) from exc


@router.get("/products")
async def list_products(
    catalog: CatalogService = Depends(_get_catalog),
    config: ServerConfig = Depends(_get_config),
) -> list[dict[str, Any]]:
    try:
        listings = await catalog.list_listings(active_only=False)
    except StorageError as exc:
        logger.error("Error fetching admin products: %s", exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch products") from exc
    return [format_listing(listing, config.display, mask_anonymous=False) for listing in listings]


@router.get("/products/{listing_id}")
async def get_product(
    listing_id: int,
    catalog: CatalogService = Depends(_get_catalog),
    config: ServerConfig = Depends(_get_config),
) -> dict[str, Any]:
    try:
        listing = await catalog.get_listing(listing_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Product not found") from exc
    except StorageError as exc:
        logger.error("Error fetching admin product %s: %s", listing_id, exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch product") from exc
    return format_listing(listing, config.display, mask_anonymous=False)


@router.post("/products", status_code=status.HTTP_201_CREATED)
async def create_product(
    payload: dict[str, Any] = Body(...),
    catalog: CatalogService = Depends(_get_catalog),
    config: ServerConfig = Depends(_get_config),
    schemas: SchemaRegistry = Depends(_get_schema_registry),
) -> dict[str, Any]:
    _validate(schemas, "listing_create", payload)
    try:
        listing = await catalog.create_listing(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StorageError as exc:
        logger.error("Error creating product: %s", exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create product") from exc
    return {
        "id": listing.id,
        "message": "Product created successfully",
        "product": format_listing(listing, config.display, mask_anonymous=False),
    }


@router.put("/products/{listing_id}")
async def update_product(
    listing_id: int,
    payload: dict[str, Any] = Body(...),
    catalog: CatalogService = Depends(_get_catalog),
    config: ServerConfig = Depends(_get_config),
    schemas: SchemaRegistry = Depends(_get_schema_registry),
) -> dict[str, Any]:
    _validate(schemas, "listing_update", payload)
    try:
        listing = await catalog.update_listing(listing_id, payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StorageError as exc:
        logger.error("Error updating product %s: %s", listing_id, exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update product") from exc
    return {
        "message": "Product updated successfully",
        "product": format_listing(listing, config.display, mask_anonymous=False),
    }


@router.delete("/products/{listing_id}")
async def delete_product(
    listing_id: int,
    catalog: CatalogService = Depends(_get_catalog),
) -> dict[str, str]:
    try:
        await catalog.delete_listing(listing_id)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Product not found") from exc
    except StorageError as exc:
        logger.error("Error deleting product %s: %s", listing_id, exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to delete product") from exc
    return {"message": "Product deleted successfully"}


@router.post("/categories", status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: dict[str, Any] = Body(...),
    catalog: CatalogService = Depends(_get_catalog),
    schemas: SchemaRegistry = Depends(_get_schema_registry),
) -> dict[str, Any]:
    _validate(schemas, "category_create", payload)
    try:
        category = await catalog.create_category(payload.get("name"))
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StorageError as exc:
        logger.error("Error creating category: %s", exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create category") from exc
    return format_category(category)
