"""Expose currently loaded server config for debugging."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..config import ServerConfig
from ..validation.validator import SchemaRegistry

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_config(request: Request) -> ServerConfig:
    return request.app.state.server_config


def _get_schema_registry(request: Request) -> SchemaRegistry:
    return request.app.state.schema_registry


@router.get("/config")
async def config(
    request: Request,
    config: ServerConfig = Depends(_get_config),
    schemas: SchemaRegistry = Depends(_get_schema_registry),
) -> dict:
    # Storage options may carry credentials; only their keys are exposed.
    return {
        "version": request.app.version,
        "storage_backend": config.storage.backend,
        "storage_options": sorted(config.storage.options),
        "enforce_end_time": config.bidding.enforce_end_time,
        "default_category": config.display.default_category,
        "anonymous_label": config.display.anonymous_label,
        "log_level": config.log_level,
        "schemas": schemas.names(),
    }
