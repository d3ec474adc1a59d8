"""Readiness endpoint that checks the storage backend answers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..bidding.errors import StorageError
from ..storage import AuctionStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_storage(request: Request) -> AuctionStorage:
    return request.app.state.storage


@router.get("/health")
async def health(request: Request, storage: AuctionStorage = Depends(_get_storage)) -> JSONResponse:
    backend = request.app.state.server_config.storage.backend
    started = request.app.state.start_time
    body: dict[str, Any] = {
        "status": "healthy",
        "uptime_seconds": int((datetime.now(timezone.utc) - started).total_seconds()),
        "version": request.app.version,
        "storage_backend": backend,
        "storage_reachable": True,
    }
    try:
        # Cheapest read every backend supports.
        await storage.list_categories()
    except StorageError:
        logger.error("health check could not reach %s storage", backend, exc_info=True)
        body.update(status="degraded", storage_reachable=False)
        return JSONResponse(status_code=503, content=body)
    return JSONResponse(content=body)
