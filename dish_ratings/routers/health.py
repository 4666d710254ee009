"""Health check endpoints — used by load balancers and container probes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from dish_ratings.bootstrap import Services
from dish_ratings.dependencies import get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    """Liveness probe — returns 200 if the process is running."""
    return {"status": "ok", "version": "1.0.0"}


@router.get("/ready")
async def ready(services: Services = Depends(get_services)) -> JSONResponse:
    """
    Readiness probe — checks the Primary Store and Redis.
    Returns 200 with {"db": "ok", "redis": "ok"} when fully ready,
    or 503 with the failing component marked "error".
    """
    results = await services.readiness()
    status = {name: "ok" if ok else "error" for name, ok in results.items()}
    all_ok = all(results.values())
    if not all_ok:
        logger.warning("Readiness check failed: %s", status)

    return JSONResponse(content=status, status_code=200 if all_ok else 503)
