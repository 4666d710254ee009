"""
Dish ratings API — FastAPI application entry point.
Lifespan: wire components → verify connectivity → serve → release connections.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dish_ratings.bootstrap import Services, build_services
from dish_ratings.config import Settings, configure_logging, get_settings
from dish_ratings.routers import analytics, health, reviews

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """
    Build the application. When ``services`` is given it is used as-is and
    never closed by the app; otherwise components are built from ``settings``
    at startup and released at shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Starting dish ratings API (env=%s)", settings.app_env)

        owned = services is None
        app.state.services = services if services is not None else build_services(settings)

        readiness = await app.state.services.readiness()
        for name, ok in readiness.items():
            if ok:
                logger.info("%s connectivity verified.", name)
            else:
                logger.error("%s connectivity check FAILED at startup.", name)

        yield

        logger.info("Shutting down dish ratings API.")
        if owned:
            await app.state.services.aclose()

    app = FastAPI(
        title="Dish Ratings",
        description="Dish reviews, rating aggregation and popularity leaderboards.",
        version="1.0.0",
        lifespan=lifespan,
    )

    # ── CORS ─────────────────────────────────────────────────────────────────

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ──────────────────────────────────────────────────────────────

    app.include_router(health.router)
    app.include_router(reviews.router)
    app.include_router(analytics.router)

    # ── Exception handlers ───────────────────────────────────────────────────

    @app.exception_handler(RequestValidationError)
    async def invalid_request_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Malformed bodies and path parameters are client errors (400)."""
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid request", "errors": jsonable_errors(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Return a machine-readable error for any unhandled exception."""
        logger.exception("Unhandled exception on %s %s", request.method, request.url)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "code": "RATINGS_UNAVAILABLE"},
        )

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


configure_logging(get_settings())
app = create_app()
