"""
main.py

FastAPI entrypoint: `uvicorn homegrid.main:app`.

Lifecycle:
  - Startup (when SCHEDULER_ENABLED) builds the engine and starts the
    periodic driver (optimization / maintenance / deferred demand response).
  - Shutdown stops the driver; an executing plan finishes its current
    device command first.
"""
from __future__ import annotations

import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from homegrid.api import (
    routes_demand_response,
    routes_events,
    routes_forecast,
    routes_health,
    routes_maintenance,
    routes_optimization,
)
from homegrid.config import get_settings
from homegrid.deps import get_engine_service
from homegrid.logging_config import logger
from homegrid.services.scheduler import PeriodicDriver


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    driver = None
    if settings.scheduler_enabled:
        driver = PeriodicDriver.from_settings(get_engine_service(), settings)
        await driver.start()
    app.state.driver = driver
    logger.info("HomeGrid engine ready (scheduler %s)", "on" if driver else "off")
    try:
        yield
    finally:
        if driver is not None:
            await driver.stop()


def create_app() -> FastAPI:
    app = FastAPI(
        title="HomeGrid Engine",
        version="0.1.0",
        description="Home energy analytics: forecasts, predictive maintenance, optimization and demand response.",
        lifespan=lifespan,
    )

    ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*")
    allow_origins = ["*"] if ALLOWED_ORIGINS == "*" else [o.strip() for o in ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_id(request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(routes_optimization.router, prefix="/optimization", tags=["optimization"])
    app.include_router(routes_forecast.router, prefix="/forecast", tags=["forecast"])
    app.include_router(routes_maintenance.router, prefix="/maintenance", tags=["maintenance"])
    app.include_router(routes_demand_response.router, prefix="/demand-response", tags=["demand-response"])
    app.include_router(routes_events.router, prefix="/events", tags=["events"])
    return app


app = create_app()
