"""
FastAPI application factory.

* Registers routes for rides, drivers, riders, fares, tracking and admin.
* Owns the subscriber registry: created here, started / stopped by the
  lifespan together with the presence sweeper.
* Maps domain and store errors to HTTP responses.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.errors import register_exception_handlers
from src.api.middleware import limiter
from src.api.routes import admin, drivers, fares, riders, rides, tracking
from src.config import settings
from src.realtime.broadcaster import LocationBroadcaster, SubscriberRegistry
from src.workers import presence as _presence

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the heartbeat and presence sweeper; stop both on shutdown."""
    await app.state.registry.start()
    await _presence.start_presence_loop()
    yield
    await _presence.stop_presence_loop()
    await app.state.registry.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ride Dispatch API",
        description=(
            "Dispatches the nearest idle driver, drives each ride through "
            "its lifecycle, prices completed rides and relays live driver "
            "positions to passengers."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    registry = SubscriberRegistry(
        heartbeat_interval=settings.heartbeat_interval_seconds,
        queue_size=settings.subscriber_queue_size,
    )
    app.state.registry = registry
    app.state.broadcaster = LocationBroadcaster(
        registry,
        h3_resolution=settings.h3_resolution,
        area_ring=settings.tracking_area_ring,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_exception_handlers(app)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(riders.router, prefix="/api/v1")
    app.include_router(fares.router, prefix="/api/v1")
    app.include_router(tracking.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
