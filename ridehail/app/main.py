"""
FastAPI Application Entry Point.

This is the main application file for the Ride-Hailing Backend.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from ridehail.app.api.v1.router import router as api_v1_router
from ridehail.app.core.config import settings
from ridehail.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from ridehail.app.core.observability import ObservabilityMiddleware, setup_logging
from ridehail.app.core.redis_client import redis_client, ping_redis, close_redis
from ridehail.app.db.session import engine, AsyncSessionLocal, create_tables
from ridehail.app.domain.pricing.catalog import PricingCatalog
from ridehail.app.domain.trips.sweeper import TripTimeoutSweeper
from ridehail.app.services.matching_notifier import matching_notifier
from ridehail.app.services.notification_subscriber import NotificationSubscriber

logger = logging.getLogger("ridehail")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables and seeds the default pricing catalog.
    2. Starts the notification fan-out subscriber.
    3. Starts the periodic trip timeout sweep.
    """
    setup_logging(settings.log_level)

    await create_tables()

    if settings.seed_pricing_defaults:
        async with AsyncSessionLocal() as db:
            await PricingCatalog.ensure_defaults(db)

    subscriber = None
    if settings.notification_fanout_enabled:
        subscriber = NotificationSubscriber(
            redis_client,
            matching_notifier,
            settings.notification_channel,
            reconnect_delay=settings.notification_reconnect_delay_seconds,
        )
        await subscriber.start()

    stop_sweeping = asyncio.Event()
    sweep_task = None
    if settings.timeout_sweep_enabled:
        sweeper = TripTimeoutSweeper(matching_notifier)
        sweep_task = asyncio.create_task(
            sweeper.run_periodic_sweeps(AsyncSessionLocal, settings.timeout_sweep_interval_seconds, stop_sweeping)
        )

    logger.info("%s %s started", settings.app_name, settings.api_version)
    yield

    stop_sweeping.set()
    if sweep_task:
        await sweep_task
    if subscriber:
        await subscriber.stop()
    await close_redis()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Trip lifecycle and dynamic pricing backend for ride-hailing",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": await ping_redis(),
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to the Ride-Hailing Backend API",
        "docs": "/docs",
        "health": "/health",
    }
