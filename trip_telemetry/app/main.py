"""
FastAPI Application Entry Point.

This is the main application file for the Trip Telemetry service.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text

from trip_telemetry.app.core.config import settings
from trip_telemetry.app.core.logging_config import configure as configure_logging
from trip_telemetry.app.core.observability import ObservabilityMiddleware
from trip_telemetry.app.core.redis_client import ping_redis, redis_client
from trip_telemetry.app.api.v1.router import router as api_v1_router
from trip_telemetry.app.db.session import engine, Base, AsyncSessionLocal
from trip_telemetry.app.services.telemetry_service import build_runtime
from trip_telemetry.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from trip_telemetry.app.models.trip import Trip
from trip_telemetry.app.models.trip_location import TripLocation
from trip_telemetry.app.models.trip_metrics import TripMetricsRecord
from trip_telemetry.app.models.tracking_event import TrackingEvent


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging and creates database tables on startup.
    2. Builds the telemetry runtime and starts the sampling watchdog.
    3. On shutdown stops every tracking session, flushing queued samples.
    """
    configure_logging(settings.log_level)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    runtime = build_runtime(AsyncSessionLocal, redis_client)
    app.state.telemetry = runtime
    runtime.start()
    yield
    await runtime.stop()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="GPS trip telemetry: breadcrumb sampling, distance and duration",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


async def _database_ok() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        return False
    return True


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and collaborator reachability
    """
    database = await _database_ok()
    redis = await ping_redis()
    return {
        "status": "healthy" if database else "degraded",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "database": database,
        "redis": redis,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
