"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from trip_telemetry.app.api.v1.endpoints import trip_tracking

router = APIRouter()

# Driver app: tracking lifecycle and position pushes
router.include_router(trip_tracking.driver_router)

# Dispatch side: breadcrumbs and trip metrics
router.include_router(trip_tracking.trips_router)
