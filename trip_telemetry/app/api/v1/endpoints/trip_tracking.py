"""
Trip Tracking API Endpoints.

Driver apps start and stop tracking and push position fixes; the dispatch
side reads breadcrumbs and asks for final distance and duration.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path

from trip_telemetry.app.core.dependencies import get_fix_buffer, get_telemetry
from trip_telemetry.app.core.exceptions import ResourceNotFoundError
from trip_telemetry.app.models.trip_enums import SessionStatus
from trip_telemetry.app.schemas.telemetry import Coordinate, DistanceResult, DurationResult, PositionFix, TripMetrics
from trip_telemetry.app.schemas.tracking import (
    BreadcrumbListResponse, CompleteTripResponse, FinalizeMetricsRequest,
    LocationRecord, LocationRecordResponse, PermissionUpdate, PermissionUpdateResponse,
    StartTrackingRequest, StartTrackingResponse, StopTrackingResponse,
    TrackingSessionResponse, TripLocationResponse,
)
from trip_telemetry.app.services.position_source import LatestFixBuffer
from trip_telemetry.app.services.telemetry_service import TripTelemetryService

driver_router = APIRouter(prefix="/driver", tags=["Driver - Trip Tracking"])
trips_router = APIRouter(prefix="/trips", tags=["Trip Telemetry"])


@driver_router.post("/trips/{trip_id}/tracking/start", response_model=StartTrackingResponse)
async def start_tracking(
    request: StartTrackingRequest,
    trip_id: str = Path(..., description="Trip ID"),
    telemetry: TripTelemetryService = Depends(get_telemetry),
):
    """
    Start location sampling for a trip.

    Idempotent: starting an already tracked trip changes nothing.
    'tracking' is false when the app reported no location permission; the
    session then waits for permission and resumes on its own.
    """
    tracking = await telemetry.start_tracking(trip_id, request.kind, request.owner_id)
    session = telemetry.scheduler.get_session(trip_id)
    return StartTrackingResponse(
        trip_id=trip_id,
        tracking=tracking,
        status=session.status.value if session else SessionStatus.IDLE.value,
    )


@driver_router.post("/trips/{trip_id}/tracking/stop", response_model=StopTrackingResponse)
async def stop_tracking(
    trip_id: str = Path(..., description="Trip ID"),
    telemetry: TripTelemetryService = Depends(get_telemetry),
    buffer: LatestFixBuffer = Depends(get_fix_buffer),
):
    """Stop sampling and flush pending deliveries. Unknown trips are a no-op."""
    existed = telemetry.scheduler.get_session(trip_id) is not None
    await telemetry.stop_tracking(trip_id)
    buffer.discard(trip_id)
    return StopTrackingResponse(
        trip_id=trip_id,
        status=SessionStatus.STOPPED.value if existed else None,
    )


@driver_router.post("/trips/{trip_id}/fix", response_model=LocationRecordResponse)
async def record_fix(
    location: LocationRecord,
    trip_id: str = Path(..., description="Trip ID"),
    telemetry: TripTelemetryService = Depends(get_telemetry),
    buffer: LatestFixBuffer = Depends(get_fix_buffer),
):
    """
    Push the app's current GPS fix.

    The sampler picks up the newest fix on its next tick; a fix older than
    one already waiting is ignored.
    """
    session = telemetry.scheduler.get_session(trip_id)
    if session is None or not session.status.is_active:
        raise ResourceNotFoundError("Tracking session", trip_id)

    accepted = buffer.push(trip_id, PositionFix(
        latitude=location.latitude,
        longitude=location.longitude,
        accuracy_meters=location.accuracy_meters,
        speed=location.speed,
        heading=location.heading,
        altitude=location.altitude,
        captured_at=location.recorded_at,
    ))
    return LocationRecordResponse(trip_id=trip_id, accepted=accepted)


@driver_router.post("/trips/{trip_id}/permission", response_model=PermissionUpdateResponse)
async def update_permission(
    update: PermissionUpdate,
    trip_id: str = Path(..., description="Trip ID"),
    telemetry: TripTelemetryService = Depends(get_telemetry),
    buffer: LatestFixBuffer = Depends(get_fix_buffer),
):
    """Report that the app gained or lost location permission."""
    buffer.set_permission(trip_id, update.granted)
    session = telemetry.scheduler.get_session(trip_id)
    return PermissionUpdateResponse(
        trip_id=trip_id,
        granted=update.granted,
        status=session.status.value if session else None,
    )


@trips_router.get("/{trip_id}/tracking", response_model=TrackingSessionResponse)
async def get_tracking_session(
    trip_id: str = Path(..., description="Trip ID"),
    telemetry: TripTelemetryService = Depends(get_telemetry),
):
    """Current sampler session state of a trip."""
    session = telemetry.scheduler.get_session(trip_id)
    if session is None:
        raise ResourceNotFoundError("Tracking session", trip_id)
    return TrackingSessionResponse(**session.snapshot())


@trips_router.get("/{trip_id}/breadcrumbs", response_model=BreadcrumbListResponse)
async def get_breadcrumbs(
    trip_id: str = Path(..., description="Trip ID"),
    telemetry: TripTelemetryService = Depends(get_telemetry),
):
    """All stored samples of a trip in sequence order."""
    samples = await telemetry.breadcrumbs.query(trip_id)
    accepted = [s for s in samples if telemetry.breadcrumbs.is_accurate(s)]
    return BreadcrumbListResponse(
        trip_id=trip_id,
        locations=[TripLocationResponse(**s.model_dump()) for s in samples],
        total_locations=len(samples),
        accepted_locations=len(accepted),
    )


@trips_router.get("/{trip_id}/distance", response_model=DistanceResult)
async def get_distance(
    trip_id: str = Path(..., description="Trip ID"),
    telemetry: TripTelemetryService = Depends(get_telemetry),
):
    """Breadcrumb distance so far. 422 with fewer than 2 usable samples."""
    return await telemetry.compute_distance(trip_id)


@trips_router.get("/{trip_id}/duration", response_model=DurationResult)
async def get_duration(
    trip_id: str = Path(..., description="Trip ID"),
    telemetry: TripTelemetryService = Depends(get_telemetry),
):
    return await telemetry.compute_duration(trip_id)


@trips_router.post("/{trip_id}/metrics", response_model=TripMetrics)
async def finalize_metrics(
    request: FinalizeMetricsRequest,
    trip_id: str = Path(..., description="Trip ID"),
    telemetry: TripTelemetryService = Depends(get_telemetry),
):
    """
    Final distance and duration for billing.

    Falls back to the routing service, then to a straight-line estimate,
    when breadcrumbs are insufficient. 422 if no tier can answer.
    """
    return await telemetry.finalize_metrics(
        trip_id, request.start, request.end,
        started_at=request.started_at, ended_at=request.ended_at,
    )


@trips_router.post("/{trip_id}/complete", response_model=CompleteTripResponse)
async def complete_trip(
    request: Optional[FinalizeMetricsRequest] = None,
    trip_id: str = Path(..., description="Trip ID"),
    telemetry: TripTelemetryService = Depends(get_telemetry),
    buffer: LatestFixBuffer = Depends(get_fix_buffer),
):
    """
    Stop tracking and finalize metrics in one call.

    The last stored sample is reported as the final drop-off position.
    """
    start = request.start if request else None
    end = request.end if request else None
    metrics, final_sample = await telemetry.complete_trip(trip_id, start, end)
    buffer.discard(trip_id)

    final_position = None
    if final_sample is not None:
        final_position = Coordinate(latitude=final_sample.latitude, longitude=final_sample.longitude)

    return CompleteTripResponse(
        trip_id=trip_id,
        distance_km=metrics.distance_km,
        duration_minutes=metrics.duration_minutes,
        sample_count_used=metrics.sample_count_used,
        method=metrics.method.value,
        final_position=final_position,
    )
