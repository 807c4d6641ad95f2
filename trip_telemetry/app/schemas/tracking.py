"""
Tracking API schemas.

Request and response bodies of the driver and trip telemetry endpoints.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

from trip_telemetry.app.models.trip_enums import TripKind
from trip_telemetry.app.schemas.telemetry import Coordinate


class StartTrackingRequest(BaseModel):
    """Schema for starting trip tracking."""
    kind: TripKind = TripKind.REGULAR
    owner_id: str = Field(..., min_length=1)


class StartTrackingResponse(BaseModel):
    trip_id: str
    tracking: bool
    status: str


class StopTrackingResponse(BaseModel):
    trip_id: str
    status: Optional[str]  # None when no session existed


class LocationRecord(BaseModel):
    """Schema for a GPS fix pushed by the driver app."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy_meters: Optional[float] = Field(None, ge=0)
    speed: Optional[float] = None
    heading: Optional[float] = None
    altitude: Optional[float] = None
    recorded_at: datetime


class LocationRecordResponse(BaseModel):
    trip_id: str
    accepted: bool


class PermissionUpdate(BaseModel):
    granted: bool


class PermissionUpdateResponse(BaseModel):
    trip_id: str
    granted: bool
    status: Optional[str]  # Session status, None when the trip is not tracked


class TrackingSessionResponse(BaseModel):
    """Snapshot of a sampler session."""
    trip_id: str
    kind: TripKind
    owner_id: str
    status: str
    last_sample_at: Optional[datetime]
    consecutive_missed_heartbeats: int
    restart_count: int
    samples_acquired: int
    samples_delivered: int
    samples_dropped: int


class TripLocationResponse(BaseModel):
    """GPS breadcrumb response."""
    sequence_number: int
    latitude: float
    longitude: float
    accuracy_meters: Optional[float]
    speed: Optional[float]
    heading: Optional[float]
    altitude: Optional[float]
    captured_at: datetime

    class Config:
        from_attributes = True


class BreadcrumbListResponse(BaseModel):
    trip_id: str
    locations: List[TripLocationResponse]
    total_locations: int
    accepted_locations: int


class FinalizeMetricsRequest(BaseModel):
    """Declared pickup and drop-off points, optional trip timestamps."""
    start: Optional[Coordinate] = None
    end: Optional[Coordinate] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class CompleteTripResponse(BaseModel):
    trip_id: str
    distance_km: float
    duration_minutes: int
    sample_count_used: int
    method: str
    final_position: Optional[Coordinate]
