"""
Telemetry domain schemas.

Immutable value types passed between the sampler, the stores, the
calculator and the fallback chain.
"""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime, timezone
from typing import Optional

from trip_telemetry.app.models.trip_enums import MetricsMethod


def as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Coordinate(BaseModel):
    """A WGS84 point."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    class Config:
        frozen = True


class PositionFix(BaseModel):
    """Raw reading returned by a position source."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy_meters: Optional[float] = Field(None, ge=0)
    speed: Optional[float] = None
    heading: Optional[float] = None
    altitude: Optional[float] = None
    captured_at: datetime

    class Config:
        frozen = True

    @field_validator("captured_at")
    @classmethod
    def normalize_captured_at(cls, v: datetime) -> datetime:
        return as_utc(v)


class PositionSample(BaseModel):
    """A fix that belongs to a trip's track, numbered in acquisition order."""
    trip_id: str
    owner_id: str
    latitude: float
    longitude: float
    accuracy_meters: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    altitude: Optional[float] = None
    captured_at: datetime
    sequence_number: int = Field(..., ge=0)

    class Config:
        frozen = True

    @field_validator("captured_at")
    @classmethod
    def normalize_captured_at(cls, v: datetime) -> datetime:
        return as_utc(v)

    @classmethod
    def from_fix(cls, fix: PositionFix, trip_id: str, owner_id: str, sequence_number: int) -> "PositionSample":
        return cls(
            trip_id=trip_id,
            owner_id=owner_id,
            sequence_number=sequence_number,
            **fix.model_dump(),
        )

    def to_record(self) -> dict:
        """Persisted record shape."""
        return {
            "trip_id": self.trip_id,
            "owner_id": self.owner_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy_meters": self.accuracy_meters,
            "speed": self.speed,
            "heading": self.heading,
            "altitude": self.altitude,
            "recorded_at": self.captured_at,
            "sequence_number": self.sequence_number,
        }


class DistanceResult(BaseModel):
    distance_km: float = Field(..., ge=0)
    points_used: int


class DurationResult(BaseModel):
    duration_minutes: int = Field(..., ge=1)
    points_used: int


class RouteEstimate(BaseModel):
    """Answer of the routing collaborator."""
    distance_km: float = Field(..., ge=0)
    duration_minutes: int = Field(..., ge=1)


class TripMetrics(BaseModel):
    """Final trip metrics handed to billing."""
    trip_id: str
    distance_km: float = Field(..., ge=0)
    duration_minutes: int = Field(..., ge=1)
    sample_count_used: int = Field(..., ge=0)
    method: MetricsMethod

    class Config:
        frozen = True
        from_attributes = True
