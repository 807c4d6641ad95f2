"""
Collaborator interfaces consumed by the telemetry services.

Position sources, the durable store and the routing service are black
boxes; anything matching these protocols can be plugged in.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from trip_telemetry.app.schemas.telemetry import (
    Coordinate, PositionFix, PositionSample, RouteEstimate, TripMetrics,
)


class PositionSource(Protocol):
    """Host capability that yields position fixes for one trip."""

    async def has_permission(self) -> bool:
        ...

    async def get_fix(self) -> PositionFix:
        """
        Raises:
            PermissionDenied: No location capability
            AcquisitionFailure: Transient sensor error
        """
        ...


# Called with (trip_id, owner_id); returns a fresh source (re-acquired on restart)
PositionSourceFactory = Callable[[str, str], PositionSource]


class TripRecord(Protocol):
    id: str
    start_lat: Optional[float]
    start_lng: Optional[float]
    end_lat: Optional[float]
    end_lng: Optional[float]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]


class DurableStore(Protocol):
    """Persistence for samples, metrics and tracking events. Inserts are idempotent."""

    async def insert_sample(self, record: Dict[str, Any]) -> None:
        ...

    async def insert_metrics(self, metrics: TripMetrics) -> TripMetrics:
        ...

    async def fetch_samples(self, trip_id: str) -> List[PositionSample]:
        ...

    async def fetch_last_sample(self, trip_id: str) -> Optional[PositionSample]:
        ...

    async def fetch_metrics(self, trip_id: str) -> Optional[TripMetrics]:
        ...

    async def fetch_trip(self, trip_id: str) -> Optional[TripRecord]:
        ...

    async def insert_event(self, trip_id: str, event_type: str, message: str, payload: Optional[dict] = None) -> None:
        ...


class RoutingService(Protocol):
    async def route(self, start: Coordinate, end: Coordinate) -> RouteEstimate:
        """
        Raises:
            RoutingServiceUnavailable: Network failure, timeout or no route
        """
        ...
