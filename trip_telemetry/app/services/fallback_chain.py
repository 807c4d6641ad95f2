"""
Fallback Escalation Chain.

Used at completion when breadcrumbs cannot be trusted: too few usable
samples, or a tracked distance well short of the straight line between
the declared pickup and drop-off (an incomplete track).

Tiers after breadcrumbs:
    2. Routing service road distance and travel time
    3. Straight line x road curvature factor, floored at a minimum distance

Only a missing pickup or drop-off point stops tier 3, and that is the one
error in the telemetry subsystem that blocks trip completion.
"""

import logging
from datetime import datetime
from typing import Optional

from trip_telemetry.app.core.exceptions import AllFallbacksExhausted, RoutingServiceUnavailable
from trip_telemetry.app.models.trip_enums import MetricsMethod
from trip_telemetry.app.schemas.telemetry import Coordinate, DistanceResult, DurationResult, TripMetrics, as_utc
from trip_telemetry.app.services.geo import coordinate_distance, whole_minutes
from trip_telemetry.app.services.interfaces import RoutingService

logger = logging.getLogger(__name__)

INSUFFICIENT_SAMPLES = "insufficient_samples"
INCOMPLETE_TRACK = "incomplete_track"


class FallbackEscalationChain:

    def __init__(
        self,
        routing: Optional[RoutingService] = None,
        road_curvature_factor: float = 1.3,
        min_distance_km: float = 0.1,
        plausibility_ratio: float = 0.5,
    ):
        self._routing = routing
        self.road_curvature_factor = road_curvature_factor
        self.min_distance_km = min_distance_km
        self.plausibility_ratio = plausibility_ratio

    def needs_fallback(
        self,
        distance: Optional[DistanceResult],
        start: Optional[Coordinate],
        end: Optional[Coordinate],
    ) -> Optional[str]:
        """
        Decide whether breadcrumb distance can be used.

        Returns:
            None when breadcrumbs are fine, otherwise the reason to escalate
        """
        if distance is None or distance.points_used < 2:
            return INSUFFICIENT_SAMPLES
        if start is not None and end is not None:
            straight_km = coordinate_distance(start, end)
            if distance.distance_km < self.plausibility_ratio * straight_km:
                logger.warning(
                    "Tracked %.3f km is below %.0f%% of straight-line %.3f km",
                    distance.distance_km, self.plausibility_ratio * 100, straight_km
                )
                return INCOMPLETE_TRACK
        return None

    async def escalate(
        self,
        trip_id: str,
        start: Optional[Coordinate],
        end: Optional[Coordinate],
        gps_duration: Optional[DurationResult] = None,
        started_at: Optional[datetime] = None,
        ended_at: Optional[datetime] = None,
    ) -> TripMetrics:
        """
        Produce metrics from the first tier that can.

        Raises:
            AllFallbacksExhausted: Pickup or drop-off coordinates missing
        """
        if start is not None and end is not None:
            if self._routing is None:
                logger.info("Routing service not configured, skipping to straight-line estimate")
            else:
                try:
                    estimate = await self._routing.route(start, end)
                except RoutingServiceUnavailable as exc:
                    logger.warning("Routing tier failed for trip %s: %s", trip_id, exc.message)
                else:
                    return TripMetrics(
                        trip_id=trip_id,
                        distance_km=estimate.distance_km,
                        duration_minutes=estimate.duration_minutes,
                        sample_count_used=0,
                        method=MetricsMethod.ROUTING_API,
                    )

        return self.straight_line_estimate(trip_id, start, end, gps_duration, started_at, ended_at)

    def straight_line_estimate(
        self,
        trip_id: str,
        start: Optional[Coordinate],
        end: Optional[Coordinate],
        gps_duration: Optional[DurationResult] = None,
        started_at: Optional[datetime] = None,
        ended_at: Optional[datetime] = None,
    ) -> TripMetrics:
        if start is None or end is None:
            raise AllFallbacksExhausted(trip_id)

        distance_km = max(self.min_distance_km, coordinate_distance(start, end) * self.road_curvature_factor)

        if gps_duration is not None and gps_duration.points_used >= 2:
            duration_minutes = gps_duration.duration_minutes
            sample_count_used = gps_duration.points_used
        elif started_at is not None and ended_at is not None:
            elapsed = (as_utc(ended_at) - as_utc(started_at)).total_seconds()
            duration_minutes = whole_minutes(elapsed)
            sample_count_used = 0
        else:
            duration_minutes = 1
            sample_count_used = 0

        return TripMetrics(
            trip_id=trip_id,
            distance_km=distance_km,
            duration_minutes=duration_minutes,
            sample_count_used=sample_count_used,
            method=MetricsMethod.STRAIGHT_LINE_ESTIMATE,
        )
