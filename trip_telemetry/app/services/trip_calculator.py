"""
Distance/Duration Calculator.

Turns a trip's breadcrumbs into traveled distance and elapsed duration.

Jump filtering keeps an anchor (the last accepted sample). A candidate
that is both close in time to the anchor (< short interval) and would
need an implausible speed to reach is a sensor jump: it is left out of the
sum and the anchor stays put. Anything else is accepted and becomes the
new anchor, so long legitimate legs survive as long as the elapsed time
explains them.

Distance is always the single tracked direction; doubling for trips with
an untracked return leg is up to billing (see TripKind.has_untracked_return).
"""

import logging
from typing import List, Sequence, Tuple

from trip_telemetry.app.core.exceptions import InsufficientSamples
from trip_telemetry.app.schemas.telemetry import DistanceResult, DurationResult, PositionSample
from trip_telemetry.app.services.breadcrumb_store import BreadcrumbStore
from trip_telemetry.app.services.geo import haversine_distance, is_sensor_jump, whole_minutes

logger = logging.getLogger(__name__)


def filter_jumps(
    samples: Sequence[PositionSample],
    short_interval_seconds: float = 5.0,
    max_speed_kmh: float = 180.0,
) -> Tuple[List[PositionSample], float]:
    """
    Walk samples in order and drop sensor jumps.

    Returns:
        (accepted samples including the first anchor, summed distance in km)
    """
    if not samples:
        return [], 0.0

    anchor = samples[0]
    accepted = [anchor]
    total_km = 0.0

    for candidate in samples[1:]:
        d = haversine_distance(anchor.latitude, anchor.longitude, candidate.latitude, candidate.longitude)
        dt = (candidate.captured_at - anchor.captured_at).total_seconds()
        if is_sensor_jump(d, dt, short_interval_seconds, max_speed_kmh):
            logger.debug(
                "Jump filtered: seq %s is %.3f km from anchor %s after %.1fs",
                candidate.sequence_number, d, anchor.sequence_number, dt
            )
            continue
        total_km += d
        accepted.append(candidate)
        anchor = candidate

    return accepted, total_km


def elapsed_minutes(samples: Sequence[PositionSample]) -> int:
    """Rounded minutes between first and last sample, at least 1."""
    if len(samples) < 2:
        return 1
    return whole_minutes((samples[-1].captured_at - samples[0].captured_at).total_seconds())


class TripMetricsCalculator:

    def __init__(
        self,
        breadcrumbs: BreadcrumbStore,
        short_interval_seconds: float = 5.0,
        max_speed_kmh: float = 180.0,
    ):
        self._breadcrumbs = breadcrumbs
        self.short_interval_seconds = short_interval_seconds
        self.max_speed_kmh = max_speed_kmh

    async def _accepted_track(self, trip_id: str) -> Tuple[List[PositionSample], float]:
        samples = await self._breadcrumbs.query_accepted(trip_id)
        return filter_jumps(samples, self.short_interval_seconds, self.max_speed_kmh)

    async def compute_distance(self, trip_id: str) -> DistanceResult:
        """
        Breadcrumb distance of a trip.

        Raises:
            InsufficientSamples: Fewer than 2 samples pass the accuracy filter
        """
        samples = await self._breadcrumbs.query_accepted(trip_id)
        if len(samples) < 2:
            raise InsufficientSamples(trip_id, len(samples))

        accepted, total_km = filter_jumps(samples, self.short_interval_seconds, self.max_speed_kmh)
        logger.info(
            "Trip %s distance %.3f km from %s/%s samples",
            trip_id, total_km, len(accepted), len(samples)
        )
        return DistanceResult(distance_km=total_km, points_used=len(accepted))

    async def compute_duration(self, trip_id: str) -> DurationResult:
        """
        Elapsed time between the first and last accepted samples.

        With fewer than 2 usable samples the duration is the 1 minute floor
        and points_used tells the caller it is not GPS-derived.
        """
        accepted, _ = await self._accepted_track(trip_id)
        return DurationResult(duration_minutes=elapsed_minutes(accepted), points_used=len(accepted))
