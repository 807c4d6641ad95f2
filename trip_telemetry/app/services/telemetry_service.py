"""
Trip telemetry orchestration.

Ties the sampler, the calculator and the fallback chain together. On
completion, tracking is stopped first (flushing queued samples) and the
final metrics are computed once:

    1. Breadcrumbs (GPS distance and duration)
    2. Routing service estimate
    3. Straight-line estimate

The chosen figures are persisted once per trip and every decision is
written to the tracking event log.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Tuple

from trip_telemetry.app.core.config import Settings, settings
from trip_telemetry.app.core.exceptions import InsufficientSamples
from trip_telemetry.app.core.reliability import CircuitBreaker
from trip_telemetry.app.models.trip_enums import MetricsMethod, TrackingEventType, TripKind
from trip_telemetry.app.schemas.telemetry import (
    Coordinate, DistanceResult, DurationResult, PositionSample, TripMetrics,
)
from trip_telemetry.app.services.breadcrumb_store import BreadcrumbStore
from trip_telemetry.app.services.delivery import is_transient_store_error
from trip_telemetry.app.services.fallback_chain import FallbackEscalationChain
from trip_telemetry.app.services.location_sampler import LocationSamplingScheduler, utc_now
from trip_telemetry.app.services.operator_alerts import OperatorAlerts
from trip_telemetry.app.services.position_source import LatestFixBuffer
from trip_telemetry.app.services.routing_client import HttpRoutingClient
from trip_telemetry.app.services.sample_store import SqlSampleStore
from trip_telemetry.app.services.tracking_events import log_event
from trip_telemetry.app.services.trip_calculator import TripMetricsCalculator
from trip_telemetry.app.services.watchdog import SamplingWatchdog

logger = logging.getLogger(__name__)


def _declared_point(lat: Optional[float], lng: Optional[float]) -> Optional[Coordinate]:
    if lat is None or lng is None:
        return None
    return Coordinate(latitude=lat, longitude=lng)


class TripTelemetryService:

    def __init__(
        self,
        store,
        breadcrumbs: BreadcrumbStore,
        scheduler: LocationSamplingScheduler,
        calculator: TripMetricsCalculator,
        fallback: FallbackEscalationChain,
        persist_retry_delay_seconds: float = 0.5,
    ):
        self._store = store
        self.breadcrumbs = breadcrumbs
        self.scheduler = scheduler
        self.calculator = calculator
        self.fallback = fallback
        self.persist_retry_delay_seconds = persist_retry_delay_seconds

    # Tracking

    async def start_tracking(self, trip_id: str, kind: TripKind, owner_id: str) -> bool:
        return await self.scheduler.start_tracking(trip_id, kind, owner_id)

    async def stop_tracking(self, trip_id: str) -> None:
        await self.scheduler.stop_tracking(trip_id)

    # Metrics

    async def compute_distance(self, trip_id: str) -> DistanceResult:
        return await self.calculator.compute_distance(trip_id)

    async def compute_duration(self, trip_id: str) -> DurationResult:
        return await self.calculator.compute_duration(trip_id)

    async def finalize_metrics(
        self,
        trip_id: str,
        start: Optional[Coordinate],
        end: Optional[Coordinate],
        started_at: Optional[datetime] = None,
        ended_at: Optional[datetime] = None,
    ) -> TripMetrics:
        """
        Decide and store the trip's final distance and duration.

        Calling it again for the same trip returns the stored figures.

        Raises:
            AllFallbacksExhausted: Breadcrumbs unusable and no declared coordinates
        """
        existing = await self._store.fetch_metrics(trip_id)
        if existing is not None:
            logger.info("Metrics for trip %s already finalized (%s)", trip_id, existing.method.value)
            return existing

        distance: Optional[DistanceResult] = None
        try:
            distance = await self.calculator.compute_distance(trip_id)
        except InsufficientSamples as exc:
            logger.info("Trip %s has %s usable samples, escalating", trip_id, exc.available)
        duration = await self.calculator.compute_duration(trip_id)

        reason = self.fallback.needs_fallback(distance, start, end)
        if reason is None:
            metrics = TripMetrics(
                trip_id=trip_id,
                distance_km=distance.distance_km,
                duration_minutes=duration.duration_minutes,
                sample_count_used=distance.points_used,
                method=MetricsMethod.BREADCRUMBS,
            )
        else:
            metrics = await self.fallback.escalate(
                trip_id, start, end,
                gps_duration=duration, started_at=started_at, ended_at=ended_at,
            )

        metrics = await self._persist(metrics)
        await log_event(
            self._store, trip_id, TrackingEventType.DISTANCE_DECISION,
            f"Distance from {metrics.method.value}",
            {
                "method": metrics.method.value,
                "distance_km": round(metrics.distance_km, 3),
                "duration_minutes": metrics.duration_minutes,
                "sample_count_used": metrics.sample_count_used,
                "fallback_reason": reason,
                "gps_distance_km": round(distance.distance_km, 3) if distance else None,
                "gps_points": distance.points_used if distance else 0,
            }
        )
        return metrics

    async def _persist(self, metrics: TripMetrics) -> TripMetrics:
        try:
            return await self._store.insert_metrics(metrics)
        except Exception as exc:
            if not is_transient_store_error(exc):
                logger.error("Could not store metrics for trip %s", metrics.trip_id, exc_info=True)
                return metrics
            logger.warning("Storing metrics for trip %s failed, retrying: %r", metrics.trip_id, exc)

        await asyncio.sleep(self.persist_retry_delay_seconds)
        try:
            return await self._store.insert_metrics(metrics)
        except Exception:
            logger.error("Could not store metrics for trip %s after retry", metrics.trip_id, exc_info=True)
            return metrics

    async def complete_trip(
        self,
        trip_id: str,
        start: Optional[Coordinate] = None,
        end: Optional[Coordinate] = None,
    ) -> Tuple[TripMetrics, Optional[PositionSample]]:
        """
        Stop tracking, then finalize.

        Declared coordinates and timestamps missing from the call are read
        from the trip record.

        Returns:
            (final metrics, last stored sample as the final position)
        """
        await self.scheduler.stop_tracking(trip_id)

        started_at = None
        ended_at = None
        trip = await self._store.fetch_trip(trip_id)
        if trip is not None:
            start = start or _declared_point(trip.start_lat, trip.start_lng)
            end = end or _declared_point(trip.end_lat, trip.end_lng)
            started_at = trip.started_at
            ended_at = trip.completed_at
        if started_at is not None and ended_at is None:
            ended_at = utc_now()

        metrics = await self.finalize_metrics(trip_id, start, end, started_at, ended_at)
        final_position = await self.breadcrumbs.last_sample(trip_id)
        return metrics, final_position


class TelemetryRuntime:
    """Long-lived telemetry objects of one application instance."""

    def __init__(
        self,
        buffer: LatestFixBuffer,
        scheduler: LocationSamplingScheduler,
        watchdog: SamplingWatchdog,
        service: TripTelemetryService,
        routing: Optional[HttpRoutingClient] = None,
    ):
        self.buffer = buffer
        self.scheduler = scheduler
        self.watchdog = watchdog
        self.service = service
        self.routing = routing

    def start(self) -> None:
        self.watchdog.start()

    async def stop(self) -> None:
        await self.watchdog.stop()
        await self.scheduler.shutdown()
        if self.routing is not None:
            await self.routing.aclose()


def build_runtime(session_factory, redis, config: Settings = settings) -> TelemetryRuntime:
    """Wire the telemetry services from configuration."""
    store = SqlSampleStore(session_factory)
    breadcrumbs = BreadcrumbStore(store, accuracy_ceiling_meters=config.accuracy_ceiling_meters)
    buffer = LatestFixBuffer()
    alerts = OperatorAlerts(redis, store, ttl_seconds=config.operator_alert_ttl_seconds)

    scheduler = LocationSamplingScheduler(
        breadcrumbs,
        buffer.source_for,
        store=store,
        alerts=alerts,
        interval_seconds=config.sampling_interval_seconds,
        delivery_timeout_seconds=config.delivery_timeout_seconds,
        delivery_retry_delay_seconds=config.delivery_retry_delay_seconds,
        delivery_queue_size=config.delivery_queue_size,
        delivery_flush_timeout_seconds=config.delivery_flush_timeout_seconds,
    )
    watchdog = SamplingWatchdog(
        scheduler,
        store=store,
        alerts=alerts,
        interval_seconds=config.watchdog_interval_seconds,
        max_gap_seconds=config.watchdog_max_gap_seconds,
        max_restarts=config.watchdog_max_restarts,
    )

    routing = None
    if config.routing_base_url:
        routing = HttpRoutingClient(
            config.routing_base_url,
            api_key=config.routing_api_key,
            timeout_seconds=config.routing_timeout_seconds,
            breaker=CircuitBreaker(
                failure_threshold=config.routing_failure_threshold,
                reset_timeout=config.routing_reset_timeout_seconds,
            ),
        )

    service = TripTelemetryService(
        store,
        breadcrumbs,
        scheduler,
        TripMetricsCalculator(
            breadcrumbs,
            short_interval_seconds=config.jump_short_interval_seconds,
            max_speed_kmh=config.jump_max_speed_kmh,
        ),
        FallbackEscalationChain(
            routing,
            road_curvature_factor=config.road_curvature_factor,
            min_distance_km=config.min_distance_km,
            plausibility_ratio=config.fallback_plausibility_ratio,
        ),
    )
    return TelemetryRuntime(buffer, scheduler, watchdog, service, routing)
