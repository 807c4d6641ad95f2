"""
Trip telemetry orchestration tests.

finalize_metrics decides between breadcrumbs and the fallback tiers and
stores the answer once; complete_trip stops tracking first.
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from trip_telemetry.app.core.exceptions import AllFallbacksExhausted, RoutingServiceUnavailable
from trip_telemetry.app.models.trip_enums import MetricsMethod, TrackingEventType, TripKind
from trip_telemetry.app.schemas.telemetry import Coordinate, RouteEstimate
from trip_telemetry.app.services.fallback_chain import FallbackEscalationChain
from trip_telemetry.app.services.geo import haversine_distance
from trip_telemetry.app.services.location_sampler import LocationSamplingScheduler
from trip_telemetry.app.services.telemetry_service import TripTelemetryService
from trip_telemetry.app.services.trip_calculator import TripMetricsCalculator
from trip_telemetry.tests.fakes import (
    BASE_TIME, FakeRouting, ScriptedPositionSource, SourceFactory, TripRow, make_fix, make_sample, wait_until,
)

START = Coordinate(latitude=12.90, longitude=77.60)
END = Coordinate(latitude=13.00, longitude=77.70)


@pytest.fixture
async def build_service(breadcrumbs, memory_store):
    schedulers = []

    def factory(routing=None, source=None):
        scheduler = LocationSamplingScheduler(
            breadcrumbs,
            SourceFactory(source or ScriptedPositionSource()),
            store=memory_store,
            interval_seconds=0.01,
            delivery_flush_timeout_seconds=1.0,
        )
        schedulers.append(scheduler)
        return TripTelemetryService(
            memory_store,
            breadcrumbs,
            scheduler,
            TripMetricsCalculator(breadcrumbs),
            FallbackEscalationChain(routing),
            persist_retry_delay_seconds=0.01,
        )

    yield factory
    for scheduler in schedulers:
        await scheduler.shutdown()


async def _track(breadcrumbs, points):
    for seq, (lat, lon, seconds) in enumerate(points):
        await breadcrumbs.append(make_sample(seq, lat, lon, seconds))


@pytest.mark.asyncio
async def test_breadcrumbs_used_when_plausible(build_service, breadcrumbs, memory_store):
    service = build_service()
    await _track(breadcrumbs, [(12.90, 77.60, 0), (12.95, 77.65, 180)])

    metrics = await service.finalize_metrics("trip-1", Coordinate(latitude=12.90, longitude=77.60),
                                             Coordinate(latitude=12.95, longitude=77.65))

    assert metrics.method == MetricsMethod.BREADCRUMBS
    assert metrics.distance_km == pytest.approx(haversine_distance(12.90, 77.60, 12.95, 77.65))
    assert metrics.duration_minutes == 3
    assert metrics.sample_count_used == 2
    decision = memory_store.events_of(TrackingEventType.DISTANCE_DECISION)
    assert decision[0][3]["method"] == "breadcrumbs"
    assert decision[0][3]["fallback_reason"] is None


@pytest.mark.asyncio
async def test_no_samples_tries_routing_first(build_service):
    routing = FakeRouting(RouteEstimate(distance_km=18.4, duration_minutes=35))
    service = build_service(routing)

    metrics = await service.finalize_metrics("trip-1", START, END)

    assert len(routing.calls) == 1
    assert metrics.method == MetricsMethod.ROUTING_API
    assert metrics.distance_km == 18.4


@pytest.mark.asyncio
async def test_single_sample_and_routing_failure_gives_straight_line(build_service, breadcrumbs):
    routing = FakeRouting(error=RoutingServiceUnavailable("timeout"))
    service = build_service(routing)
    await _track(breadcrumbs, [(12.90, 77.60, 0)])

    metrics = await service.finalize_metrics("trip-1", START, END)

    assert len(routing.calls) == 1
    assert metrics.method == MetricsMethod.STRAIGHT_LINE_ESTIMATE
    assert metrics.distance_km == pytest.approx(haversine_distance(12.90, 77.60, 13.00, 77.70) * 1.3)


@pytest.mark.asyncio
async def test_incomplete_track_escalates(build_service, breadcrumbs, memory_store):
    service = build_service()
    # 1.1 km tracked for a ~15 km trip
    await _track(breadcrumbs, [(12.90, 77.60, 0), (12.91, 77.60, 600)])

    metrics = await service.finalize_metrics("trip-1", START, END)

    assert metrics.method == MetricsMethod.STRAIGHT_LINE_ESTIMATE
    # GPS duration is still the best duration available
    assert metrics.duration_minutes == 10
    decision = memory_store.events_of(TrackingEventType.DISTANCE_DECISION)
    assert decision[0][3]["fallback_reason"] == "incomplete_track"


@pytest.mark.asyncio
async def test_missing_coordinates_raise(build_service):
    service = build_service()
    with pytest.raises(AllFallbacksExhausted):
        await service.finalize_metrics("trip-1", None, END)


@pytest.mark.asyncio
async def test_finalize_is_idempotent(build_service, breadcrumbs, memory_store):
    service = build_service()
    first = await service.finalize_metrics("trip-1", START, END)

    await _track(breadcrumbs, [(12.90, 77.60, 0), (13.00, 77.70, 1200)])
    second = await service.finalize_metrics("trip-1", START, END)

    assert second == first
    assert len(memory_store.events_of(TrackingEventType.DISTANCE_DECISION)) == 1


@pytest.mark.asyncio
async def test_metrics_persist_retried_once(build_service, memory_store):
    memory_store.metrics_failures = [OperationalError("INSERT", {}, ConnectionError("reset"))]
    service = build_service()

    metrics = await service.finalize_metrics("trip-1", START, END)

    assert memory_store.metrics["trip-1"] == metrics


@pytest.mark.asyncio
async def test_metrics_returned_even_if_not_stored(build_service, memory_store):
    memory_store.metrics_failures = [ValueError("rejected")]
    service = build_service()

    metrics = await service.finalize_metrics("trip-1", START, END)

    assert metrics.method == MetricsMethod.STRAIGHT_LINE_ESTIMATE
    assert "trip-1" not in memory_store.metrics


@pytest.mark.asyncio
async def test_event_log_failure_does_not_block_finalize(build_service, memory_store):
    memory_store.event_failure = RuntimeError("event table gone")
    service = build_service()

    metrics = await service.finalize_metrics("trip-1", START, END)

    assert metrics.distance_km > 0


@pytest.mark.asyncio
async def test_complete_trip_stops_tracking_and_reports_final_position(build_service, memory_store):
    source = ScriptedPositionSource([
        make_fix(12.90, 77.60, 0),
        make_fix(12.93, 77.63, 120),
        make_fix(12.95, 77.65, 240),
    ])
    service = build_service(source=source)
    memory_store.trips["trip-1"] = TripRow(
        "trip-1", start=(12.90, 77.60), end=(12.95, 77.65),
        started_at=BASE_TIME, completed_at=BASE_TIME + timedelta(minutes=4),
    )

    await service.start_tracking("trip-1", TripKind.REGULAR, "driver-1")
    session = service.scheduler.get_session("trip-1")
    assert await wait_until(lambda: session.samples_acquired == 3)

    metrics, final_position = await service.complete_trip("trip-1")

    assert service.scheduler.get_session("trip-1") is None
    assert metrics.method == MetricsMethod.BREADCRUMBS
    assert metrics.sample_count_used == 3
    assert metrics.duration_minutes == 4
    assert final_position.latitude == pytest.approx(12.95)


@pytest.mark.asyncio
async def test_complete_trip_uses_trip_record_for_fallback(build_service, memory_store):
    service = build_service()
    memory_store.trips["trip-1"] = TripRow(
        "trip-1", start=(12.90, 77.60), end=(13.00, 77.70),
        started_at=BASE_TIME, completed_at=BASE_TIME + timedelta(minutes=27),
    )

    metrics, final_position = await service.complete_trip("trip-1")

    assert metrics.method == MetricsMethod.STRAIGHT_LINE_ESTIMATE
    assert metrics.duration_minutes == 27
    assert final_position is None


@pytest.mark.asyncio
async def test_complete_unknown_trip_without_coordinates_raises(build_service):
    service = build_service()
    with pytest.raises(AllFallbacksExhausted):
        await service.complete_trip("ghost")
