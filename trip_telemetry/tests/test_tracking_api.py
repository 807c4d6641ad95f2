"""
Trip tracking API tests.

Drives the full stack (HTTP -> sampler -> delivery -> SQLite) the way the
driver app and the dispatch side would.
"""

from datetime import datetime, timezone

import pytest

from trip_telemetry.app.models.trip_enums import TrackingEventType
from trip_telemetry.tests.fakes import wait_until

START_URL = "/v1/driver/trips/{}/tracking/start"
STOP_URL = "/v1/driver/trips/{}/tracking/stop"
FIX_URL = "/v1/driver/trips/{}/fix"


def fix(lat, lon, timestamp, accuracy=10.0):
    return {"latitude": lat, "longitude": lon, "accuracy_meters": accuracy, "recorded_at": timestamp}


async def push_and_wait(client, runtime, trip_id, body, expected):
    response = await client.post(FIX_URL.format(trip_id), json=body)
    assert response.status_code == 200
    session = runtime.scheduler.get_session(trip_id)
    assert await wait_until(lambda: session.samples_acquired == expected)


@pytest.mark.asyncio
async def test_start_tracking_is_idempotent(client):
    body = {"kind": "regular", "owner_id": "driver-1"}

    first = await client.post(START_URL.format("trip-1"), json=body)
    second = await client.post(START_URL.format("trip-1"), json=body)

    assert first.status_code == 200
    assert first.json() == {"trip_id": "trip-1", "tracking": True, "status": "Sampling"}
    assert second.json()["tracking"] is True


@pytest.mark.asyncio
async def test_start_requires_owner(client):
    response = await client.post(START_URL.format("trip-1"), json={"kind": "regular"})
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_stop_unknown_trip_is_noop(client):
    response = await client.post(STOP_URL.format("ghost"))
    assert response.status_code == 200
    assert response.json() == {"trip_id": "ghost", "status": None}


@pytest.mark.asyncio
async def test_fix_without_session_is_404(client):
    response = await client.post(FIX_URL.format("ghost"), json=fix(12.90, 77.60, "2024-01-01T08:00:00Z"))
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_tracking_snapshot(client, runtime):
    await client.post(START_URL.format("trip-1"), json={"kind": "round_trip", "owner_id": "driver-1"})
    await push_and_wait(client, runtime, "trip-1", fix(12.90, 77.60, "2024-01-01T08:00:00Z"), 1)

    response = await client.get("/v1/trips/trip-1/tracking")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "Sampling"
    assert data["kind"] == "round_trip"
    assert data["samples_acquired"] == 1
    assert data["restart_count"] == 0
    assert response.headers["X-Tracking-Status"] == "Sampling"

    missing = await client.get("/v1/trips/ghost/tracking")
    assert missing.status_code == 404
    assert "X-Tracking-Status" not in missing.headers


@pytest.mark.asyncio
async def test_track_stop_and_measure(client, runtime):
    await client.post(START_URL.format("trip-1"), json={"kind": "regular", "owner_id": "driver-1"})
    await push_and_wait(client, runtime, "trip-1", fix(12.90, 77.60, "2024-01-01T08:00:00Z"), 1)
    await push_and_wait(client, runtime, "trip-1", fix(12.95, 77.65, "2024-01-01T08:03:00Z"), 2)

    stop = await client.post(STOP_URL.format("trip-1"))
    assert stop.json()["status"] == "Stopped"

    breadcrumbs = await client.get("/v1/trips/trip-1/breadcrumbs")
    data = breadcrumbs.json()
    assert data["total_locations"] == 2
    assert [loc["sequence_number"] for loc in data["locations"]] == [0, 1]

    distance = await client.get("/v1/trips/trip-1/distance")
    duration = await client.get("/v1/trips/trip-1/duration")
    assert distance.json()["distance_km"] == pytest.approx(7.76, abs=0.05)
    assert distance.json()["points_used"] == 2
    assert duration.json()["duration_minutes"] == 3


@pytest.mark.asyncio
async def test_distance_with_too_few_samples_is_422(client):
    response = await client.get("/v1/trips/trip-1/distance")
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_METRICS_001"


@pytest.mark.asyncio
async def test_metrics_straight_line_without_samples(client):
    body = {
        "start": {"latitude": 12.90, "longitude": 77.60},
        "end": {"latitude": 13.00, "longitude": 77.70},
    }
    response = await client.post("/v1/trips/trip-1/metrics", json=body)

    assert response.status_code == 200
    data = response.json()
    assert data["method"] == "straight_line_estimate"
    assert data["distance_km"] == pytest.approx(15.5 * 1.3, rel=0.01)
    assert data["sample_count_used"] == 0


@pytest.mark.asyncio
async def test_metrics_without_coordinates_is_422(client):
    response = await client.post("/v1/trips/trip-1/metrics", json={})
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_METRICS_002"


@pytest.mark.asyncio
async def test_complete_trip(client, runtime):
    await client.post(START_URL.format("trip-1"), json={"kind": "regular", "owner_id": "driver-1"})
    await push_and_wait(client, runtime, "trip-1", fix(12.90, 77.60, "2024-01-01T08:00:00Z"), 1)
    await push_and_wait(client, runtime, "trip-1", fix(12.95, 77.65, "2024-01-01T08:03:00Z"), 2)

    response = await client.post("/v1/trips/trip-1/complete", json={
        "start": {"latitude": 12.90, "longitude": 77.60},
        "end": {"latitude": 12.95, "longitude": 77.65},
    })

    assert response.status_code == 200
    data = response.json()
    assert data["method"] == "breadcrumbs"
    assert data["duration_minutes"] == 3
    assert data["final_position"] == {"latitude": 12.95, "longitude": 77.65}
    assert runtime.scheduler.get_session("trip-1") is None


@pytest.mark.asyncio
async def test_permission_revoked_alerts_once(client, runtime, sample_store):
    await client.post(START_URL.format("trip-1"), json={"kind": "regular", "owner_id": "driver-1"})

    response = await client.post("/v1/driver/trips/trip-1/permission", json={"granted": False})
    assert response.status_code == 200
    assert response.json() == {"trip_id": "trip-1", "granted": False, "status": "Sampling"}

    async def denied_events():
        events = await sample_store.fetch_events("trip-1")
        return [e for e in events if e.event_type == TrackingEventType.PERMISSION_DENIED]

    assert await wait_until(denied_events)
    session = runtime.scheduler.get_session("trip-1")
    assert session.permission_denied

    # Further denied ticks do not prompt again
    await wait_until(lambda: False, timeout=0.1)
    await client.post(STOP_URL.format("trip-1"))
    assert len(await denied_events()) == 1


@pytest.mark.asyncio
async def test_health(client, mocker):
    mocker.patch("trip_telemetry.app.main._database_ok", return_value=True)
    mocker.patch("trip_telemetry.app.main.ping_redis", return_value=False)

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["redis"] is False
    assert "X-Correlation-ID" in response.headers
    assert "X-Tracking-Status" not in response.headers


@pytest.mark.asyncio
async def test_permission_update_for_untracked_trip(client):
    response = await client.post("/v1/driver/trips/ghost/permission", json={"granted": True})
    assert response.status_code == 200
    assert response.json() == {"trip_id": "ghost", "granted": True, "status": None}


@pytest.mark.asyncio
async def test_fixes_with_mixed_time_zones(client, runtime):
    await client.post(START_URL.format("trip-1"), json={"kind": "regular", "owner_id": "driver-1"})

    first = await client.post(FIX_URL.format("trip-1"), json=fix(12.90, 77.60, "2025-01-01T10:00:00Z"))
    second = await client.post(FIX_URL.format("trip-1"), json=fix(12.9005, 77.60, "2025-01-01T10:00:02"))

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["accepted"] is True

    third = await client.post(FIX_URL.format("trip-1"), json=fix(12.901, 77.60, "2025-01-01T12:00:06+02:00"))
    assert third.status_code == 200

    session = runtime.scheduler.get_session("trip-1")
    last = datetime(2025, 1, 1, 10, 0, 6, tzinfo=timezone.utc)
    assert await wait_until(lambda: session.last_captured_at == last)
