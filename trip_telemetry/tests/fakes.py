"""
Test doubles for the telemetry collaborators.
"""

import asyncio
import inspect
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from trip_telemetry.app.core.exceptions import AcquisitionFailure, RoutingServiceUnavailable
from trip_telemetry.app.schemas.telemetry import PositionFix, PositionSample, RouteEstimate, TripMetrics

BASE_TIME = datetime(2024, 1, 1, 8, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return BASE_TIME + timedelta(seconds=seconds)


def make_fix(lat: float, lon: float, seconds: float = 0, accuracy: Optional[float] = 10.0) -> PositionFix:
    return PositionFix(latitude=lat, longitude=lon, accuracy_meters=accuracy, captured_at=at(seconds))


def make_sample(
    seq: int,
    lat: float,
    lon: float,
    seconds: float,
    accuracy: Optional[float] = 10.0,
    trip_id: str = "trip-1",
) -> PositionSample:
    return PositionSample(
        trip_id=trip_id,
        owner_id="driver-1",
        latitude=lat,
        longitude=lon,
        accuracy_meters=accuracy,
        captured_at=at(seconds),
        sequence_number=seq,
    )


async def wait_until(condition, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll a sync or async predicate until it holds or the timeout passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = condition()
        if inspect.isawaitable(result):
            result = await result
        if result or loop.time() >= deadline:
            return bool(result)
        await asyncio.sleep(interval)


class FakeClock:
    """Monotonic clock moved by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TripRow:
    def __init__(self, trip_id, start=None, end=None, started_at=None, completed_at=None):
        self.id = trip_id
        self.start_lat, self.start_lng = start if start else (None, None)
        self.end_lat, self.end_lng = end if end else (None, None)
        self.started_at = started_at
        self.completed_at = completed_at


class InMemoryStore:
    """DurableStore kept in dicts, with failure injection for inserts."""

    def __init__(self):
        self.samples: Dict[Tuple[str, int], dict] = {}
        self.insert_order: List[int] = []
        self.insert_attempts = 0
        self.sample_failures: List[Exception] = []
        self.insert_delay = 0.0
        self.metrics: Dict[str, TripMetrics] = {}
        self.metrics_failures: List[Exception] = []
        self.trips: Dict[str, TripRow] = {}
        self.events: List[tuple] = []
        self.event_failure: Optional[Exception] = None

    async def insert_sample(self, record: dict) -> None:
        self.insert_attempts += 1
        if self.insert_delay:
            await asyncio.sleep(self.insert_delay)
        if self.sample_failures:
            raise self.sample_failures.pop(0)
        key = (record["trip_id"], record["sequence_number"])
        if key not in self.samples:
            self.samples[key] = dict(record)
            self.insert_order.append(record["sequence_number"])

    async def fetch_samples(self, trip_id: str) -> List[PositionSample]:
        rows = sorted(
            (r for (t, _), r in self.samples.items() if t == trip_id),
            key=lambda r: r["sequence_number"],
        )
        return [
            PositionSample(captured_at=r["recorded_at"], **{k: v for k, v in r.items() if k != "recorded_at"})
            for r in rows
        ]

    async def fetch_last_sample(self, trip_id: str) -> Optional[PositionSample]:
        samples = await self.fetch_samples(trip_id)
        return samples[-1] if samples else None

    async def insert_metrics(self, metrics: TripMetrics) -> TripMetrics:
        if self.metrics_failures:
            raise self.metrics_failures.pop(0)
        return self.metrics.setdefault(metrics.trip_id, metrics)

    async def fetch_metrics(self, trip_id: str) -> Optional[TripMetrics]:
        return self.metrics.get(trip_id)

    async def fetch_trip(self, trip_id: str) -> Optional[TripRow]:
        return self.trips.get(trip_id)

    async def insert_event(self, trip_id, event_type, message, payload=None) -> None:
        if self.event_failure is not None:
            raise self.event_failure
        self.events.append((trip_id, event_type, message, payload))

    def events_of(self, event_type) -> List[tuple]:
        return [e for e in self.events if e[1] == event_type]


class ScriptedPositionSource:
    """
    PositionSource replaying a script of fixes and exceptions.

    Once the script runs out every call raises the 'exhausted' exception,
    or hangs forever when 'hang' is set (a frozen host).
    """

    def __init__(self, script=None, permission: bool = True, exhausted: Exception = None, hang: bool = False):
        self.script = list(script or [])
        self.permission = permission
        self.exhausted = exhausted
        self.hang = hang
        self.calls = 0

    async def has_permission(self) -> bool:
        return self.permission

    async def get_fix(self) -> PositionFix:
        self.calls += 1
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        if self.hang:
            await asyncio.Event().wait()
        if self.exhausted is not None:
            raise self.exhausted
        raise AcquisitionFailure("script exhausted")


class SourceFactory:
    """PositionSourceFactory handing out prepared sources in order."""

    def __init__(self, *sources):
        self.sources = list(sources)
        self.created: List[Tuple[str, str]] = []

    def __call__(self, trip_id: str, owner_id: str):
        self.created.append((trip_id, owner_id))
        if len(self.sources) > 1:
            return self.sources.pop(0)
        return self.sources[0]


class FakeRouting:
    def __init__(self, estimate: Optional[RouteEstimate] = None, error: Optional[Exception] = None):
        self.estimate = estimate
        self.error = error
        self.calls = []

    async def route(self, start, end) -> RouteEstimate:
        self.calls.append((start, end))
        if self.error is not None:
            raise self.error
        if self.estimate is None:
            raise RoutingServiceUnavailable("no route")
        return self.estimate
