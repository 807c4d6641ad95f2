"""
Location Sampling Scheduler.

Drives periodic position acquisition for active trips. Each trip gets its
own SamplerSession with an independent acquisition task and delivery
channel; sessions live in a registry keyed by trip_id and every mutation
of a key happens under that key's lock, so trips never contend.

Session states:
    Idle -> Sampling            start_tracking
    Sampling -> Degraded        watchdog saw a heartbeat gap and restarted the loop
    Degraded -> Sampling        first sample after the restart
    Sampling/Degraded -> Failed restart ceiling exceeded (watchdog)
    any -> Stopped              stop_tracking (terminal, session leaves the registry)
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from trip_telemetry.app.core.exceptions import AcquisitionFailure, PermissionDenied
from trip_telemetry.app.models.trip_enums import SessionStatus, TrackingEventType, TripKind
from trip_telemetry.app.schemas.telemetry import PositionFix, PositionSample
from trip_telemetry.app.services.breadcrumb_store import BreadcrumbStore
from trip_telemetry.app.services.delivery import DeliveryChannel
from trip_telemetry.app.services.interfaces import PositionSource, PositionSourceFactory
from trip_telemetry.app.services.operator_alerts import OperatorAlerts
from trip_telemetry.app.services.tracking_events import log_event

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SamplerSession:
    """Per-trip sampling state. Heartbeat times use the scheduler's monotonic clock."""

    def __init__(self, trip_id: str, kind: TripKind, owner_id: str, channel: DeliveryChannel, started_at: float):
        self.session_id = uuid.uuid4().hex
        self.trip_id = trip_id
        self.kind = kind
        self.owner_id = owner_id
        self.channel = channel

        self.status = SessionStatus.IDLE
        self.started_at = started_at
        self.restarted_at: Optional[float] = None
        self.last_sample_at: Optional[float] = None
        self.last_denied_at: Optional[float] = None
        self.last_sample_wallclock: Optional[datetime] = None
        self.consecutive_missed_heartbeats = 0
        self.restart_count = 0

        self.next_sequence = 0
        self.last_captured_at: Optional[datetime] = None
        self.samples_acquired = 0
        self.permission_denied = False

        self.task: Optional[asyncio.Task] = None
        self.restart_lock = asyncio.Lock()

    def heartbeat_reference(self) -> float:
        """Latest moment the session was known to be alive (or was given a fresh start)."""
        marks = [
            m for m in (self.started_at, self.restarted_at, self.last_sample_at, self.last_denied_at)
            if m is not None
        ]
        return max(marks)

    def snapshot(self) -> dict:
        return {
            "trip_id": self.trip_id,
            "kind": self.kind,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "last_sample_at": self.last_sample_wallclock,
            "consecutive_missed_heartbeats": self.consecutive_missed_heartbeats,
            "restart_count": self.restart_count,
            "samples_acquired": self.samples_acquired,
            "samples_delivered": self.channel.delivered,
            "samples_dropped": self.channel.dropped,
        }

    def __repr__(self):
        return f"<SamplerSession(trip_id={self.trip_id}, status='{self.status.value}', restarts={self.restart_count})>"


class LocationSamplingScheduler:

    def __init__(
        self,
        breadcrumbs: BreadcrumbStore,
        source_factory: PositionSourceFactory,
        store=None,
        alerts: Optional[OperatorAlerts] = None,
        interval_seconds: float = 2.0,
        delivery_timeout_seconds: float = 5.0,
        delivery_retry_delay_seconds: float = 1.0,
        delivery_queue_size: int = 256,
        delivery_flush_timeout_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        wallclock: Callable[[], datetime] = utc_now,
    ):
        self._breadcrumbs = breadcrumbs
        self._source_factory = source_factory
        self._store = store
        self._alerts = alerts
        self.interval_seconds = interval_seconds
        self.delivery_timeout_seconds = delivery_timeout_seconds
        self.delivery_retry_delay_seconds = delivery_retry_delay_seconds
        self.delivery_queue_size = delivery_queue_size
        self.delivery_flush_timeout_seconds = delivery_flush_timeout_seconds
        self.clock = clock
        self._wallclock = wallclock

        self._sessions: Dict[str, SamplerSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # Registry

    def _lock_for(self, trip_id: str) -> asyncio.Lock:
        return self._locks.setdefault(trip_id, asyncio.Lock())

    def get_session(self, trip_id: str) -> Optional[SamplerSession]:
        return self._sessions.get(trip_id)

    def sessions(self) -> List[SamplerSession]:
        return list(self._sessions.values())

    # Lifecycle

    async def start_tracking(self, trip_id: str, kind: TripKind, owner_id: str) -> bool:
        """
        Begin sampling a trip. Idempotent for a Sampling/Degraded session.

        Returns:
            True if sampling is running, False if the position source reports
            no permission (the session still idles and resumes on its own)
        """
        async with self._lock_for(trip_id):
            existing = self._sessions.get(trip_id)
            if existing is not None and existing.status.is_active:
                logger.debug("Trip %s already tracked (%s)", trip_id, existing.status.value)
                return True
            if existing is not None:
                # Failed session: replace it with a fresh one
                await self._teardown(existing)
                del self._sessions[trip_id]

            channel = DeliveryChannel(
                trip_id,
                self._breadcrumbs,
                timeout_seconds=self.delivery_timeout_seconds,
                retry_delay_seconds=self.delivery_retry_delay_seconds,
                queue_size=self.delivery_queue_size,
            )
            session = SamplerSession(trip_id, kind, owner_id, channel, started_at=self.clock())
            session.next_sequence = await self._next_sequence(trip_id)
            source = self._source_factory(trip_id, owner_id)
            permitted = await self._probe_permission(source, trip_id)

            self._sessions[trip_id] = session
            channel.start()
            session.status = SessionStatus.SAMPLING
            session.permission_denied = not permitted
            session.task = self._spawn(session, source)

        logger.info("Started tracking trip %s (%s) for %s", trip_id, kind.value, owner_id)
        await self._event(
            trip_id, TrackingEventType.TRACKING_STARTED, "Location sampling started",
            {"kind": kind.value, "owner_id": owner_id, "interval_seconds": self.interval_seconds}
        )
        if not permitted:
            await self._alert_permission(session)
            return False
        return True

    async def stop_tracking(self, trip_id: str) -> None:
        """Cancel sampling, flush pending deliveries, drop the session. Unknown trips are a no-op."""
        async with self._lock_for(trip_id):
            session = self._sessions.get(trip_id)
            if session is None:
                return
            await self._teardown(session)
            session.status = SessionStatus.STOPPED
            del self._sessions[trip_id]

        if self._alerts is not None:
            self._alerts.forget(trip_id, session.session_id)
        logger.info(
            "Stopped tracking trip %s: %s acquired, %s delivered, %s dropped",
            trip_id, session.samples_acquired, session.channel.delivered, session.channel.dropped
        )
        await self._event(
            trip_id, TrackingEventType.TRACKING_STOPPED, "Location sampling stopped",
            {
                "samples_acquired": session.samples_acquired,
                "samples_delivered": session.channel.delivered,
                "samples_dropped": session.channel.dropped,
                "restart_count": session.restart_count,
            }
        )

    async def restart(self, trip_id: str) -> bool:
        """
        Re-acquire the position source and start a new acquisition loop.

        Sequence numbering and the delivery channel carry over.
        """
        async with self._lock_for(trip_id):
            session = self._sessions.get(trip_id)
            if session is None or not session.status.is_active:
                return False
            await self._cancel_acquisition(session)
            source = self._source_factory(trip_id, session.owner_id)
            session.restarted_at = self.clock()
            session.task = self._spawn(session, source)
        logger.info("Restarted acquisition for trip %s (restart %s)", trip_id, session.restart_count)
        return True

    async def mark_failed(self, trip_id: str) -> bool:
        """Give up on an unrecoverable session; what was sampled so far stays stored."""
        async with self._lock_for(trip_id):
            session = self._sessions.get(trip_id)
            if session is None or not session.status.is_active:
                return False
            session.status = SessionStatus.FAILED
            await self._teardown(session)
        logger.error("Sampling for trip %s failed after %s restarts", trip_id, session.restart_count)
        return True

    async def shutdown(self) -> None:
        for trip_id in list(self._sessions):
            await self.stop_tracking(trip_id)

    # Acquisition loop

    def _spawn(self, session: SamplerSession, source: PositionSource) -> asyncio.Task:
        return asyncio.create_task(self._run(session, source), name=f"sampler:{session.trip_id}")

    async def _run(self, session: SamplerSession, source: PositionSource) -> None:
        while True:
            try:
                await self._tick(session, source)
            except Exception:
                logger.exception("Sampling tick failed for trip %s", session.trip_id)
            await asyncio.sleep(self.interval_seconds)

    async def _tick(self, session: SamplerSession, source: PositionSource) -> Optional[PositionSample]:
        try:
            fix = await source.get_fix()
        except PermissionDenied:
            session.last_denied_at = self.clock()
            if not session.permission_denied:
                session.permission_denied = True
                await self._alert_permission(session)
            return None
        except AcquisitionFailure as exc:
            # The source answered without denying, so permission is back
            session.permission_denied = False
            logger.debug("No fix for trip %s: %s", session.trip_id, exc.message)
            return None

        session.permission_denied = False
        return self._accept_fix(session, fix)

    def _accept_fix(self, session: SamplerSession, fix: PositionFix) -> Optional[PositionSample]:
        if session.last_captured_at is not None and fix.captured_at < session.last_captured_at:
            logger.info(
                "Discarding out-of-order fix for trip %s (%s < %s)",
                session.trip_id, fix.captured_at, session.last_captured_at
            )
            return None

        sample = PositionSample.from_fix(fix, session.trip_id, session.owner_id, session.next_sequence)
        session.next_sequence += 1
        session.samples_acquired += 1
        session.last_captured_at = fix.captured_at
        session.last_sample_at = self.clock()
        session.last_sample_wallclock = self._wallclock()

        if session.status is SessionStatus.DEGRADED:
            session.status = SessionStatus.SAMPLING
            session.consecutive_missed_heartbeats = 0
            logger.info("Trip %s sampling again after restart", session.trip_id)

        session.channel.submit(sample)
        return sample

    # Helpers

    async def _next_sequence(self, trip_id: str) -> int:
        # A trip tracked again continues numbering after what is already stored
        try:
            last = await self._breadcrumbs.last_sample(trip_id)
        except Exception:
            logger.warning("Could not read last sample of trip %s, numbering from 0", trip_id, exc_info=True)
            return 0
        return last.sequence_number + 1 if last else 0

    async def _probe_permission(self, source: PositionSource, trip_id: str) -> bool:
        try:
            return await source.has_permission()
        except Exception:
            logger.warning("Permission probe failed for trip %s, assuming granted", trip_id, exc_info=True)
            return True

    async def _alert_permission(self, session: SamplerSession) -> None:
        if self._alerts is not None:
            await self._alerts.permission_denied(session.trip_id, session.owner_id, session.session_id)
        else:
            logger.warning("Location permission denied for trip %s", session.trip_id)

    async def _cancel_acquisition(self, session: SamplerSession) -> None:
        task, session.task = session.task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _teardown(self, session: SamplerSession) -> None:
        await self._cancel_acquisition(session)
        await session.channel.close(self.delivery_flush_timeout_seconds)

    async def _event(self, trip_id: str, event_type: TrackingEventType, message: str, payload: dict) -> None:
        if self._store is not None:
            await log_event(self._store, trip_id, event_type, message, payload)
