"""
Sampling Watchdog.

The host may freeze or kill an acquisition loop without notice. The
watchdog runs on its own timer, looks at each active session's heartbeat
(time of the last sample) and restarts loops that went quiet for longer
than the allowed gap. The operator is warned once per session when GPS
goes quiet. After too many restarts the session is marked Failed;
completion then relies on whatever was sampled plus the fallback chain.

A session waiting for location permission is idle, not stalled, and is
left alone until a fix arrives again.
"""

import asyncio
import logging
from typing import List, Optional

from trip_telemetry.app.models.trip_enums import SessionStatus, TrackingEventType
from trip_telemetry.app.services.location_sampler import LocationSamplingScheduler, SamplerSession
from trip_telemetry.app.services.operator_alerts import OperatorAlerts
from trip_telemetry.app.services.tracking_events import log_event

logger = logging.getLogger(__name__)


class SamplingWatchdog:

    def __init__(
        self,
        scheduler: LocationSamplingScheduler,
        store=None,
        alerts: Optional[OperatorAlerts] = None,
        interval_seconds: float = 15.0,
        max_gap_seconds: float = 30.0,
        max_restarts: int = 3,
    ):
        self._scheduler = scheduler
        self._store = store
        self._alerts = alerts
        self.interval_seconds = interval_seconds
        self.max_gap_seconds = max_gap_seconds
        self.max_restarts = max_restarts
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run(), name="sampling-watchdog")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.check_once()
            except Exception:
                logger.exception("Watchdog check failed")

    async def check_once(self) -> List[str]:
        """
        Scan active sessions once.

        Returns:
            Trip ids the watchdog acted on (restarted or failed)
        """
        now = self._scheduler.clock()
        acted = []
        for session in self._scheduler.sessions():
            if not session.status.is_active:
                continue
            if session.permission_denied:
                logger.debug("Trip %s waiting for location permission", session.trip_id)
                continue
            gap = now - session.heartbeat_reference()
            if gap <= self.max_gap_seconds:
                continue
            if session.restart_lock.locked():
                logger.debug("Restart already in progress for trip %s", session.trip_id)
                continue
            async with session.restart_lock:
                await self._recover(session, gap)
            acted.append(session.trip_id)
        return acted

    async def _recover(self, session: SamplerSession, gap: float) -> None:
        session.consecutive_missed_heartbeats += 1
        session.restart_count += 1
        payload = {
            "gap_seconds": round(gap, 1),
            "restart_count": session.restart_count,
            "missed_heartbeats": session.consecutive_missed_heartbeats,
        }

        if session.restart_count > self.max_restarts:
            if await self._scheduler.mark_failed(session.trip_id):
                await self._event(
                    session.trip_id, TrackingEventType.SESSION_FAILED,
                    "Sampling unrecoverable, restart ceiling exceeded", payload
                )
                await self._alert_stalled(session)
            return

        if session.status is SessionStatus.SAMPLING:
            session.status = SessionStatus.DEGRADED
            await self._event(
                session.trip_id, TrackingEventType.SESSION_DEGRADED,
                f"No sample for {gap:.0f}s", payload
            )
            await self._alert_stalled(session)
        else:
            logger.warning("Trip %s still silent after restart (%.0fs)", session.trip_id, gap)

        if await self._scheduler.restart(session.trip_id):
            await self._event(
                session.trip_id, TrackingEventType.SESSION_RESTARTED,
                "Acquisition loop restarted", payload
            )

    async def _alert_stalled(self, session: SamplerSession) -> None:
        if self._alerts is not None:
            await self._alerts.tracking_stalled(
                session.trip_id, session.owner_id, session.session_id, session.samples_acquired
            )

    async def _event(self, trip_id: str, event_type: TrackingEventType, message: str, payload: dict) -> None:
        if self._store is not None:
            await log_event(self._store, trip_id, event_type, message, payload)
