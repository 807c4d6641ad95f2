"""
Operator alerts for tracking problems.

A persistent problem (location permission revoked, GPS gone quiet) should
prompt the human operator once per tracking session, not on every check. The
"already shown" marker lives in Redis so it survives restarts of the sampling
loop; when Redis is unreachable an in-process set takes over.
"""

import logging
from typing import Awaitable, Callable, Optional, Set

from redis.exceptions import RedisError

from trip_telemetry.app.core.redis_client import set_once
from trip_telemetry.app.models.trip_enums import TrackingEventType
from trip_telemetry.app.services.tracking_events import log_event

logger = logging.getLogger(__name__)

ALERT_KEY_PREFIX = "gps_alert_shown"
STALL_KEY_PREFIX = "gps_stall_shown"

# Receives (trip_id, owner_id, reason); delivery to the operator happens outside this service
AlertNotifier = Callable[[str, str, str], Awaitable[None]]


class OperatorAlerts:

    def __init__(
        self,
        redis,
        store,
        ttl_seconds: int = 86400,
        notifier: Optional[AlertNotifier] = None,
    ):
        self._redis = redis
        self._store = store
        self.ttl_seconds = ttl_seconds
        self._notifier = notifier
        self._shown_locally: Set[str] = set()

    @staticmethod
    def alert_key(trip_id: str, session_id: str) -> str:
        return f"{ALERT_KEY_PREFIX}:{trip_id}:{session_id}"

    @staticmethod
    def stall_key(trip_id: str, session_id: str) -> str:
        return f"{STALL_KEY_PREFIX}:{trip_id}:{session_id}"

    async def _claim(self, key: str) -> bool:
        if key in self._shown_locally:
            return False
        try:
            claimed = await set_once(self._redis, key, self.ttl_seconds)
        except (RedisError, OSError):
            logger.warning("Redis unavailable for alert dedupe, using in-process marker", exc_info=True)
            claimed = True
        self._shown_locally.add(key)
        return claimed

    async def _notify(self, trip_id: str, owner_id: str, reason: str) -> None:
        logger.warning("Operator alert for trip %s: %s", trip_id, reason, extra={"owner_id": owner_id})
        if self._notifier is None:
            return
        try:
            await self._notifier(trip_id, owner_id, reason)
        except Exception:
            logger.warning("Alert notifier failed for trip %s", trip_id, exc_info=True)

    async def permission_denied(self, trip_id: str, owner_id: str, session_id: str) -> bool:
        """
        Prompt the operator about missing location permission.

        Returns:
            True if the prompt was issued now, False if it was already shown
        """
        if not await self._claim(self.alert_key(trip_id, session_id)):
            return False

        reason = "Location permission denied; distance tracking may be inaccurate"
        await log_event(
            self._store, trip_id, TrackingEventType.PERMISSION_DENIED, reason,
            {"owner_id": owner_id, "session_id": session_id}
        )
        await self._notify(trip_id, owner_id, reason)
        return True

    async def tracking_stalled(self, trip_id: str, owner_id: str, session_id: str, samples_acquired: int) -> bool:
        """
        Warn the operator that GPS stopped updating for a trip.

        The watchdog already records the Degraded/Failed transition in the
        event log, so this only reaches the operator.

        Returns:
            True if the warning was issued now, False if it was already shown
        """
        if not await self._claim(self.stall_key(trip_id, session_id)):
            return False

        if samples_acquired == 0:
            reason = "No GPS points collected; distance will be estimated"
        else:
            reason = "GPS stopped updating; distance may be inaccurate"
        await self._notify(trip_id, owner_id, reason)
        return True

    def forget(self, trip_id: str, session_id: str) -> None:
        self._shown_locally.discard(self.alert_key(trip_id, session_id))
        self._shown_locally.discard(self.stall_key(trip_id, session_id))
