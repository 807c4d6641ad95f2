"""
Server-side position source.

The driver app pushes fixes over HTTP; the sampler pulls them on its own
cadence. Only the newest unconsumed fix per trip is kept, so a burst of
pushes between two ticks collapses into one sample.
"""

from typing import Dict, Optional, Set

from trip_telemetry.app.core.exceptions import AcquisitionFailure, PermissionDenied
from trip_telemetry.app.schemas.telemetry import PositionFix


class LatestFixBuffer:

    def __init__(self):
        self._latest: Dict[str, PositionFix] = {}
        self._denied: Set[str] = set()

    def push(self, trip_id: str, fix: PositionFix) -> bool:
        """
        Offer a fix for the trip.

        Returns:
            False if a newer fix is already waiting (the offered one is ignored)
        """
        current = self._latest.get(trip_id)
        if current is not None and current.captured_at > fix.captured_at:
            return False
        self._latest[trip_id] = fix
        # A fix proves the app can read location again
        self._denied.discard(trip_id)
        return True

    def take(self, trip_id: str) -> Optional[PositionFix]:
        return self._latest.pop(trip_id, None)

    def set_permission(self, trip_id: str, granted: bool) -> None:
        if granted:
            self._denied.discard(trip_id)
        else:
            self._denied.add(trip_id)

    def is_denied(self, trip_id: str) -> bool:
        return trip_id in self._denied

    def discard(self, trip_id: str) -> None:
        self._latest.pop(trip_id, None)
        self._denied.discard(trip_id)

    def source_for(self, trip_id: str, owner_id: str) -> "BufferedPositionSource":
        """PositionSourceFactory for the sampler."""
        return BufferedPositionSource(self, trip_id)


class BufferedPositionSource:
    """PositionSource reading one trip's slot of a LatestFixBuffer."""

    def __init__(self, buffer: LatestFixBuffer, trip_id: str):
        self._buffer = buffer
        self.trip_id = trip_id

    async def has_permission(self) -> bool:
        return not self._buffer.is_denied(self.trip_id)

    async def get_fix(self) -> PositionFix:
        if self._buffer.is_denied(self.trip_id):
            raise PermissionDenied(self.trip_id)
        fix = self._buffer.take(self.trip_id)
        if fix is None:
            raise AcquisitionFailure("No new fix since the last tick", self.trip_id)
        return fix
