"""
Breadcrumb Store.

Append-only per-trip log of position samples. Every sample is kept for
audit; only samples within the accuracy ceiling take part in distance
computation.
"""

from typing import List, Optional

from trip_telemetry.app.schemas.telemetry import PositionSample


class BreadcrumbStore:

    def __init__(self, store, accuracy_ceiling_meters: float = 100.0):
        self._store = store
        self.accuracy_ceiling_meters = accuracy_ceiling_meters

    async def append(self, sample: PositionSample) -> None:
        """Persist a sample. Re-appending the same sequence number is a no-op."""
        await self._store.insert_sample(sample.to_record())

    async def query(self, trip_id: str) -> List[PositionSample]:
        """All stored samples in sequence order. Reads storage on every call."""
        return await self._store.fetch_samples(trip_id)

    async def query_accepted(self, trip_id: str) -> List[PositionSample]:
        """Samples good enough for distance computation."""
        return [s for s in await self.query(trip_id) if self.is_accurate(s)]

    async def last_sample(self, trip_id: str) -> Optional[PositionSample]:
        return await self._store.fetch_last_sample(trip_id)

    def is_accurate(self, sample: PositionSample) -> bool:
        # No accuracy reading means the source did not report one; keep it
        if sample.accuracy_meters is None:
            return True
        return sample.accuracy_meters <= self.accuracy_ceiling_meters
