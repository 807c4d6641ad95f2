"""
Durable sample store backed by SQLAlchemy.

Every insert is idempotent so callers can retry freely: a sample is keyed
by (trip_id, sequence_number) and metrics by trip_id.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trip_telemetry.app.models.trip import Trip
from trip_telemetry.app.models.trip_location import TripLocation
from trip_telemetry.app.models.trip_metrics import TripMetricsRecord
from trip_telemetry.app.models.tracking_event import TrackingEvent
from trip_telemetry.app.models.trip_enums import TrackingEventType
from trip_telemetry.app.schemas.telemetry import PositionSample, TripMetrics


def _to_sample(row: TripLocation) -> PositionSample:
    return PositionSample(
        trip_id=row.trip_id,
        owner_id=row.owner_id,
        latitude=row.latitude,
        longitude=row.longitude,
        accuracy_meters=row.accuracy_meters,
        speed=row.speed,
        heading=row.heading,
        altitude=row.altitude,
        captured_at=row.recorded_at,
        sequence_number=row.sequence_number,
    )


class SqlSampleStore:
    """DurableStore implementation; opens one short session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def insert_sample(self, record: Dict[str, Any]) -> None:
        """
        Insert one breadcrumb row.

        Raises:
            IntegrityError: Constraint violation other than a duplicate
            DBAPIError: Connection level failures (retryable)
        """
        async with self._session_factory() as db:
            db.add(TripLocation(**record))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                if await self._sample_exists(db, record["trip_id"], record["sequence_number"]):
                    return
                raise

    async def _sample_exists(self, db: AsyncSession, trip_id: str, sequence_number: int) -> bool:
        result = await db.execute(
            select(TripLocation.id).where(
                TripLocation.trip_id == trip_id,
                TripLocation.sequence_number == sequence_number
            )
        )
        return result.scalar_one_or_none() is not None

    async def fetch_samples(self, trip_id: str) -> List[PositionSample]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(TripLocation)
                .where(TripLocation.trip_id == trip_id)
                .order_by(TripLocation.sequence_number)
            )
            return [_to_sample(row) for row in result.scalars().all()]

    async def fetch_last_sample(self, trip_id: str) -> Optional[PositionSample]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(TripLocation)
                .where(TripLocation.trip_id == trip_id)
                .order_by(TripLocation.sequence_number.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _to_sample(row) if row else None

    async def insert_metrics(self, metrics: TripMetrics) -> TripMetrics:
        """
        Store final metrics once.

        Returns:
            The stored metrics (the earlier row if one already existed)
        """
        async with self._session_factory() as db:
            db.add(TripMetricsRecord(**metrics.model_dump()))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                existing = await self._get_metrics(db, metrics.trip_id)
                if existing is None:
                    raise
                return existing
            return metrics

    async def fetch_metrics(self, trip_id: str) -> Optional[TripMetrics]:
        async with self._session_factory() as db:
            return await self._get_metrics(db, trip_id)

    async def _get_metrics(self, db: AsyncSession, trip_id: str) -> Optional[TripMetrics]:
        result = await db.execute(
            select(TripMetricsRecord).where(TripMetricsRecord.trip_id == trip_id)
        )
        row = result.scalar_one_or_none()
        return TripMetrics.model_validate(row) if row else None

    async def fetch_trip(self, trip_id: str) -> Optional[Trip]:
        async with self._session_factory() as db:
            return await db.get(Trip, trip_id)

    async def insert_event(
        self,
        trip_id: str,
        event_type: TrackingEventType,
        message: str,
        payload: Optional[dict] = None
    ) -> None:
        async with self._session_factory() as db:
            db.add(TrackingEvent(
                trip_id=trip_id,
                event_type=event_type,
                message=message,
                payload=payload
            ))
            await db.commit()

    async def fetch_events(self, trip_id: str) -> List[TrackingEvent]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(TrackingEvent)
                .where(TrackingEvent.trip_id == trip_id)
                .order_by(TrackingEvent.id)
            )
            return list(result.scalars().all())
