"""
Trip database model.

Trips are created and assigned by the dispatch side; telemetry only reads
identity, kind, declared coordinates and timestamps.
"""

from sqlalchemy import Column, String, Float, DateTime, Enum
from sqlalchemy.sql import func
from trip_telemetry.app.db.session import Base
from trip_telemetry.app.models.trip_enums import TripStatus, TripKind


class Trip(Base):
    """
    Trip model.

    Declared start/end coordinates are the pickup and drop-off points the
    fallback chain estimates from when breadcrumbs are insufficient.
    """
    __tablename__ = "trips"

    id = Column(String(64), primary_key=True)
    owner_id = Column(String(64), nullable=False, index=True)

    kind = Column(Enum(TripKind), default=TripKind.REGULAR, nullable=False)
    status = Column(Enum(TripStatus), default=TripStatus.PENDING, nullable=False, index=True)

    # Declared coordinates
    start_lat = Column(Float, nullable=True)
    start_lng = Column(Float, nullable=True)
    end_lat = Column(Float, nullable=True)
    end_lng = Column(Float, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Trip(id={self.id}, kind='{self.kind.value}', status='{self.status.value}')>"
