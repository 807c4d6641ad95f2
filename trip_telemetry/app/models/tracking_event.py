"""
Tracking Event model.

Audit trail of sampling lifecycle decisions for later review.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from sqlalchemy.sql import func
from trip_telemetry.app.db.session import Base
from trip_telemetry.app.models.trip_enums import TrackingEventType


class TrackingEvent(Base):
    __tablename__ = "tracking_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    trip_id = Column(String(64), nullable=False, index=True)
    event_type = Column(Enum(TrackingEventType), nullable=False, index=True)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<TrackingEvent(trip_id={self.trip_id}, type='{self.event_type.value}')>"
