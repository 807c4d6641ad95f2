"""
Trip Metrics database model.

Final distance and duration of a trip, written once at completion.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Enum
from sqlalchemy.sql import func
from trip_telemetry.app.db.session import Base
from trip_telemetry.app.models.trip_enums import MetricsMethod


class TripMetricsRecord(Base):
    """Immutable metrics row; trip_id is unique so a repeated insert is a no-op."""
    __tablename__ = "trip_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(String(64), nullable=False, unique=True, index=True)

    distance_km = Column(Float, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    sample_count_used = Column(Integer, nullable=False, default=0)
    method = Column(Enum(MetricsMethod), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<TripMetrics(trip_id={self.trip_id}, km={self.distance_km}, method='{self.method.value}')>"
