"""
Trip Location database model.

Stores the GPS breadcrumb trail of a trip. Append-only.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from trip_telemetry.app.db.session import Base


class TripLocation(Base):
    """
    Trip Location model.

    One row per position sample. (trip_id, sequence_number) is unique so a
    retried insert of the same sample cannot create a second row.
    """
    __tablename__ = "trip_locations"
    __table_args__ = (
        UniqueConstraint("trip_id", "sequence_number", name="uq_trip_locations_trip_seq"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    trip_id = Column(String(64), nullable=False, index=True)
    owner_id = Column(String(64), nullable=False)
    sequence_number = Column(Integer, nullable=False)

    # GPS reading
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy_meters = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)
    heading = Column(Float, nullable=True)
    altitude = Column(Float, nullable=True)

    # Timing
    recorded_at = Column(DateTime(timezone=True), nullable=False)  # Source clock
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<TripLocation(trip_id={self.trip_id}, seq={self.sequence_number}, lat={self.latitude}, lng={self.longitude})>"
