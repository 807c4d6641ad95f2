"""
Trip and telemetry enumerations.
"""

import enum


class TripStatus(str, enum.Enum):
    """Trip status enumeration (owned by the dispatch side, read here)."""
    PENDING = "pending"  # Assigned, not started
    ACTIVE = "active"  # Driver is on the trip, sampling runs
    COMPLETED = "completed"  # Metrics finalized
    FAILED = "failed"  # Trip aborted


class TripKind(str, enum.Enum):
    """Trip category."""
    REGULAR = "regular"  # Point-to-point, tracked end to end
    SCHEDULED = "scheduled"  # Pre-booked, tracked end to end
    ROUND_TRIP = "round_trip"  # Return leg is billed but not tracked

    @property
    def has_untracked_return(self) -> bool:
        """True when billing must account for a return leg the tracker never saw."""
        return self is TripKind.ROUND_TRIP


class SessionStatus(str, enum.Enum):
    """Sampler session state."""
    IDLE = "Idle"
    SAMPLING = "Sampling"
    DEGRADED = "Degraded"  # Watchdog saw a heartbeat gap and restarted the loop
    STOPPED = "Stopped"  # Terminal
    FAILED = "Failed"  # Restart ceiling exceeded

    @property
    def is_active(self) -> bool:
        return self in (SessionStatus.SAMPLING, SessionStatus.DEGRADED)


class MetricsMethod(str, enum.Enum):
    """Which tier produced the trip metrics."""
    BREADCRUMBS = "breadcrumbs"
    ROUTING_API = "routing_api"
    STRAIGHT_LINE_ESTIMATE = "straight_line_estimate"


class TrackingEventType(str, enum.Enum):
    """Lifecycle decisions recorded in the tracking event log."""
    TRACKING_STARTED = "TRACKING_STARTED"
    TRACKING_STOPPED = "TRACKING_STOPPED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    SESSION_DEGRADED = "SESSION_DEGRADED"
    SESSION_RESTARTED = "SESSION_RESTARTED"
    SESSION_FAILED = "SESSION_FAILED"
    DISTANCE_DECISION = "DISTANCE_DECISION"
