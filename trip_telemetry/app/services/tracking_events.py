"""
Tracking event logging service.

Records sampling lifecycle decisions (start/stop, restarts, drops,
distance decisions) so a trip's telemetry can be reviewed after the fact.
"""

import logging
from typing import Any, Dict, Optional

from trip_telemetry.app.models.trip_enums import TrackingEventType

logger = logging.getLogger(__name__)


async def log_event(
    store,
    trip_id: str,
    event_type: TrackingEventType,
    message: str,
    payload: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Log a tracking event to the event table.

    Best-effort: a failing write is logged and never propagated, so a
    broken event table cannot disturb sampling or completion.

    Args:
        store: DurableStore with insert_event
        trip_id: Trip the event belongs to
        event_type: TrackingEventType constant
        message: Human readable summary
        payload: Additional JSON-serializable context

    Returns:
        True if the event was stored
    """
    logger.info("[%s] %s: %s", trip_id, event_type.value, message, extra={"trip_id": trip_id, "payload": payload})
    try:
        await store.insert_event(trip_id, event_type, message, payload)
    except Exception:
        logger.warning("Could not store %s event for trip %s", event_type.value, trip_id, exc_info=True)
        return False
    return True
