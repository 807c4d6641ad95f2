"""
Observability Middleware.

Adds correlation IDs and structured logging context to requests. Requests
addressed to a trip carry that trip's sampler state in the log record and
in the X-Tracking-Status header, so a driver-app report can be matched to
what the server saw.
"""

import time
import uuid
import logging
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("trip_telemetry.http")

TRACKING_STATUS_HEADER = "X-Tracking-Status"


def _tracking_context(request: Request, trip_id: Optional[str]) -> dict:
    if trip_id is None:
        return {}
    runtime = getattr(request.app.state, "telemetry", None)
    if runtime is None:
        return {}
    session = runtime.scheduler.get_session(trip_id)
    if session is None:
        return {"session_status": None}
    return {
        "session_status": session.status.value,
        "restart_count": session.restart_count,
        "samples_dropped": session.channel.dropped,
    }


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        start_time = time.perf_counter()

        response = await call_next(request)

        process_time = (time.perf_counter() - start_time) * 1000  # ms
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = f"{process_time:.2f}"

        # Path params are only filled in once routing has run
        trip_id = request.path_params.get("trip_id")
        tracking = _tracking_context(request, trip_id)
        if tracking.get("session_status"):
            response.headers[TRACKING_STATUS_HEADER] = tracking["session_status"]

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(process_time, 2),
            "trip_id": trip_id,
            **tracking,
        }

        if response.status_code >= 500:
            logger.error("Request Failed", extra=log_data)
        elif response.status_code >= 400:
            logger.warning("Request Error", extra=log_data)
        elif tracking.get("session_status") in ("Degraded", "Failed"):
            logger.info("Request on unhealthy tracking session", extra=log_data)
        else:
            logger.debug("Request API", extra=log_data)

        return response
