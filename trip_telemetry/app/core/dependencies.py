"""
Telemetry dependencies for FastAPI.

The telemetry runtime is built once in the application lifespan and kept
on app.state; endpoints reach it through these dependencies.
"""

from fastapi import Request

from trip_telemetry.app.services.position_source import LatestFixBuffer
from trip_telemetry.app.services.telemetry_service import TelemetryRuntime, TripTelemetryService


def get_runtime(request: Request) -> TelemetryRuntime:
    return request.app.state.telemetry


def get_telemetry(request: Request) -> TripTelemetryService:
    """FastAPI dependency returning the trip telemetry service."""
    return get_runtime(request).service


def get_fix_buffer(request: Request) -> LatestFixBuffer:
    """FastAPI dependency returning the buffer driver apps push fixes into."""
    return get_runtime(request).buffer
