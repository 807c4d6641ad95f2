"""
Custom exceptions and error handlers for consistent error responses.

Provides the telemetry error taxonomy, standardized error codes and
global exception handlers.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


# Acquisition

class PermissionDenied(AppException):
    """Raised when the position source has no location permission."""

    def __init__(self, trip_id: str = None, message: str = "Location permission denied"):
        super().__init__(
            message=message,
            error_code="ERR_GPS_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details={"trip_id": trip_id}
        )


class AcquisitionFailure(AppException):
    """Transient sensor error; retried on the next tick."""

    def __init__(self, message: str = "Position fix unavailable", trip_id: str = None):
        super().__init__(
            message=message,
            error_code="ERR_GPS_002",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"trip_id": trip_id}
        )


# Delivery

class DeliveryTimeout(AppException):
    """Store did not answer (timeout or lost connection). Retryable once."""

    def __init__(self, trip_id: str, sequence_number: int, reason: str):
        super().__init__(
            message=f"Delivery of sample {sequence_number} did not complete: {reason}",
            error_code="ERR_DELIVERY_001",
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            details={"trip_id": trip_id, "sequence_number": sequence_number}
        )


class DeliveryPermanentFailure(AppException):
    """Persistence rejected the sample. Not retryable."""

    def __init__(self, trip_id: str, sequence_number: int, reason: str):
        super().__init__(
            message=f"Delivery of sample {sequence_number} failed permanently: {reason}",
            error_code="ERR_DELIVERY_002",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"trip_id": trip_id, "sequence_number": sequence_number}
        )


# Metrics

class InsufficientSamples(AppException):
    """Fewer than two accuracy-accepted samples exist for the trip."""

    def __init__(self, trip_id: str, available: int):
        super().__init__(
            message=f"Trip {trip_id} has {available} usable sample(s), need at least 2",
            error_code="ERR_METRICS_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"trip_id": trip_id, "available": available}
        )
        self.available = available


class RoutingServiceUnavailable(AppException):
    """Routing collaborator failed, timed out, or returned no route."""

    def __init__(self, message: str = "Routing service unavailable"):
        super().__init__(
            message=message,
            error_code="ERR_ROUTING_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )


class AllFallbacksExhausted(AppException):
    """No tier could produce trip metrics. Blocks trip completion."""

    def __init__(self, trip_id: str, reason: str = "Missing start or end coordinates"):
        super().__init__(
            message=f"Could not compute metrics for trip {trip_id}: {reason}",
            error_code="ERR_METRICS_002",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"trip_id": trip_id}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
