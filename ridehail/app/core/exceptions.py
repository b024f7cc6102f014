"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers. Domain
errors fall into four families: validation failures, missing resources,
lost races (state conflicts) and policy violations.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("ridehail.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


# Validation

class ValidationFailedError(AppException):
    """Raised for malformed input the caller can correct."""

    def __init__(self, message: str, error_code: str = "ERR_VALIDATION_001", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InvalidDistanceError(ValidationFailedError):
    def __init__(self, distance: Any):
        super().__init__(
            message="Distance must be a finite, non-negative number of kilometres",
            error_code="ERR_VALIDATION_002",
            details={"distance": str(distance)}
        )


class InvalidDurationError(ValidationFailedError):
    def __init__(self, duration: Any):
        super().__init__(
            message="Duration must be a finite, non-negative number of minutes",
            error_code="ERR_VALIDATION_003",
            details={"duration": str(duration)}
        )


class VehicleRequiredError(ValidationFailedError):
    def __init__(self, driver_id: str, vehicle_id: Any = None):
        message = "Driver has no registered vehicle"
        if vehicle_id:
            message = f"Vehicle {vehicle_id} is not registered to this driver"
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_004",
            details={"driver_id": driver_id, "vehicle_id": vehicle_id}
        )


class ImplausibleDistanceError(ValidationFailedError):
    def __init__(self, distance: Any, straight_line_km: float):
        super().__init__(
            message="Distance is shorter than the straight line between pickup and destination",
            error_code="ERR_VALIDATION_005",
            details={"distance": str(distance), "straight_line_km": straight_line_km}
        )


# Not found

class NotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None, error_code: str = "ERR_NOT_FOUND_001"):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class TripNotFoundError(NotFoundError):
    def __init__(self, trip_id: Any):
        super().__init__("Trip", trip_id, error_code="ERR_NOT_FOUND_002")


class PlanNotFoundError(NotFoundError):
    def __init__(self, plan_name: str):
        super().__init__("Pricing plan", plan_name, error_code="ERR_NOT_FOUND_003")
        self.message = f"Pricing plan '{plan_name}' not found or inactive"


# State conflicts (lost races; expected under concurrency)

class StateConflictError(AppException):
    def __init__(self, message: str, error_code: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class AlreadyMatchedError(StateConflictError):
    def __init__(self, trip_id: str, status_value: str = None):
        super().__init__(
            message="Trip has already been accepted by another driver",
            error_code="ERR_CONFLICT_001",
            details={"trip_id": trip_id, "status": status_value}
        )


class AlreadyTerminalError(StateConflictError):
    def __init__(self, trip_id: str, status_value: str = None):
        super().__init__(
            message=f"Trip is already {status_value or 'finished'}",
            error_code="ERR_CONFLICT_002",
            details={"trip_id": trip_id, "status": status_value}
        )


class AlreadyRatedError(StateConflictError):
    def __init__(self, trip_id: str, user_id: str):
        super().__init__(
            message="You have already rated this trip",
            error_code="ERR_CONFLICT_003",
            details={"trip_id": trip_id, "user_id": user_id}
        )


# Policy violations

class PolicyViolationError(AppException):
    def __init__(self, message: str, error_code: str, status_code: int = status.HTTP_400_BAD_REQUEST,
                 details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )


class InvalidTransitionError(PolicyViolationError):
    def __init__(self, trip_id: str, current: str, target: str):
        super().__init__(
            message=f"Cannot move trip from {current} to {target}",
            error_code="ERR_POLICY_001",
            details={"trip_id": trip_id, "current_status": current, "target_status": target}
        )


class RiderHasActiveTripError(PolicyViolationError):
    def __init__(self, rider_id: str, trip_id: str = None):
        super().__init__(
            message="You already have an active trip",
            error_code="ERR_POLICY_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"rider_id": rider_id, "trip_id": trip_id}
        )


class DriverUnavailableError(PolicyViolationError):
    def __init__(self, driver_id: str, reason: str):
        super().__init__(
            message=f"Driver cannot accept trips: {reason}",
            error_code="ERR_POLICY_003",
            status_code=status.HTTP_409_CONFLICT,
            details={"driver_id": driver_id, "reason": reason}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    log_data = {"error_code": exc.error_code, "path": request.url.path}
    if isinstance(exc, StateConflictError):
        logger.info("State conflict: %s", exc.message, extra=log_data)
    else:
        logger.warning("Request rejected: %s", exc.message, extra=log_data)

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
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
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
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": [
                    {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
                    for err in exc.errors()
                ]
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.error(
        "Unhandled exception: %s: %s", type(exc).__name__, exc,
        exc_info=exc,
        extra={"path": request.url.path}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
