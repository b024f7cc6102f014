"""
Trip API Endpoints.

Riders request, track and cancel trips; drivers accept and progress them.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.app.api.v1.dependencies import get_trip_lifecycle
from ridehail.app.core.dependencies import get_current_user
from ridehail.app.core.exceptions import InsufficientPermissionsError
from ridehail.app.core.guards import require_admin, require_role, trip_party_guard
from ridehail.app.db.session import get_db
from ridehail.app.domain.trips.lifecycle import TripLifecycle
from ridehail.app.models.enums import UserType
from ridehail.app.models.rating import Rating
from ridehail.app.models.trip_enums import TripStatus, CancelReason
from ridehail.app.schemas.rating import RatingResponse
from ridehail.app.schemas.trip import (
    TripCreateRequest, TripMatchRequest, TripStatusUpdate, TripCancelRequest,
    TripResponse, ActiveTripResponse, TripListResponse, TripAuditEntry,
)
from ridehail.app.services.audit import get_trip_audit_trail

router = APIRouter(prefix="/trips", tags=["Trips"])


@router.post("", response_model=TripResponse, status_code=status.HTTP_201_CREATED)
async def create_trip(
    payload: TripCreateRequest,
    current_user: dict = Depends(require_role([UserType.RIDER, UserType.ADMIN])),
    lifecycle: TripLifecycle = Depends(get_trip_lifecycle),
):
    """
    Request a ride.

    Returns 409 if the rider already has an active trip.
    """
    trip = await lifecycle.create(rider_id=current_user["user_id"], **payload.model_dump())
    return trip


@router.get("/active", response_model=ActiveTripResponse)
async def get_active_trip(
    current_user: dict = Depends(get_current_user),
    lifecycle: TripLifecycle = Depends(get_trip_lifecycle),
):
    """
    The caller's current non-terminal trip.

    A request that waited past the timeout is cancelled first and not returned.
    """
    trip = await lifecycle.active_trip(current_user["user_id"])
    return ActiveTripResponse(trip=trip)


@router.get("", response_model=TripListResponse)
async def list_my_trips(
    current_user: dict = Depends(get_current_user),
    lifecycle: TripLifecycle = Depends(get_trip_lifecycle),
):
    trips = await lifecycle.history(current_user["user_id"])
    return TripListResponse(trips=trips, total=len(trips))


@router.get("/{trip_id}", response_model=TripResponse)
async def get_trip(
    trip_id: str = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    lifecycle: TripLifecycle = Depends(get_trip_lifecycle),
):
    trip = await lifecycle.get(trip_id)
    trip_party_guard.enforce(trip, current_user)
    return trip


@router.post("/{trip_id}/match", response_model=TripResponse)
async def match_trip(
    trip_id: str = Path(..., description="Trip ID"),
    payload: Optional[TripMatchRequest] = None,
    current_user: dict = Depends(require_role([UserType.DRIVER, UserType.ADMIN])),
    lifecycle: TripLifecycle = Depends(get_trip_lifecycle),
):
    """
    Accept a requested trip (Driver only).

    Returns 409 with ERR_CONFLICT_001 if another driver got there first.
    """
    payload = payload or TripMatchRequest()
    driver_id = payload.driver_id or current_user["user_id"]
    if driver_id != current_user["user_id"] and current_user["role"] != UserType.ADMIN.value:
        raise InsufficientPermissionsError("Drivers can only accept trips for themselves")
    return await lifecycle.match(trip_id, driver_id, payload.vehicle_id)


@router.patch("/{trip_id}/status", response_model=TripResponse)
async def update_trip_status(
    payload: TripStatusUpdate,
    trip_id: str = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_role([UserType.DRIVER, UserType.ADMIN])),
    lifecycle: TripLifecycle = Depends(get_trip_lifecycle),
):
    """
    Move a trip to pickup, in_progress or completed (assigned driver only).
    """
    trip = await lifecycle.get(trip_id)
    trip_party_guard.enforce_driver(trip, current_user)
    return await lifecycle.transition(
        trip_id, TripStatus(payload.status), current_user["user_id"], payload.final_price
    )


@router.post("/{trip_id}/cancel", response_model=TripResponse)
async def cancel_trip(
    trip_id: str = Path(..., description="Trip ID"),
    payload: Optional[TripCancelRequest] = None,
    current_user: dict = Depends(get_current_user),
    lifecycle: TripLifecycle = Depends(get_trip_lifecycle),
):
    """
    Cancel a trip (rider, assigned driver or admin).

    Returns 409 with ERR_CONFLICT_002 if the trip already ended.
    """
    trip = await lifecycle.get(trip_id)
    trip_party_guard.enforce(trip, current_user)

    reason = payload.reason if payload else CancelReason.USER_REQUESTED
    if current_user["role"] != UserType.ADMIN.value:
        reason = CancelReason.USER_REQUESTED
    return await lifecycle.cancel(trip_id, current_user["user_id"], reason)


@router.get("/{trip_id}/ratings", response_model=list[RatingResponse])
async def list_trip_ratings(
    trip_id: str = Path(..., description="Trip ID"),
    current_user: dict = Depends(get_current_user),
    lifecycle: TripLifecycle = Depends(get_trip_lifecycle),
    db: AsyncSession = Depends(get_db),
):
    trip = await lifecycle.get(trip_id)
    trip_party_guard.enforce(trip, current_user)
    result = await db.execute(select(Rating).where(Rating.trip_id == trip_id).order_by(Rating.created_at))
    return list(result.scalars().all())


@router.get("/{trip_id}/audit", response_model=list[TripAuditEntry])
async def get_trip_audit(
    trip_id: str = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_admin),
    lifecycle: TripLifecycle = Depends(get_trip_lifecycle),
    db: AsyncSession = Depends(get_db),
):
    """Every recorded transition of a trip, oldest first (Admin only)."""
    await lifecycle.get(trip_id)
    return await get_trip_audit_trail(db, trip_id)
