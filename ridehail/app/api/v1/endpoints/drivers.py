"""
Driver API Endpoints.

Availability toggle, open ride requests and the driver's current trip.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ridehail.app.api.v1.dependencies import get_trip_lifecycle
from ridehail.app.core.guards import require_driver
from ridehail.app.domain.trips.lifecycle import TripLifecycle
from ridehail.app.schemas.trip import TripResponse
from ridehail.app.schemas.user import DriverStatusUpdate

router = APIRouter(prefix="/drivers", tags=["Drivers"])


@router.patch("/status")
async def update_driver_status(
    payload: DriverStatusUpdate,
    current_user: dict = Depends(require_driver),
    lifecycle: TripLifecycle = Depends(get_trip_lifecycle),
):
    """
    Go online or offline (Driver only).

    Going offline cancels any matched, pickup or in-progress trip of the
    driver with reason ``driver_offline`` and notifies each rider.
    """
    driver_id = current_user["user_id"]
    if payload.is_active:
        await lifecycle.set_driver_online(driver_id)
        return {"driver_id": driver_id, "is_active": True, "cancelled_trip_ids": []}

    cancelled = await lifecycle.handle_driver_offline(driver_id)
    return {
        "driver_id": driver_id,
        "is_active": False,
        "cancelled_trip_ids": [trip.id for trip in cancelled],
    }


@router.get("/available-rides", response_model=List[TripResponse])
async def list_available_rides(
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(require_driver),
    lifecycle: TripLifecycle = Depends(get_trip_lifecycle),
):
    """Requested trips still waiting for a driver, oldest first."""
    return await lifecycle.open_requests(limit)


@router.get("/active-trip", response_model=Optional[TripResponse])
async def get_driver_active_trip(
    current_user: dict = Depends(require_driver),
    lifecycle: TripLifecycle = Depends(get_trip_lifecycle),
):
    return await lifecycle.active_trip_for_driver(current_user["user_id"])
