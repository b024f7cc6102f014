"""
Rating API Endpoints.
"""

from fastapi import APIRouter, Depends, status

from ridehail.app.api.v1.dependencies import get_trip_lifecycle
from ridehail.app.core.dependencies import get_current_user
from ridehail.app.domain.trips.lifecycle import TripLifecycle
from ridehail.app.schemas.rating import RatingCreate, RatingResponse

router = APIRouter(prefix="/ratings", tags=["Ratings"])


@router.post("", response_model=RatingResponse, status_code=status.HTTP_201_CREATED)
async def create_rating(
    payload: RatingCreate,
    current_user: dict = Depends(get_current_user),
    lifecycle: TripLifecycle = Depends(get_trip_lifecycle),
):
    """
    Rate the other party of a trip.

    Rating a trip that is still under way completes it.
    """
    return await lifecycle.rate(
        payload.trip_id,
        current_user["user_id"],
        payload.rating,
        comment=payload.comment,
        to_user_id=payload.to_user_id,
    )
