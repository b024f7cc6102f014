"""
Trip schemas.

Request bodies for the trip lifecycle endpoints and the trip response.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ridehail.app.models.trip_enums import TripStatus, CancelReason


class TripCreateRequest(BaseModel):
    """Schema for requesting a ride."""
    pickup_address: str = Field(..., min_length=1, max_length=255)
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    destination_address: str = Field(..., min_length=1, max_length=255)
    destination_lat: float = Field(..., ge=-90, le=90)
    destination_lng: float = Field(..., ge=-180, le=180)
    ride_type: str = Field("economy", description="Pricing plan name")
    distance: Optional[float] = Field(None, description="km; straight-line distance is used when omitted")
    duration: Optional[float] = Field(None, description="Estimated minutes")
    promo_code: Optional[str] = None


class TripMatchRequest(BaseModel):
    """Driver accepting a trip. ``driver_id`` defaults to the caller."""
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None


class TripStatusUpdate(BaseModel):
    status: Literal["pickup", "in_progress", "completed"]
    final_price: Optional[Decimal] = Field(None, ge=0)


class TripCancelRequest(BaseModel):
    reason: CancelReason = CancelReason.USER_REQUESTED


class TripResponse(BaseModel):
    """Schema for trip response."""
    id: str
    rider_id: str
    driver_id: Optional[str]
    vehicle_id: Optional[str]
    pickup_address: str
    pickup_lat: float
    pickup_lng: float
    destination_address: str
    destination_lat: float
    destination_lng: float
    ride_type: str
    distance: float
    duration: float
    status: TripStatus
    estimated_price: Decimal
    final_price: Optional[Decimal]
    discount_amount: Optional[Decimal]
    cancellation_fee: Optional[Decimal]
    driver_earnings: Optional[Decimal]
    platform_fee: Optional[Decimal]
    cancel_reason: Optional[CancelReason]
    cancelled_by: Optional[str]
    price_breakdown: Optional[Dict[str, Any]]
    requested_at: datetime
    matched_at: Optional[datetime]
    pickup_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]

    class Config:
        from_attributes = True


class ActiveTripResponse(BaseModel):
    trip: Optional[TripResponse]


class TripListResponse(BaseModel):
    trips: List[TripResponse]
    total: int


class TripAuditEntry(BaseModel):
    id: int
    actor_id: Optional[str]
    action: str
    meta_data: Optional[Dict[str, Any]]
    timestamp: datetime

    class Config:
        from_attributes = True
