"""
User and vehicle schemas.

Driver and vehicle records are validated here before they reach the
database, so every driver the matching flow sees has the same shape.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ridehail.app.models.enums import UserType, VehicleType


class UserResponse(BaseModel):
    id: str
    email: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    phone: Optional[str]
    user_type: UserType
    rating: Decimal
    total_ratings: int
    is_driver_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class UserProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=32)
    user_type: Optional[UserType] = None

    @field_validator("user_type")
    @classmethod
    def no_self_promotion(cls, v):
        if v == UserType.ADMIN:
            raise ValueError("Admin role cannot be self-assigned")
        return v


class DriverStatusUpdate(BaseModel):
    is_active: bool


class VehicleCreate(BaseModel):
    make: str = Field(..., min_length=1, max_length=50)
    model: str = Field(..., min_length=1, max_length=50)
    year: int = Field(..., ge=1990, le=2100)
    color: str = Field(..., min_length=1, max_length=30)
    license_plate: str = Field(..., min_length=2, max_length=20)
    vehicle_type: VehicleType = VehicleType.ECONOMY

    @field_validator("license_plate")
    @classmethod
    def normalize_plate(cls, v: str) -> str:
        return v.strip().upper()


class VehicleResponse(BaseModel):
    id: str
    driver_id: str
    make: str
    model: str
    year: int
    color: str
    license_plate: str
    vehicle_type: VehicleType
    created_at: datetime

    class Config:
        from_attributes = True
