"""
Pricing schemas.

Quotes reuse ``PriceQuote`` from the calculator; these cover requests,
plan listings, promo validation and pricing administration.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ridehail.app.models.enums import VehicleType
from ridehail.app.models.pricing_enums import AdjustmentType, DiscountType, PricingRuleType


class PriceCalculateRequest(BaseModel):
    distance: float = Field(..., description="Trip distance in km")
    plan_name: str = "economy"
    duration: Optional[float] = None
    promo_code: Optional[str] = None
    pickup_time: Optional[datetime] = None


class PricingPlanResponse(BaseModel):
    id: str
    name: str
    display_name: str
    description: Optional[str]
    vehicle_type: VehicleType
    base_fare: Decimal
    per_km_rate: Decimal
    per_minute_rate: Decimal
    minimum_fare: Decimal
    cancellation_fee: Decimal
    booking_fee: Decimal
    surge_multiplier: Decimal
    features: Optional[List[str]]
    max_passengers: int
    is_active: bool

    class Config:
        from_attributes = True


class PromoValidateRequest(BaseModel):
    code: str = Field(..., min_length=1)
    trip_value: Decimal = Field(..., ge=0)
    user_id: Optional[str] = Field(None, description="Defaults to the caller; admins may check for others")


class PromoValidateResponse(BaseModel):
    valid: bool
    discount: Optional[Decimal] = None
    reason: Optional[str] = None
    code: Optional[str] = None


# Administration

class PricingPlanUpsert(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    display_name: str
    description: Optional[str] = None
    vehicle_type: VehicleType = VehicleType.ECONOMY
    base_fare: Decimal = Field(..., ge=0)
    per_km_rate: Decimal = Field(..., ge=0)
    per_minute_rate: Decimal = Field(..., ge=0)
    minimum_fare: Decimal = Field(..., ge=0)
    cancellation_fee: Decimal = Field(Decimal("0"), ge=0)
    booking_fee: Decimal = Field(Decimal("0"), ge=0)
    surge_multiplier: Decimal = Field(Decimal("1"), ge=1)
    features: Optional[List[str]] = None
    max_passengers: int = Field(4, ge=1)
    is_active: bool = True


class PricingRuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    rule_type: PricingRuleType
    adjustment_type: AdjustmentType
    adjustment_value: Decimal
    priority: int = 0
    conditions: Optional[Dict[str, Any]] = None
    applicable_plans: Optional[List[str]] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None


class PricingRuleResponse(PricingRuleCreate):
    id: str
    is_active: bool

    class Config:
        from_attributes = True


class PromoCodeCreate(BaseModel):
    code: str = Field(..., min_length=2, max_length=50)
    name: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(..., gt=0)
    max_discount: Optional[Decimal] = Field(None, gt=0)
    min_trip_value: Decimal = Field(Decimal("0"), ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    per_user_limit: int = Field(1, ge=1)
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None

    @field_validator("discount_value")
    @classmethod
    def percentage_in_range(cls, v, info):
        if info.data.get("discount_type") == DiscountType.PERCENTAGE and v > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return v


class PromoCodeResponse(BaseModel):
    id: str
    code: str
    name: str
    description: Optional[str]
    discount_type: DiscountType
    discount_value: Decimal
    max_discount: Optional[Decimal]
    min_trip_value: Decimal
    usage_limit: Optional[int]
    used_count: int
    per_user_limit: int
    valid_from: Optional[datetime]
    valid_to: Optional[datetime]
    is_active: bool

    class Config:
        from_attributes = True
