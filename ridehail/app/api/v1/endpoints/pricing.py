"""
Pricing API Endpoints.

Fare quotes, active plans and promo code checks.
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.app.core.dependencies import get_current_user
from ridehail.app.core.exceptions import InsufficientPermissionsError
from ridehail.app.db.session import get_db
from ridehail.app.domain.pricing.calculator import PriceCalculator, PriceQuote
from ridehail.app.domain.pricing.catalog import PricingCatalog
from ridehail.app.domain.pricing.promotions import validate_promo
from ridehail.app.models.enums import UserType
from ridehail.app.schemas.pricing import (
    PriceCalculateRequest, PricingPlanResponse, PromoValidateRequest, PromoValidateResponse
)

router = APIRouter(prefix="/pricing", tags=["Pricing"])


@router.post("/calculate", response_model=PriceQuote)
async def calculate_price(
    payload: PriceCalculateRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Quote a trip.

    An invalid promo code never fails the quote; the response carries
    ``promo_applied=false`` and a ``promo_reason`` instead.
    """
    return await PriceCalculator.calculate(
        db,
        payload.plan_name,
        payload.distance,
        duration=payload.duration,
        pickup_time=payload.pickup_time,
        promo_code=payload.promo_code,
        user_id=current_user["user_id"],
    )


@router.get("/plans", response_model=List[PricingPlanResponse])
async def list_plans(db: AsyncSession = Depends(get_db)):
    """Active pricing plans ordered by name."""
    return await PricingCatalog.list_active_plans(db)


@router.post("/validate-promo", response_model=PromoValidateResponse)
async def validate_promo_code(
    payload: PromoValidateRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    user_id = payload.user_id or current_user["user_id"]
    if user_id != current_user["user_id"] and current_user["role"] != UserType.ADMIN.value:
        raise InsufficientPermissionsError("Cannot check promo usage for another user")

    result = await validate_promo(db, payload.code, user_id, payload.trip_value)
    return PromoValidateResponse(
        valid=result.valid,
        discount=result.discount,
        reason=result.reason,
        code=result.code,
    )
