"""
Promo code validation and redemption.

Validation is read-only and never fails a price calculation; it reports
``valid=False`` with a reason instead. Redemption is a single conditional
increment so two riders racing for the last use cannot both get it.
"""

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.app.core.timeutils import utcnow, as_utc
from ridehail.app.domain.pricing.catalog import PricingCatalog
from ridehail.app.models.pricing_enums import DiscountType
from ridehail.app.models.promo_code import PromoCode, PromoRedemption

logger = logging.getLogger("ridehail.pricing.promotions")

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

REASON_NOT_FOUND = "code not found"
REASON_INACTIVE = "code inactive"
REASON_NOT_YET_VALID = "code not yet valid"
REASON_EXPIRED = "code expired"
REASON_USAGE_LIMIT = "usage limit reached"
REASON_PER_USER_LIMIT = "per-user limit reached"


class PromoValidation(BaseModel):
    valid: bool
    discount: Optional[Decimal] = None
    reason: Optional[str] = None
    code: Optional[str] = None
    promo_id: Optional[str] = None


def evaluate_promo(
    promo: Optional[PromoCode],
    trip_value: Decimal,
    user_redemptions: int = 0,
    now: Optional[datetime] = None,
) -> PromoValidation:
    """
    Check a promo against a trip value without touching the database.

    The discount is ``value`` for fixed-amount codes and
    ``trip_value * value / 100`` for percentage codes (capped by
    ``max_discount``). It never exceeds ``trip_value``.
    """
    if promo is None:
        return PromoValidation(valid=False, reason=REASON_NOT_FOUND)

    now = as_utc(now or utcnow())
    trip_value = Decimal(str(trip_value))

    def rejected(reason: str) -> PromoValidation:
        return PromoValidation(valid=False, reason=reason, code=promo.code, promo_id=promo.id)

    if not promo.is_active:
        return rejected(REASON_INACTIVE)
    if promo.valid_from is not None and now < as_utc(promo.valid_from):
        return rejected(REASON_NOT_YET_VALID)
    if promo.valid_to is not None and now > as_utc(promo.valid_to):
        return rejected(REASON_EXPIRED)

    min_value = Decimal(str(promo.min_trip_value or 0))
    if trip_value < min_value:
        return rejected(f"minimum trip value of ${min_value.quantize(CENT)} required")

    if promo.usage_limit is not None and (promo.used_count or 0) >= promo.usage_limit:
        return rejected(REASON_USAGE_LIMIT)
    if promo.per_user_limit is not None and user_redemptions >= promo.per_user_limit:
        return rejected(REASON_PER_USER_LIMIT)

    value = Decimal(str(promo.discount_value))
    if promo.discount_type == DiscountType.PERCENTAGE:
        discount = trip_value * value / Decimal(100)
        if promo.max_discount is not None:
            discount = min(discount, Decimal(str(promo.max_discount)))
    else:
        discount = value

    discount = max(min(discount, trip_value), ZERO).quantize(CENT, rounding=ROUND_HALF_UP)
    return PromoValidation(valid=True, discount=discount, code=promo.code, promo_id=promo.id)


async def count_user_redemptions(db: AsyncSession, promo_id: str, user_id: str) -> int:
    result = await db.execute(
        select(func.count(PromoRedemption.id)).where(
            PromoRedemption.promo_id == promo_id,
            PromoRedemption.user_id == user_id
        )
    )
    return result.scalar_one()


async def validate_promo(
    db: AsyncSession,
    code: str,
    user_id: Optional[str],
    trip_value: Decimal,
    now: Optional[datetime] = None,
) -> PromoValidation:
    """
    Validate a promo code for a user and trip value.

    Nothing is persisted; applying the discount and counting the use is
    done by ``redeem`` when the trip is created.
    """
    promo = await PricingCatalog.get_promo(db, code)
    redemptions = 0
    if promo is not None and user_id:
        redemptions = await count_user_redemptions(db, promo.id, user_id)
    return evaluate_promo(promo, trip_value, redemptions, now)


async def redeem(
    db: AsyncSession,
    promo_id: str,
    user_id: str,
    discount: Decimal,
    trip_id: Optional[str] = None,
) -> bool:
    """
    Consume one use of a promo code inside the caller's transaction.

    The increment and the limit check are one statement:
    ``UPDATE ... SET used_count = used_count + 1
    WHERE id = ? AND (usage_limit IS NULL OR used_count < usage_limit)``.

    Returns:
        False if the last use was taken by someone else
    """
    result = await db.execute(
        update(PromoCode)
        .where(
            PromoCode.id == promo_id,
            PromoCode.is_active == True,
            or_(PromoCode.usage_limit.is_(None), PromoCode.used_count < PromoCode.usage_limit)
        )
        .values(used_count=PromoCode.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.info("Promo %s exhausted before redemption by %s", promo_id, user_id)
        return False

    db.add(PromoRedemption(
        promo_id=promo_id,
        user_id=user_id,
        trip_id=trip_id,
        discount_amount=discount,
    ))
    await db.flush()
    return True
