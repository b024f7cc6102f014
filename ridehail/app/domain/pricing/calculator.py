"""
Price Calculator.

Turns a trip request into an itemized fare. ``compute_price`` is pure and
works on any plan-shaped object; ``PriceCalculator.calculate`` loads the
plan, rules and promo from the catalog and delegates to it.

Every line of the breakdown is rounded half-up to cents on its own, and
the total is the sum of the rounded lines, so the adjustments list always
adds up to exactly the quoted price.
"""

import math
from datetime import datetime, time
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.app.core.config import settings
from ridehail.app.core.exceptions import InvalidDistanceError, InvalidDurationError
from ridehail.app.core.timeutils import utcnow
from ridehail.app.domain.pricing.catalog import PricingCatalog
from ridehail.app.domain.pricing.promotions import (
    PromoValidation, evaluate_promo, count_user_redemptions
)
from ridehail.app.models.pricing_enums import AdjustmentType

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Local-time peak windows, start inclusive, end exclusive
PEAK_WINDOWS = ((time(7, 0), time(9, 0)), (time(17, 0), time(19, 0)))

# Minutes assumed when the caller gives no duration: max(distance * 2, 5)
MINUTES_PER_KM_ESTIMATE = 2
MINIMUM_DURATION_ESTIMATE = 5

# The promo discount is capped at the pre-discount total first; the
# minimum-fare floor is applied to what remains. A $3 code on a $2 fare
# with a $5 minimum therefore shows -$2.00 discount and +$5.00 minimum fare.
DISCOUNT_CAPPED_BEFORE_MINIMUM_FARE = True


class PriceLine(BaseModel):
    type: str
    amount: Decimal
    description: str


class PriceBreakdown(BaseModel):
    plan_name: str
    base_fare: Decimal
    distance_charge: Decimal
    time_charge: Decimal
    surge_fee: Optional[Decimal] = None
    surge_multiplier: Optional[Decimal] = None
    booking_fee: Optional[Decimal] = None
    rule_adjustments: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    minimum_fare_adjustment: Optional[Decimal] = None
    subtotal: Decimal
    total: Decimal
    adjustments: List[PriceLine]


class PriceQuote(BaseModel):
    estimated_price: Decimal
    estimated_duration: float
    distance: float
    breakdown: PriceBreakdown
    adjustments: List[PriceLine]
    promo_code: Optional[str] = None
    promo_applied: bool = False
    promo_reason: Optional[str] = None
    promo_id: Optional[str] = None
    is_peak: bool = False


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def validate_distance(distance) -> float:
    try:
        value = float(distance)
    except (TypeError, ValueError):
        raise InvalidDistanceError(distance)
    if not math.isfinite(value) or value < 0:
        raise InvalidDistanceError(distance)
    return value


def estimate_duration(distance: float, duration: Optional[float] = None) -> float:
    """Use the caller's duration if given, else ``max(distance * 2, 5)`` minutes."""
    if duration is None:
        return max(distance * MINUTES_PER_KM_ESTIMATE, MINIMUM_DURATION_ESTIMATE)
    try:
        value = float(duration)
    except (TypeError, ValueError):
        raise InvalidDurationError(duration)
    if not math.isfinite(value) or value < 0:
        raise InvalidDurationError(duration)
    return value


def to_local(moment: Optional[datetime], tz_name: Optional[str] = None) -> datetime:
    """Convert to the pricing timezone; naive values are already local."""
    tz = ZoneInfo(tz_name or settings.pricing_timezone)
    if moment is None:
        return utcnow().astimezone(tz)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment.astimezone(tz)


def is_peak_time(moment: Optional[datetime], tz_name: Optional[str] = None) -> bool:
    local = to_local(moment, tz_name).time()
    return any(start <= local < end for start, end in PEAK_WINDOWS)


def _rule_applies(rule, plan_name: str, distance: float, local_hour: int) -> bool:
    plans = rule.applicable_plans or []
    if plans and plan_name not in plans:
        return False
    conditions = rule.conditions or {}
    if "min_distance_km" in conditions and distance < float(conditions["min_distance_km"]):
        return False
    if "max_distance_km" in conditions and distance > float(conditions["max_distance_km"]):
        return False
    if conditions.get("hours") and local_hour not in conditions["hours"]:
        return False
    return True


def _rule_amount(rule, running_total: Decimal) -> Decimal:
    value = Decimal(str(rule.adjustment_value))
    if rule.adjustment_type == AdjustmentType.PERCENTAGE:
        return money(running_total * value / Decimal(100))
    if rule.adjustment_type == AdjustmentType.MULTIPLIER:
        return money(running_total * (value - 1))
    return money(value)


def compute_price(
    plan,
    distance,
    duration: Optional[float] = None,
    pickup_time: Optional[datetime] = None,
    rules: Iterable = (),
    promo=None,
    promo_requested: bool = False,
    user_redemptions: int = 0,
    now: Optional[datetime] = None,
    peak_min_multiplier: Optional[float] = None,
    tz_name: Optional[str] = None,
) -> PriceQuote:
    """
    Price one trip request against a plan.

    Steps: base fare, distance and time charges; a separate surge line in
    peak windows; the booking fee; dynamic pricing rules in priority
    order; the promo discount; and finally the minimum-fare floor, shown
    as its own ``minimum_fare`` line.

    Args:
        plan: PricingPlan (or anything with the same rate attributes)
        distance: Trip distance in km
        duration: Estimated minutes, derived from distance when omitted
        pickup_time: Used for peak detection, defaults to now
        rules: Active PricingRule rows, highest priority first
        promo: PromoCode row, or None
        promo_requested: True when the rider supplied a code (even an unknown one)
        user_redemptions: How many times this rider already used the promo

    Raises:
        InvalidDistanceError, InvalidDurationError
    """
    distance = validate_distance(distance)
    duration = estimate_duration(distance, duration)
    local = to_local(pickup_time, tz_name)
    peak = is_peak_time(local)

    lines: List[PriceLine] = []

    base_fare = money(plan.base_fare)
    distance_charge = money(Decimal(str(distance)) * Decimal(str(plan.per_km_rate)))
    time_charge = money(Decimal(str(duration)) * Decimal(str(plan.per_minute_rate)))
    lines.append(PriceLine(type="base_fare", amount=base_fare, description="Base fare"))
    lines.append(PriceLine(
        type="distance", amount=distance_charge,
        description=f"{distance:g} km x ${Decimal(str(plan.per_km_rate)).normalize()}/km"
    ))
    lines.append(PriceLine(
        type="time", amount=time_charge,
        description=f"{duration:g} min x ${Decimal(str(plan.per_minute_rate)).normalize()}/min"
    ))
    subtotal = base_fare + distance_charge + time_charge

    surge_fee = None
    multiplier = None
    if peak:
        floor = peak_min_multiplier if peak_min_multiplier is not None else settings.peak_surge_min_multiplier
        multiplier = max(Decimal(str(plan.surge_multiplier)), Decimal(str(floor)))
        if multiplier > 1:
            surge_fee = money(subtotal * (multiplier - 1))
            lines.append(PriceLine(
                type="surge", amount=surge_fee,
                description=f"Peak hours surge x{multiplier.normalize()}"
            ))
        else:
            multiplier = None

    booking_fee = None
    if plan.booking_fee and money(plan.booking_fee) != ZERO:
        booking_fee = money(plan.booking_fee)
        lines.append(PriceLine(type="booking_fee", amount=booking_fee, description="Booking fee"))

    rule_total = ZERO
    for rule in rules:
        if not _rule_applies(rule, plan.name, distance, local.hour):
            continue
        amount = _rule_amount(rule, sum((line.amount for line in lines), ZERO))
        if amount == ZERO:
            continue
        rule_total += amount
        lines.append(PriceLine(type=f"rule:{rule.rule_type.value}", amount=amount, description=rule.name))

    pre_discount = sum((line.amount for line in lines), ZERO)
    # Rules may discount; the fare itself never goes negative before the floor
    if pre_discount < ZERO:
        correction = -pre_discount
        lines.append(PriceLine(type="rule_floor", amount=correction, description="Adjustments limited to fare"))
        pre_discount = ZERO

    validation: Optional[PromoValidation] = None
    discount = None
    if promo_requested or promo is not None:
        validation = evaluate_promo(promo, pre_discount, user_redemptions, now)
        if validation.valid and validation.discount:
            discount = _cap_discount(validation.discount, pre_discount, plan.minimum_fare)
            lines.append(PriceLine(
                type="discount", amount=-discount,
                description=f"Promo {validation.code}"
            ))

    running = sum((line.amount for line in lines), ZERO)
    minimum_fare = money(plan.minimum_fare)
    minimum_adjustment = None
    if running < minimum_fare:
        minimum_adjustment = minimum_fare - running
        lines.append(PriceLine(
            type="minimum_fare", amount=minimum_adjustment,
            description=f"Minimum fare of ${minimum_fare} applied"
        ))

    total = sum((line.amount for line in lines), ZERO)

    breakdown = PriceBreakdown(
        plan_name=plan.name,
        base_fare=base_fare,
        distance_charge=distance_charge,
        time_charge=time_charge,
        surge_fee=surge_fee,
        surge_multiplier=multiplier,
        booking_fee=booking_fee,
        rule_adjustments=rule_total if rule_total != ZERO else None,
        discount=discount,
        minimum_fare_adjustment=minimum_adjustment,
        subtotal=subtotal,
        total=total,
        adjustments=lines,
    )
    return PriceQuote(
        estimated_price=total,
        estimated_duration=duration,
        distance=distance,
        breakdown=breakdown,
        adjustments=lines,
        promo_code=validation.code if validation else None,
        promo_applied=discount is not None,
        promo_reason=validation.reason if validation else None,
        promo_id=validation.promo_id if validation and discount is not None else None,
        is_peak=peak,
    )


def _cap_discount(discount: Decimal, pre_discount: Decimal, minimum_fare) -> Decimal:
    if DISCOUNT_CAPPED_BEFORE_MINIMUM_FARE:
        return min(discount, pre_discount)
    # Floor first: only the part of the fare above the minimum is discountable
    return min(discount, max(pre_discount - money(minimum_fare), ZERO))


class PriceCalculator:

    @staticmethod
    async def calculate(
        db: AsyncSession,
        plan_name: str,
        distance,
        duration: Optional[float] = None,
        pickup_time: Optional[datetime] = None,
        promo_code: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> PriceQuote:
        """
        Quote a trip using the current catalog.

        Raises:
            PlanNotFoundError: Unknown or inactive plan
            InvalidDistanceError: Negative or non-finite distance
        """
        validate_distance(distance)
        plan = await PricingCatalog.get_plan(db, plan_name)
        now = utcnow()
        rules = await PricingCatalog.list_active_rules(db, now)

        promo = None
        redemptions = 0
        requested = bool(promo_code and promo_code.strip())
        if requested:
            promo = await PricingCatalog.get_promo(db, promo_code)
            if promo is not None and user_id:
                redemptions = await count_user_redemptions(db, promo.id, user_id)

        return compute_price(
            plan,
            distance,
            duration=duration,
            pickup_time=pickup_time,
            rules=rules,
            promo=promo,
            promo_requested=requested,
            user_redemptions=redemptions,
            now=now,
        )
