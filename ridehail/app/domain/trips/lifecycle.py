"""
Trip Lifecycle.

State machine for a trip:

    requested -> matched -> pickup -> in_progress -> completed
    requested | matched | pickup -> cancelled
    matched | pickup | in_progress -> cancelled (driver went offline)

Every transition is a single conditional UPDATE on the trip's current
status. When it affects no rows the trip is re-read to tell the caller
why: someone else matched it first (AlreadyMatchedError), it already
ended (AlreadyTerminalError) or the move is not allowed from where it is
(InvalidTransitionError).

Audit rows go into the same transaction as the transition. Notifications
are sent only after commit and their failures are logged, not raised.
"""

import logging
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy import select, update, cast, Float, Numeric
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.app.core.config import settings
from ridehail.app.core.exceptions import (
    AlreadyMatchedError,
    AlreadyRatedError,
    AlreadyTerminalError,
    DriverUnavailableError,
    ImplausibleDistanceError,
    InsufficientPermissionsError,
    InvalidTransitionError,
    RiderHasActiveTripError,
    TripNotFoundError,
    ValidationFailedError,
    VehicleRequiredError,
)
from ridehail.app.core.timeutils import utcnow
from ridehail.app.domain.pricing.calculator import PriceCalculator, validate_distance
from ridehail.app.domain.pricing.promotions import redeem
from ridehail.app.domain.trips.sweeper import TripTimeoutSweeper
from ridehail.app.models.enums import UserType
from ridehail.app.models.pricing_plan import PricingPlan
from ridehail.app.models.rating import Rating
from ridehail.app.models.trip import Trip
from ridehail.app.models.trip_enums import (
    TripStatus, CancelReason, ACTIVE_STATUSES, TERMINAL_STATUSES,
    CANCELLABLE_STATUSES, PREVIOUS_STATUS,
)
from ridehail.app.models.user import User
from ridehail.app.models.vehicle import Vehicle
from ridehail.app.services.audit import record_event, AuditAction
from ridehail.app.services.geo import trip_distance_km

logger = logging.getLogger("ridehail.trips.lifecycle")

CENT = Decimal("0.01")

DRIVER_OFFLINE_STATUSES = (TripStatus.MATCHED, TripStatus.PICKUP, TripStatus.IN_PROGRESS)

# A client distance may undershoot the straight-line distance by this factor
_STRAIGHT_LINE_TOLERANCE = 0.95

# How many times cancel re-reads a trip whose status moved under it
_CANCEL_ATTEMPTS = 3

_AUDIT_ACTIONS = {
    TripStatus.MATCHED: AuditAction.TRIP_MATCHED,
    TripStatus.PICKUP: AuditAction.TRIP_PICKUP,
    TripStatus.IN_PROGRESS: AuditAction.TRIP_STARTED,
    TripStatus.COMPLETED: AuditAction.TRIP_COMPLETED,
}


class TripLifecycle:

    def __init__(self, db: AsyncSession, notifier=None, sweeper: Optional[TripTimeoutSweeper] = None):
        self.db = db
        self.notifier = notifier
        self.sweeper = sweeper or TripTimeoutSweeper(notifier)

    # Reads

    async def get(self, trip_id: str) -> Trip:
        trip = await self._load(trip_id)
        if trip is None:
            raise TripNotFoundError(trip_id)
        return trip

    async def active_trip(self, rider_id: str) -> Optional[Trip]:
        return await self.sweeper.active_trip_for_rider(self.db, rider_id)

    async def active_trip_for_driver(self, driver_id: str) -> Optional[Trip]:
        result = await self.db.execute(
            select(Trip)
            .where(Trip.driver_id == driver_id, Trip.status.in_(DRIVER_OFFLINE_STATUSES))
            .order_by(Trip.matched_at.desc())
        )
        return result.scalars().first()

    async def open_requests(self, limit: int = 20) -> List[Trip]:
        """Requested trips that are still inside the timeout window, oldest first."""
        result = await self.db.execute(
            select(Trip)
            .where(
                Trip.status == TripStatus.REQUESTED,
                Trip.requested_at >= self.sweeper.cutoff()
            )
            .order_by(Trip.requested_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def history(self, user_id: str, limit: int = 50) -> List[Trip]:
        result = await self.db.execute(
            select(Trip)
            .where((Trip.rider_id == user_id) | (Trip.driver_id == user_id))
            .order_by(Trip.requested_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # Transitions

    async def create(
        self,
        rider_id: str,
        pickup_address: str,
        pickup_lat: float,
        pickup_lng: float,
        destination_address: str,
        destination_lat: float,
        destination_lng: float,
        ride_type: str,
        distance: Optional[float] = None,
        duration: Optional[float] = None,
        promo_code: Optional[str] = None,
    ) -> Trip:
        """
        Request a new trip for a rider.

        A stale request of the rider's is timed out first. Pickup is
        immediate, so the price is quoted at the request time. If a promo
        applies, one use of it is redeemed in the same transaction as the
        insert; if the last use is taken concurrently the trip is re-quoted
        without the promo.

        Raises:
            RiderHasActiveTripError: The rider already has a non-terminal trip
            ImplausibleDistanceError: Distance shorter than the straight line
            PlanNotFoundError, InvalidDistanceError: From pricing
        """
        await self.sweeper.expire_stale_requests(self.db, rider_id=rider_id)

        existing = await self.db.execute(
            select(Trip.id).where(Trip.rider_id == rider_id, Trip.status.in_(ACTIVE_STATUSES))
        )
        existing_id = existing.scalars().first()
        if existing_id:
            raise RiderHasActiveTripError(rider_id, existing_id)

        straight_line = trip_distance_km(pickup_lat, pickup_lng, destination_lat, destination_lng)
        if distance is None:
            distance = straight_line
        elif validate_distance(distance) < straight_line * _STRAIGHT_LINE_TOLERANCE:
            raise ImplausibleDistanceError(distance, straight_line)

        now = utcnow()
        quote = await PriceCalculator.calculate(
            self.db, ride_type, distance,
            duration=duration, pickup_time=now,
            promo_code=promo_code, user_id=rider_id,
        )

        trip = Trip(
            id=str(uuid.uuid4()),
            rider_id=rider_id,
            pickup_address=pickup_address,
            pickup_lat=pickup_lat,
            pickup_lng=pickup_lng,
            destination_address=destination_address,
            destination_lat=destination_lat,
            destination_lng=destination_lng,
            ride_type=quote.breakdown.plan_name,
            status=TripStatus.REQUESTED,
            requested_at=now,
        )
        _apply_quote(trip, quote)

        try:
            self.db.add(trip)
            await self.db.flush()

            if quote.promo_applied:
                redeemed = await redeem(
                    self.db, quote.promo_id, rider_id, quote.breakdown.discount, trip_id=trip.id
                )
                if redeemed:
                    await record_event(
                        self.db, AuditAction.PROMO_REDEEMED, actor_id=rider_id, trip_id=trip.id,
                        metadata={"code": quote.promo_code, "discount": str(quote.breakdown.discount)}
                    )
                else:
                    quote = await PriceCalculator.calculate(
                        self.db, ride_type, distance,
                        duration=duration, pickup_time=now, user_id=rider_id,
                    )
                    _apply_quote(trip, quote, promo_reason="usage limit reached")
                    await self.db.flush()

            await record_event(
                self.db, AuditAction.TRIP_REQUESTED, actor_id=rider_id, trip_id=trip.id,
                metadata={"ride_type": trip.ride_type, "estimated_price": str(trip.estimated_price)}
            )
            await self.db.commit()
        except IntegrityError:
            # Partial unique index on active trips per rider
            await self.db.rollback()
            raise RiderHasActiveTripError(rider_id)

        await self.db.refresh(trip)
        logger.info("Trip %s requested by %s (%s, %s)", trip.id, rider_id, trip.ride_type, trip.estimated_price)
        await self._notify("notify_new_trip", trip)
        return trip

    async def match(self, trip_id: str, driver_id: str, vehicle_id: Optional[str] = None) -> Trip:
        """
        Assign a driver and vehicle to a requested trip.

        Exactly one of several concurrent calls for the same trip succeeds;
        the rest get AlreadyMatchedError. A request past the timeout cannot
        be matched: it is cancelled on the spot and AlreadyTerminalError is
        raised. ix_trips_driver_active keeps a driver on one trip even when
        two accepts by the same driver race past the busy check.
        """
        driver = await self.db.get(User, driver_id, populate_existing=True)
        if driver is None or driver.user_type != UserType.DRIVER:
            raise InsufficientPermissionsError("Only drivers can accept trips")
        if not driver.is_driver_active:
            raise DriverUnavailableError(driver_id, "driver is offline")

        vehicle = await self._driver_vehicle(driver_id, vehicle_id)

        busy = await self.active_trip_for_driver(driver_id)
        if busy is not None:
            raise DriverUnavailableError(driver_id, f"already on trip {busy.id}")

        now = utcnow()
        vehicle_id = vehicle.id
        try:
            result = await self.db.execute(
                update(Trip)
                .where(
                    Trip.id == trip_id,
                    Trip.status == TripStatus.REQUESTED,
                    Trip.requested_at >= self.sweeper.cutoff(now)
                )
                .values(
                    status=TripStatus.MATCHED,
                    driver_id=driver_id,
                    vehicle_id=vehicle_id,
                    matched_at=now,
                )
                .execution_options(synchronize_session=False)
            )
        except IntegrityError:
            await self.db.rollback()
            raise DriverUnavailableError(driver_id, "already on another trip")
        if result.rowcount == 0:
            await self._raise_match_failure(trip_id, now)

        await record_event(
            self.db, AuditAction.TRIP_MATCHED, actor_id=driver_id, trip_id=trip_id,
            metadata={"vehicle_id": vehicle_id}
        )
        await self.db.commit()

        trip = await self.get(trip_id)
        logger.info("Trip %s matched to driver %s", trip_id, driver_id)
        await self._notify("notify_matched", trip.rider_id, trip.id, driver_id)
        return trip

    async def begin_pickup_wait(self, trip_id: str, actor_id: Optional[str] = None) -> Trip:
        return await self._advance(trip_id, TripStatus.PICKUP, actor_id, {"pickup_at": utcnow()})

    async def start_trip(self, trip_id: str, actor_id: Optional[str] = None) -> Trip:
        return await self._advance(trip_id, TripStatus.IN_PROGRESS, actor_id, {"started_at": utcnow()})

    async def complete(
        self,
        trip_id: str,
        final_price: Optional[Decimal] = None,
        actor_id: Optional[str] = None,
    ) -> Trip:
        """
        Finish an in-progress trip.

        ``final_price`` defaults to the estimated price. The driver's share
        and the platform fee are derived from it.
        """
        trip = await self.get(trip_id)
        values = self._completion_values(trip, final_price)
        return await self._advance(trip_id, TripStatus.COMPLETED, actor_id, values)

    async def transition(
        self,
        trip_id: str,
        target: TripStatus,
        actor_id: Optional[str] = None,
        final_price: Optional[Decimal] = None,
    ) -> Trip:
        """Generic driver-side progression used by the status endpoint."""
        if target == TripStatus.PICKUP:
            return await self.begin_pickup_wait(trip_id, actor_id)
        if target == TripStatus.IN_PROGRESS:
            return await self.start_trip(trip_id, actor_id)
        if target == TripStatus.COMPLETED:
            return await self.complete(trip_id, final_price, actor_id)
        trip = await self.get(trip_id)
        raise InvalidTransitionError(trip_id, trip.status.value, target.value)

    async def cancel(
        self,
        trip_id: str,
        actor_id: Optional[str],
        reason: CancelReason = CancelReason.USER_REQUESTED,
    ) -> Trip:
        """
        Cancel a requested, matched or pickup trip.

        A rider cancelling after a driver was assigned is charged the
        plan's cancellation fee.

        Raises:
            AlreadyTerminalError: The trip is already completed or cancelled
            InvalidTransitionError: The trip is in progress
        """
        for _ in range(_CANCEL_ATTEMPTS):
            trip = await self.get(trip_id)
            if trip.status in TERMINAL_STATUSES:
                raise AlreadyTerminalError(trip_id, trip.status.value)
            if trip.status not in CANCELLABLE_STATUSES:
                raise InvalidTransitionError(trip_id, trip.status.value, TripStatus.CANCELLED.value)

            fee = await self._cancellation_fee(trip, actor_id, reason)
            now = utcnow()
            result = await self.db.execute(
                update(Trip)
                .where(Trip.id == trip_id, Trip.status == trip.status)
                .values(
                    status=TripStatus.CANCELLED,
                    cancel_reason=reason,
                    cancelled_by=actor_id,
                    cancelled_at=now,
                    cancellation_fee=fee,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                break
        else:
            trip = await self.get(trip_id)
            if trip.status in TERMINAL_STATUSES:
                raise AlreadyTerminalError(trip_id, trip.status.value)
            raise InvalidTransitionError(trip_id, trip.status.value, TripStatus.CANCELLED.value)

        await record_event(
            self.db, AuditAction.TRIP_CANCELLED, actor_id=actor_id, trip_id=trip_id,
            metadata={"reason": reason.value, "from_status": trip.status.value,
                      "cancellation_fee": str(fee) if fee is not None else None}
        )
        await self.db.commit()

        cancelled = await self.get(trip_id)
        logger.info("Trip %s cancelled (%s) by %s", trip_id, reason.value, actor_id)
        notify_driver = cancelled.driver_id if cancelled.driver_id != actor_id else None
        await self._notify("notify_cancelled", cancelled.rider_id, trip_id, reason.value, notify_driver)
        return cancelled

    async def handle_driver_offline(self, driver_id: str) -> List[Trip]:
        """
        Mark a driver offline and cancel the trips they were serving.

        Only matched, pickup and in-progress trips are touched; completed
        and cancelled trips stay as they are. Each rider is notified.

        Returns:
            Trips cancelled by this call
        """
        await self.db.execute(
            update(User)
            .where(User.id == driver_id)
            .values(is_driver_active=False)
            .execution_options(synchronize_session=False)
        )

        result = await self.db.execute(
            select(Trip.id).where(
                Trip.driver_id == driver_id,
                Trip.status.in_(DRIVER_OFFLINE_STATUSES)
            )
        )
        candidate_ids = list(result.scalars().all())

        now = utcnow()
        cancelled_ids = []
        for trip_id in candidate_ids:
            result = await self.db.execute(
                update(Trip)
                .where(
                    Trip.id == trip_id,
                    Trip.driver_id == driver_id,
                    Trip.status.in_(DRIVER_OFFLINE_STATUSES)
                )
                .values(
                    status=TripStatus.CANCELLED,
                    cancel_reason=CancelReason.DRIVER_OFFLINE,
                    cancelled_by=driver_id,
                    cancelled_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                await record_event(
                    self.db, AuditAction.TRIP_CANCELLED, actor_id=driver_id, trip_id=trip_id,
                    metadata={"reason": CancelReason.DRIVER_OFFLINE.value}
                )
                cancelled_ids.append(trip_id)

        await record_event(
            self.db, AuditAction.DRIVER_OFFLINE, actor_id=driver_id,
            metadata={"cancelled_trips": cancelled_ids}
        )
        await self.db.commit()

        cancelled = [await self.get(trip_id) for trip_id in cancelled_ids]
        for trip in cancelled:
            logger.info("Trip %s cancelled, driver %s went offline", trip.id, driver_id)
            await self._notify("notify_cancelled", trip.rider_id, trip.id, CancelReason.DRIVER_OFFLINE.value)
        return cancelled

    async def set_driver_online(self, driver_id: str) -> None:
        await self.db.execute(
            update(User)
            .where(User.id == driver_id, User.user_type == UserType.DRIVER)
            .values(is_driver_active=True)
            .execution_options(synchronize_session=False)
        )
        await record_event(self.db, AuditAction.DRIVER_ONLINE, actor_id=driver_id)
        await self.db.commit()

    async def rate(
        self,
        trip_id: str,
        from_user_id: str,
        rating: int,
        comment: Optional[str] = None,
        to_user_id: Optional[str] = None,
    ) -> Rating:
        """
        Rate the other party of a trip.

        Rating is the terminal event of a ride: a matched, pickup or
        in-progress trip is completed at its estimated price first. The
        rated user's running average is updated in the same statement that
        increments their rating count.
        """
        if not 1 <= int(rating) <= 5:
            raise ValidationFailedError("Rating must be between 1 and 5", details={"rating": rating})

        trip = await self.get(trip_id)
        if from_user_id not in (trip.rider_id, trip.driver_id):
            raise InsufficientPermissionsError("You are not a party to this trip")
        if trip.driver_id is None:
            raise InvalidTransitionError(trip_id, trip.status.value, TripStatus.COMPLETED.value)

        if to_user_id is None:
            to_user_id = trip.driver_id if from_user_id == trip.rider_id else trip.rider_id
        elif to_user_id not in (trip.rider_id, trip.driver_id) or to_user_id == from_user_id:
            raise ValidationFailedError("Ratings go to the other party of the trip",
                                        details={"to_user_id": to_user_id})

        if trip.status == TripStatus.CANCELLED:
            raise InvalidTransitionError(trip_id, trip.status.value, TripStatus.COMPLETED.value)

        if trip.status != TripStatus.COMPLETED:
            values = {"status": TripStatus.COMPLETED, **self._completion_values(trip, None)}
            result = await self.db.execute(
                update(Trip)
                .where(Trip.id == trip_id, Trip.status.in_(DRIVER_OFFLINE_STATUSES))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                await record_event(
                    self.db, AuditAction.TRIP_COMPLETED, actor_id=from_user_id, trip_id=trip_id,
                    metadata={"via": "rating", "final_price": str(values["final_price"])}
                )
            else:
                current = await self._load(trip_id)
                if current.status != TripStatus.COMPLETED:
                    raise InvalidTransitionError(trip_id, current.status.value, TripStatus.COMPLETED.value)

        entry = Rating(
            trip_id=trip_id,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            rating=int(rating),
            comment=comment,
        )
        try:
            self.db.add(entry)
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise AlreadyRatedError(trip_id, from_user_id)

        running_total = cast(User.rating * User.total_ratings + int(rating), Float)
        await self.db.execute(
            update(User)
            .where(User.id == to_user_id)
            .values(
                rating=cast(running_total / (User.total_ratings + 1), Numeric(3, 2)),
                total_ratings=User.total_ratings + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await record_event(
            self.db, AuditAction.TRIP_RATED, actor_id=from_user_id, trip_id=trip_id,
            metadata={"to_user_id": to_user_id, "rating": int(rating)}
        )
        await self.db.commit()
        await self.db.refresh(entry)
        await self._notify("notify_status", trip.rider_id, trip_id, TripStatus.COMPLETED.value)
        return entry

    # Internals

    async def _advance(self, trip_id: str, target: TripStatus, actor_id: Optional[str], values: dict) -> Trip:
        previous = PREVIOUS_STATUS[target]
        result = await self.db.execute(
            update(Trip)
            .where(Trip.id == trip_id, Trip.status == previous)
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            trip = await self._load(trip_id)
            if trip is None:
                raise TripNotFoundError(trip_id)
            raise InvalidTransitionError(trip_id, trip.status.value, target.value)

        await record_event(
            self.db, _AUDIT_ACTIONS[target], actor_id=actor_id, trip_id=trip_id,
            metadata={k: str(v) for k, v in values.items()}
        )
        await self.db.commit()

        trip = await self.get(trip_id)
        logger.info("Trip %s moved %s -> %s", trip_id, previous.value, target.value)
        await self._notify("notify_status", trip.rider_id, trip_id, target.value)
        return trip

    async def _raise_match_failure(self, trip_id: str, now):
        trip = await self._load(trip_id)
        if trip is None:
            raise TripNotFoundError(trip_id)
        if trip.status == TripStatus.REQUESTED:
            # Still requested, so the update missed on the timeout bound
            await self.sweeper.expire_stale_requests(self.db, rider_id=trip.rider_id, now=now)
            raise AlreadyTerminalError(trip_id, TripStatus.CANCELLED.value)
        if trip.driver_id is not None:
            raise AlreadyMatchedError(trip_id, trip.status.value)
        raise InvalidTransitionError(trip_id, trip.status.value, TripStatus.MATCHED.value)

    async def _driver_vehicle(self, driver_id: str, vehicle_id: Optional[str]) -> Vehicle:
        query = select(Vehicle).where(Vehicle.driver_id == driver_id)
        if vehicle_id:
            query = query.where(Vehicle.id == vehicle_id)
        result = await self.db.execute(query.order_by(Vehicle.created_at))
        vehicle = result.scalars().first()
        if vehicle is None:
            raise VehicleRequiredError(driver_id, vehicle_id)
        return vehicle

    async def _cancellation_fee(self, trip: Trip, actor_id: Optional[str], reason: CancelReason) -> Optional[Decimal]:
        if reason != CancelReason.USER_REQUESTED or actor_id != trip.rider_id:
            return None
        if trip.status not in (TripStatus.MATCHED, TripStatus.PICKUP):
            return None
        result = await self.db.execute(select(PricingPlan).where(PricingPlan.name == trip.ride_type))
        plan = result.scalar_one_or_none()
        if plan is None or not plan.cancellation_fee:
            return None
        return Decimal(str(plan.cancellation_fee)).quantize(CENT)

    def _completion_values(self, trip: Trip, final_price: Optional[Decimal]) -> dict:
        if final_price is None:
            price = Decimal(str(trip.estimated_price))
        else:
            price = Decimal(str(final_price))
            if price < 0:
                raise ValidationFailedError("Final price cannot be negative", details={"final_price": str(price)})
        price = price.quantize(CENT, rounding=ROUND_HALF_UP)
        earnings = (price * Decimal(str(settings.driver_earnings_share))).quantize(CENT, rounding=ROUND_HALF_UP)
        return {
            "final_price": price,
            "driver_earnings": earnings,
            "platform_fee": price - earnings,
            "completed_at": utcnow(),
        }

    async def _load(self, trip_id: str) -> Optional[Trip]:
        result = await self.db.execute(
            select(Trip).where(Trip.id == trip_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _notify(self, method: str, *args) -> None:
        if self.notifier is None:
            return
        try:
            await getattr(self.notifier, method)(*args)
        except Exception as e:
            logger.warning("Notification %s failed: %s", method, e)


def _apply_quote(trip: Trip, quote, promo_reason: Optional[str] = None) -> None:
    trip.distance = quote.distance
    trip.duration = quote.estimated_duration
    trip.estimated_price = quote.estimated_price
    trip.discount_amount = quote.breakdown.discount
    trip.promo_code_id = quote.promo_id if quote.promo_applied else None
    breakdown = quote.breakdown.model_dump(mode="json")
    breakdown["promo_code"] = quote.promo_code
    breakdown["promo_reason"] = promo_reason or quote.promo_reason
    breakdown["is_peak"] = quote.is_peak
    trip.price_breakdown = breakdown
