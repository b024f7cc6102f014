"""
Trip state machine tests.
"""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from ridehail.app.core.exceptions import (
    AlreadyTerminalError,
    DriverUnavailableError,
    ImplausibleDistanceError,
    InsufficientPermissionsError,
    InvalidDistanceError,
    InvalidTransitionError,
    PlanNotFoundError,
    RiderHasActiveTripError,
    TripNotFoundError,
    ValidationFailedError,
    VehicleRequiredError,
)
from ridehail.app.domain.pricing.catalog import PricingCatalog
from ridehail.app.models.enums import UserType
from ridehail.app.models.pricing_enums import DiscountType
from ridehail.app.models.promo_code import PromoCode
from ridehail.app.models.trip_enums import TripStatus, CancelReason
from ridehail.app.services.audit import get_trip_audit_trail, AuditAction


async def test_request_trip(parties, lifecycle, request_trip, notifier):
    trip = await request_trip()

    assert trip.status == TripStatus.REQUESTED
    assert trip.estimated_price == Decimal("10.00")
    assert trip.distance == 20
    assert trip.driver_id is None
    assert trip.requested_at is not None
    assert [a["type"] for a in trip.price_breakdown["adjustments"]] == ["base_fare", "distance", "time"]
    assert notifier.names() == ["new_trip"]


async def test_distance_derived_from_coordinates_when_missing(parties, request_trip):
    trip = await request_trip(distance=None)

    # Market St to Golden Gate Park is about 8.5 km in a straight line
    assert 8 < trip.distance < 9


async def test_distance_shorter_than_straight_line_rejected(parties, request_trip):
    with pytest.raises(ImplausibleDistanceError) as exc_info:
        await request_trip(distance=2)

    assert exc_info.value.error_code == "ERR_VALIDATION_005"


async def test_negative_distance_rejected(parties, request_trip):
    with pytest.raises(InvalidDistanceError):
        await request_trip(distance=-1)


async def test_trip_priced_at_request_time(parties, lifecycle, mocker):
    # 08:00 UTC is inside the morning rush hour
    mocker.patch(
        "ridehail.app.domain.trips.lifecycle.utcnow",
        return_value=datetime(2024, 3, 4, 8, 0, tzinfo=timezone.utc),
    )

    trip = await lifecycle.create(
        "rider-1",
        pickup_address="1 Market St", pickup_lat=37.7936, pickup_lng=-122.3950,
        destination_address="Golden Gate Park", destination_lat=37.7694, destination_lng=-122.4862,
        ride_type="basic", distance=20,
    )

    assert trip.price_breakdown["is_peak"] is True
    assert "surge" in [a["type"] for a in trip.price_breakdown["adjustments"]]
    # $10.00 subtotal surged by the 1.5 floor
    assert trip.estimated_price == Decimal("15.00")


async def test_unknown_ride_type(parties, request_trip):
    with pytest.raises(PlanNotFoundError):
        await request_trip(ride_type="helicopter")


async def test_one_active_trip_per_rider(parties, request_trip):
    first = await request_trip()

    with pytest.raises(RiderHasActiveTripError) as exc_info:
        await request_trip()
    assert exc_info.value.details["trip_id"] == first.id

    # Another rider is unaffected
    other = await request_trip("rider-2")
    assert other.status == TripStatus.REQUESTED


async def test_rider_can_request_again_after_cancel(parties, lifecycle, request_trip):
    first = await request_trip()
    await lifecycle.cancel(first.id, "rider-1")

    second = await request_trip()
    assert second.id != first.id
    assert second.status == TripStatus.REQUESTED


async def test_full_trip_lifecycle(parties, lifecycle, request_trip, notifier, db_session):
    trip = await request_trip()

    matched = await lifecycle.match(trip.id, "driver-1")
    assert matched.status == TripStatus.MATCHED
    assert matched.driver_id == "driver-1"
    assert matched.vehicle_id == parties["driver-1"].id
    assert matched.matched_at is not None

    at_pickup = await lifecycle.begin_pickup_wait(trip.id, "driver-1")
    assert at_pickup.status == TripStatus.PICKUP
    assert at_pickup.pickup_at is not None

    started = await lifecycle.start_trip(trip.id, "driver-1")
    assert started.status == TripStatus.IN_PROGRESS
    assert started.started_at is not None

    done = await lifecycle.complete(trip.id, actor_id="driver-1")
    assert done.status == TripStatus.COMPLETED
    assert done.final_price == Decimal("10.00")
    assert done.driver_earnings == Decimal("9.00")
    assert done.platform_fee == Decimal("1.00")
    assert done.completed_at is not None

    assert notifier.names() == ["new_trip", "matched", "status", "status", "status"]
    trail = await get_trip_audit_trail(db_session, trip.id)
    assert [entry.action for entry in trail] == [
        AuditAction.TRIP_REQUESTED,
        AuditAction.TRIP_MATCHED,
        AuditAction.TRIP_PICKUP,
        AuditAction.TRIP_STARTED,
        AuditAction.TRIP_COMPLETED,
    ]


async def test_complete_with_final_price(parties, lifecycle, request_trip):
    trip = await request_trip()
    await lifecycle.match(trip.id, "driver-1")
    await lifecycle.begin_pickup_wait(trip.id)
    await lifecycle.start_trip(trip.id)

    done = await lifecycle.complete(trip.id, final_price=Decimal("12.34"))

    assert done.final_price == Decimal("12.34")
    assert done.driver_earnings == Decimal("11.11")
    assert done.platform_fee == Decimal("1.23")
    assert done.driver_earnings + done.platform_fee == done.final_price


async def test_negative_final_price_rejected(parties, lifecycle, request_trip):
    trip = await request_trip()
    await lifecycle.match(trip.id, "driver-1")
    await lifecycle.begin_pickup_wait(trip.id)
    await lifecycle.start_trip(trip.id)

    with pytest.raises(ValidationFailedError):
        await lifecycle.complete(trip.id, final_price=Decimal("-1"))


async def test_cannot_skip_states(parties, lifecycle, request_trip):
    trip = await request_trip()

    with pytest.raises(InvalidTransitionError):
        await lifecycle.begin_pickup_wait(trip.id)

    await lifecycle.match(trip.id, "driver-1")
    with pytest.raises(InvalidTransitionError):
        await lifecycle.start_trip(trip.id)
    with pytest.raises(InvalidTransitionError):
        await lifecycle.complete(trip.id)

    assert (await lifecycle.get(trip.id)).status == TripStatus.MATCHED


async def test_transition_dispatches_by_target(parties, lifecycle, request_trip):
    trip = await request_trip()
    await lifecycle.match(trip.id, "driver-1")

    trip = await lifecycle.transition(trip.id, TripStatus.PICKUP, "driver-1")
    assert trip.status == TripStatus.PICKUP

    with pytest.raises(InvalidTransitionError):
        await lifecycle.transition(trip.id, TripStatus.REQUESTED, "driver-1")


async def test_unknown_trip(parties, lifecycle):
    with pytest.raises(TripNotFoundError):
        await lifecycle.get("missing")
    with pytest.raises(TripNotFoundError):
        await lifecycle.begin_pickup_wait("missing")


async def test_cancel_requested_trip_without_fee(parties, lifecycle, request_trip, notifier):
    trip = await request_trip()

    cancelled = await lifecycle.cancel(trip.id, "rider-1")

    assert cancelled.status == TripStatus.CANCELLED
    assert cancelled.cancel_reason == CancelReason.USER_REQUESTED
    assert cancelled.cancelled_by == "rider-1"
    assert cancelled.cancellation_fee is None
    assert notifier.calls[-1] == ("cancelled", ("rider-1", trip.id, "user_requested"))


async def test_rider_cancel_after_match_charges_fee(parties, lifecycle, request_trip):
    trip = await request_trip()
    await lifecycle.match(trip.id, "driver-1")

    cancelled = await lifecycle.cancel(trip.id, "rider-1")

    assert cancelled.status == TripStatus.CANCELLED
    assert cancelled.cancellation_fee == Decimal("2.50")


async def test_driver_cancel_does_not_charge_rider(parties, lifecycle, request_trip):
    trip = await request_trip()
    await lifecycle.match(trip.id, "driver-1")
    await lifecycle.begin_pickup_wait(trip.id)

    cancelled = await lifecycle.cancel(trip.id, "driver-1")

    assert cancelled.cancellation_fee is None
    assert cancelled.cancelled_by == "driver-1"


async def test_cancel_completed_trip_is_terminal(parties, lifecycle, request_trip):
    trip = await request_trip()
    await lifecycle.match(trip.id, "driver-1")
    await lifecycle.begin_pickup_wait(trip.id)
    await lifecycle.start_trip(trip.id)
    await lifecycle.complete(trip.id)

    with pytest.raises(AlreadyTerminalError):
        await lifecycle.cancel(trip.id, "rider-1")
    assert (await lifecycle.get(trip.id)).status == TripStatus.COMPLETED


async def test_cancel_twice(parties, lifecycle, request_trip):
    trip = await request_trip()
    await lifecycle.cancel(trip.id, "rider-1")

    with pytest.raises(AlreadyTerminalError):
        await lifecycle.cancel(trip.id, "rider-1")


async def test_cannot_cancel_in_progress_trip(parties, lifecycle, request_trip):
    trip = await request_trip()
    await lifecycle.match(trip.id, "driver-1")
    await lifecycle.begin_pickup_wait(trip.id)
    await lifecycle.start_trip(trip.id)

    with pytest.raises(InvalidTransitionError):
        await lifecycle.cancel(trip.id, "rider-1")


async def test_cannot_match_cancelled_trip(parties, lifecycle, request_trip):
    trip = await request_trip()
    await lifecycle.cancel(trip.id, "rider-1")

    with pytest.raises(InvalidTransitionError):
        await lifecycle.match(trip.id, "driver-1")


async def test_match_requires_online_driver(parties, make_user, lifecycle, request_trip):
    await make_user("driver-3", UserType.DRIVER, online=False, with_vehicle=True)
    trip = await request_trip()

    with pytest.raises(DriverUnavailableError):
        await lifecycle.match(trip.id, "driver-3")


async def test_match_requires_driver_role(parties, lifecycle, request_trip):
    trip = await request_trip()

    with pytest.raises(InsufficientPermissionsError):
        await lifecycle.match(trip.id, "rider-2")


async def test_match_requires_vehicle(parties, make_user, lifecycle, request_trip):
    await make_user("driver-3", UserType.DRIVER, online=True)
    trip = await request_trip()

    with pytest.raises(VehicleRequiredError):
        await lifecycle.match(trip.id, "driver-3")
    with pytest.raises(VehicleRequiredError):
        await lifecycle.match(trip.id, "driver-1", vehicle_id=parties["driver-2"].id)


async def test_busy_driver_cannot_take_second_trip(parties, lifecycle, request_trip):
    first = await request_trip("rider-1")
    second = await request_trip("rider-2")
    await lifecycle.match(first.id, "driver-1")

    with pytest.raises(DriverUnavailableError):
        await lifecycle.match(second.id, "driver-1")


async def test_history_lists_both_sides(parties, lifecycle, request_trip):
    trip = await request_trip()
    await lifecycle.match(trip.id, "driver-1")

    assert [t.id for t in await lifecycle.history("rider-1")] == [trip.id]
    assert [t.id for t in await lifecycle.history("driver-1")] == [trip.id]
    assert await lifecycle.history("rider-2") == []


async def test_open_requests_only_lists_waiting_trips(parties, lifecycle, request_trip):
    waiting = await request_trip("rider-1")
    taken = await request_trip("rider-2")
    await lifecycle.match(taken.id, "driver-1")

    assert [t.id for t in await lifecycle.open_requests()] == [waiting.id]


async def test_promo_applied_and_redeemed_on_request(parties, lifecycle, request_trip, db_session):
    promo = await PricingCatalog.create_promo(db_session, {
        "code": "ride3",
        "name": "Three off",
        "discount_type": DiscountType.FIXED_AMOUNT,
        "discount_value": Decimal("3.00"),
        "usage_limit": 1,
    })
    await db_session.commit()

    trip = await request_trip(promo_code="RIDE3")

    assert trip.estimated_price == Decimal("7.00")
    assert trip.discount_amount == Decimal("3.00")
    assert trip.promo_code_id == promo.id
    refreshed = await db_session.get(PromoCode, promo.id, populate_existing=True)
    assert refreshed.used_count == 1

    # The only use is gone, so the next rider pays full price
    other = await request_trip("rider-2", promo_code="RIDE3")
    assert other.estimated_price == Decimal("10.00")
    assert other.promo_code_id is None
    assert other.price_breakdown["promo_reason"] == "usage limit reached"


async def test_promo_lost_at_redemption_requotes(parties, request_trip, db_session, mocker):
    await PricingCatalog.create_promo(db_session, {
        "code": "RIDE3",
        "name": "Three off",
        "discount_type": DiscountType.FIXED_AMOUNT,
        "discount_value": Decimal("3.00"),
    })
    await db_session.commit()
    mocker.patch(
        "ridehail.app.domain.trips.lifecycle.redeem",
        new=AsyncMock(return_value=False),
    )

    trip = await request_trip(promo_code="RIDE3")

    assert trip.estimated_price == Decimal("10.00")
    assert trip.discount_amount is None
    assert trip.promo_code_id is None
    assert trip.price_breakdown["promo_reason"] == "usage limit reached"


async def test_notification_failure_does_not_break_transition(parties, db_session, request_trip):
    from ridehail.app.domain.trips.lifecycle import TripLifecycle

    broken = AsyncMock()
    broken.notify_new_trip.side_effect = RuntimeError("socket gone")
    lifecycle = TripLifecycle(db_session, broken)

    trip = await request_trip(via=lifecycle)

    assert trip.status == TripStatus.REQUESTED
    broken.notify_new_trip.assert_awaited_once()
