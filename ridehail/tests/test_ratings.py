"""
Rating tests.
"""

from decimal import Decimal

import pytest

from ridehail.app.core.exceptions import (
    AlreadyRatedError, InsufficientPermissionsError, InvalidTransitionError, ValidationFailedError
)
from ridehail.app.models.user import User
from ridehail.app.models.trip_enums import TripStatus


@pytest.fixture
async def completed_trip_id(parties, lifecycle, request_trip):
    trip = await request_trip()
    await lifecycle.match(trip.id, "driver-1")
    await lifecycle.begin_pickup_wait(trip.id)
    await lifecycle.start_trip(trip.id)
    await lifecycle.complete(trip.id)
    return trip.id


async def test_rider_rates_driver(completed_trip_id, lifecycle, db_session):
    entry = await lifecycle.rate(completed_trip_id, "rider-1", 4, comment="Smooth ride")

    assert entry.to_user_id == "driver-1"
    assert entry.rating == 4
    driver = await db_session.get(User, "driver-1", populate_existing=True)
    assert driver.total_ratings == 1
    assert driver.rating == Decimal("4.00")


async def test_running_average(completed_trip_id, lifecycle, request_trip, db_session):
    await lifecycle.rate(completed_trip_id, "rider-1", 4)

    second = await request_trip("rider-2")
    await lifecycle.match(second.id, "driver-1")
    await lifecycle.rate(second.id, "rider-2", 5)

    driver = await db_session.get(User, "driver-1", populate_existing=True)
    assert driver.total_ratings == 2
    assert driver.rating == Decimal("4.50")


async def test_both_parties_can_rate_once(completed_trip_id, lifecycle):
    await lifecycle.rate(completed_trip_id, "rider-1", 5)
    entry = await lifecycle.rate(completed_trip_id, "driver-1", 3)
    assert entry.to_user_id == "rider-1"

    with pytest.raises(AlreadyRatedError):
        await lifecycle.rate(completed_trip_id, "rider-1", 1)


async def test_rating_under_way_trip_completes_it(parties, lifecycle, request_trip):
    trip = await request_trip()
    trip_id = trip.id
    await lifecycle.match(trip_id, "driver-1")

    await lifecycle.rate(trip_id, "rider-1", 5)

    finished = await lifecycle.get(trip_id)
    assert finished.status == TripStatus.COMPLETED
    assert finished.final_price == Decimal("10.00")
    assert finished.driver_earnings == Decimal("9.00")


async def test_cannot_rate_unmatched_or_cancelled_trip(parties, lifecycle, request_trip):
    trip = await request_trip()
    trip_id = trip.id

    with pytest.raises(InvalidTransitionError):
        await lifecycle.rate(trip_id, "rider-1", 5)

    await lifecycle.cancel(trip_id, "rider-1")
    with pytest.raises(InvalidTransitionError):
        await lifecycle.rate(trip_id, "rider-1", 5)


async def test_outsiders_cannot_rate(completed_trip_id, lifecycle):
    with pytest.raises(InsufficientPermissionsError):
        await lifecycle.rate(completed_trip_id, "rider-2", 5)


@pytest.mark.parametrize("score", [0, 6])
async def test_score_range(completed_trip_id, lifecycle, score):
    with pytest.raises(ValidationFailedError):
        await lifecycle.rate(completed_trip_id, "rider-1", score)


async def test_cannot_rate_yourself(completed_trip_id, lifecycle):
    with pytest.raises(ValidationFailedError):
        await lifecycle.rate(completed_trip_id, "rider-1", 5, to_user_id="rider-1")
