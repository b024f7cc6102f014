"""
Notification delivery tests using fake sockets.
"""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import redis

from ridehail.app.core.reliability import CircuitBreaker
from ridehail.app.services.matching_notifier import ConnectionRegistry, MatchingNotifier
from ridehail.app.services.notification_subscriber import NotificationSubscriber


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(message)


def sample_trip():
    return SimpleNamespace(
        id="trip-1", rider_id="rider-1", ride_type="economy",
        pickup_address="1 Market St", pickup_lat=37.79, pickup_lng=-122.39,
        destination_address="Golden Gate Park", destination_lat=37.77, destination_lng=-122.48,
        distance=8.46, duration=16.9, estimated_price="24.12", requested_at=None,
    )


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def local_notifier(registry):
    return MatchingNotifier(registry, fanout_enabled=False)


async def test_new_trip_goes_to_every_online_driver(registry, local_notifier):
    a, b = FakeSocket(), FakeSocket()
    await registry.register_driver("driver-1", a)
    await registry.register_driver("driver-2", b)

    await local_notifier.notify_new_trip(sample_trip())

    for socket in (a, b):
        assert socket.sent[0]["type"] == "new_ride_request"
        assert socket.sent[0]["trip"]["id"] == "trip-1"
        assert socket.sent[0]["trip"]["pickup"]["address"] == "1 Market St"


async def test_failed_socket_does_not_block_others(registry, local_notifier):
    broken, healthy = FakeSocket(fail=True), FakeSocket()
    await registry.register_driver("driver-1", broken)
    await registry.register_driver("driver-2", healthy)

    delivered = await local_notifier.deliver_local(
        {"target": "drivers", "user_id": None, "message": {"type": "new_ride_request"}}
    )

    assert delivered == 1
    assert healthy.sent == [{"type": "new_ride_request"}]


async def test_matched_and_cancelled_reach_rider(registry, local_notifier):
    rider = FakeSocket()
    driver = FakeSocket()
    await registry.register_rider("rider-1", rider)
    await registry.register_driver("driver-1", driver)

    await local_notifier.notify_matched("rider-1", "trip-1", "driver-1")
    await local_notifier.notify_cancelled("rider-1", "trip-1", "user_requested", driver_id="driver-1")

    assert [m["type"] for m in rider.sent] == ["trip_matched", "trip_cancelled"]
    assert rider.sent[0]["driver_id"] == "driver-1"
    assert driver.sent == [{"type": "trip_cancelled", "trip_id": "trip-1", "reason": "user_requested"}]


async def test_missing_recipient_is_dropped(local_notifier):
    await local_notifier.notify_status("nobody", "trip-1", "pickup")
    await local_notifier.forward_location("nobody", "trip-1", "driver-1", 1.0, 2.0)


async def test_unregister_socket_removes_all_its_registrations(registry):
    socket = FakeSocket()
    await registry.register_driver("driver-1", socket)
    await registry.register_rider("driver-1", socket)

    removed = await registry.unregister_socket(socket)

    assert removed == ["driver-1"]
    assert await registry.counts() == {"drivers": 0, "riders": 0}


async def test_reconnected_socket_survives_old_unregister(registry):
    old, new = FakeSocket(), FakeSocket()
    await registry.register_driver("driver-1", old)
    await registry.register_driver("driver-1", new)

    assert await registry.unregister_driver("driver-1", old) is False
    assert await registry.get_driver("driver-1") is new


async def test_fanout_publishes_instead_of_local_delivery(registry):
    publisher = AsyncMock()
    rider = FakeSocket()
    await registry.register_rider("rider-1", rider)
    notifier = MatchingNotifier(registry, fanout_enabled=True, channel="test:notifications", publisher=publisher)

    await notifier.notify_status("rider-1", "trip-1", "in_progress")

    publisher.assert_awaited_once()
    channel, envelope = publisher.await_args.args
    assert channel == "test:notifications"
    assert envelope == {
        "target": "rider",
        "user_id": "rider-1",
        "message": {"type": "trip_status", "trip_id": "trip-1", "status": "in_progress"},
    }
    assert rider.sent == []


async def test_fanout_failure_falls_back_to_local(registry):
    publisher = AsyncMock(side_effect=ConnectionError("redis down"))
    rider = FakeSocket()
    await registry.register_rider("rider-1", rider)
    notifier = MatchingNotifier(
        registry, fanout_enabled=True, publisher=publisher,
        circuit_breaker=CircuitBreaker(name="test", failure_threshold=1, reset_timeout=60),
    )

    await notifier.notify_status("rider-1", "trip-1", "pickup")
    await notifier.notify_status("rider-1", "trip-1", "in_progress")

    # Second publish is short-circuited by the open breaker
    assert publisher.await_count == 1
    assert [m["status"] for m in rider.sent] == ["pickup", "in_progress"]


async def test_fanout_through_redis_publish(registry, redis_client_session):
    notifier = MatchingNotifier(registry, fanout_enabled=True, channel="test:notifications")

    await notifier.notify_matched("rider-1", "trip-1", "driver-1")

    channel, raw = redis_client_session.published[-1]
    assert channel == "test:notifications"
    assert json.loads(raw)["message"]["type"] == "trip_matched"


async def test_subscriber_delivers_published_envelope(registry, local_notifier):
    rider = FakeSocket()
    await registry.register_rider("rider-1", rider)
    subscriber = NotificationSubscriber(None, local_notifier, "test:notifications")
    envelope = {"target": "rider", "user_id": "rider-1", "message": {"type": "trip_matched", "trip_id": "t"}}

    delivered = await subscriber.handle_message({"type": "message", "data": json.dumps(envelope)})

    assert delivered == 1
    assert rider.sent == [{"type": "trip_matched", "trip_id": "t"}]


async def test_subscriber_ignores_noise(local_notifier):
    subscriber = NotificationSubscriber(None, local_notifier, "test:notifications")

    assert await subscriber.handle_message({"type": "subscribe", "data": 1}) == 0
    assert await subscriber.handle_message({"type": "message", "data": "{not json"}) == 0


class FakePubSub:
    def __init__(self, error=None, messages=()):
        self.error = error
        self.messages = list(messages)
        self.closed = False

    async def subscribe(self, channel):
        if self.error:
            raise self.error

    async def listen(self):
        for message in self.messages:
            yield message
        await asyncio.Event().wait()

    async def aclose(self):
        self.closed = True


class FakeRedis:
    def __init__(self, *pubsubs):
        self.pubsubs = list(pubsubs)

    def pubsub(self):
        return self.pubsubs.pop(0)


@pytest.mark.parametrize("error", [redis.TimeoutError("read timed out"), RuntimeError("boom")])
async def test_subscriber_reconnects_after_any_failure(registry, local_notifier, caplog, error):
    rider = FakeSocket()
    await registry.register_rider("rider-1", rider)
    envelope = {"target": "rider", "user_id": "rider-1", "message": {"type": "trip_matched", "trip_id": "t"}}
    broken = FakePubSub(error=error)
    healthy = FakePubSub(messages=[{"type": "message", "data": json.dumps(envelope)}])
    subscriber = NotificationSubscriber(FakeRedis(broken, healthy), local_notifier, "test:notifications", reconnect_delay=0)

    await subscriber.start()
    for _ in range(100):
        if rider.sent:
            break
        await asyncio.sleep(0.01)
    await subscriber.stop()

    assert rider.sent == [{"type": "trip_matched", "trip_id": "t"}]
    assert broken.closed is True
    assert healthy.closed is True
    assert "reconnecting" in caplog.text
