"""
Matching Notifier.

Tells online drivers about new ride requests and tells riders when their
trip is matched, cancelled or progresses. Everything here is best-effort:
a missing socket or a failed send is logged and dropped, never raised to
the trip lifecycle.

With fan-out enabled, notifications are published to a Redis channel and
every API instance (this one included) delivers them to the sockets it
holds; see ``notification_subscriber``. If publishing fails the message is
delivered to local sockets only.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ridehail.app.core.config import settings
from ridehail.app.core.redis_client import publish_json
from ridehail.app.core.reliability import CircuitBreaker, notification_circuit_breaker

logger = logging.getLogger("ridehail.notifier")

TARGET_DRIVERS = "drivers"
TARGET_DRIVER = "driver"
TARGET_RIDER = "rider"


class ConnectionRegistry:
    """Lock-guarded maps of online drivers and connected riders to their sockets."""

    def __init__(self):
        self._drivers: Dict[str, Any] = {}
        self._riders: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def register_driver(self, driver_id: str, websocket) -> None:
        async with self._lock:
            self._drivers[driver_id] = websocket

    async def register_rider(self, rider_id: str, websocket) -> None:
        async with self._lock:
            self._riders[rider_id] = websocket

    async def unregister_driver(self, driver_id: str, websocket=None) -> bool:
        """Remove a driver; with ``websocket`` given, only if it is still the registered one."""
        async with self._lock:
            return _discard(self._drivers, driver_id, websocket)

    async def unregister_rider(self, rider_id: str, websocket=None) -> bool:
        async with self._lock:
            return _discard(self._riders, rider_id, websocket)

    async def unregister_socket(self, websocket) -> List[str]:
        """Drop every registration held by a closed socket. Returns driver ids removed."""
        async with self._lock:
            drivers = [uid for uid, ws in self._drivers.items() if ws is websocket]
            for uid in drivers:
                del self._drivers[uid]
            for uid in [uid for uid, ws in self._riders.items() if ws is websocket]:
                del self._riders[uid]
            return drivers

    async def get_driver(self, driver_id: str):
        async with self._lock:
            return self._drivers.get(driver_id)

    async def get_rider(self, rider_id: str):
        async with self._lock:
            return self._riders.get(rider_id)

    async def online_drivers(self) -> Dict[str, Any]:
        async with self._lock:
            return dict(self._drivers)

    async def counts(self) -> Dict[str, int]:
        async with self._lock:
            return {"drivers": len(self._drivers), "riders": len(self._riders)}


def _discard(connections: Dict[str, Any], user_id: str, websocket) -> bool:
    current = connections.get(user_id)
    if current is None or (websocket is not None and current is not websocket):
        return False
    del connections[user_id]
    return True


async def _send(websocket, message: Dict[str, Any], recipient: str) -> bool:
    try:
        await websocket.send_json(message)
        return True
    except Exception as e:
        logger.warning("Failed to deliver %s to %s: %s", message.get("type"), recipient, e)
        return False


def trip_payload(trip) -> Dict[str, Any]:
    return {
        "id": trip.id,
        "rider_id": trip.rider_id,
        "ride_type": trip.ride_type,
        "pickup": {"address": trip.pickup_address, "lat": trip.pickup_lat, "lng": trip.pickup_lng},
        "destination": {
            "address": trip.destination_address,
            "lat": trip.destination_lat,
            "lng": trip.destination_lng,
        },
        "distance": trip.distance,
        "duration": trip.duration,
        "estimated_price": str(trip.estimated_price),
        "requested_at": trip.requested_at.isoformat() if trip.requested_at else None,
    }


class MatchingNotifier:
    """Fire-and-forget notifications for the trip lifecycle."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        fanout_enabled: bool = False,
        channel: str = "ridehail:notifications",
        publisher: Callable[[str, Dict[str, Any]], Awaitable[Any]] = publish_json,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.registry = registry
        self.fanout_enabled = fanout_enabled
        self.channel = channel
        self.publisher = publisher
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="notifications")

    # Outbound interface used by the trip lifecycle

    async def notify_new_trip(self, trip) -> None:
        await self._dispatch(TARGET_DRIVERS, None, {"type": "new_ride_request", "trip": trip_payload(trip)})

    async def notify_matched(self, rider_id: str, trip_id: str, driver_id: str) -> None:
        await self._dispatch(TARGET_RIDER, rider_id, {
            "type": "trip_matched",
            "trip_id": trip_id,
            "driver_id": driver_id,
        })

    async def notify_cancelled(self, rider_id: str, trip_id: str, reason: str, driver_id: Optional[str] = None) -> None:
        message = {"type": "trip_cancelled", "trip_id": trip_id, "reason": reason}
        await self._dispatch(TARGET_RIDER, rider_id, message)
        if driver_id:
            await self._dispatch(TARGET_DRIVER, driver_id, message)

    async def notify_status(self, rider_id: str, trip_id: str, status: str) -> None:
        await self._dispatch(TARGET_RIDER, rider_id, {"type": "trip_status", "trip_id": trip_id, "status": status})

    async def forward_location(self, rider_id: str, trip_id: str, driver_id: str, lat: float, lng: float) -> None:
        await self._dispatch(TARGET_RIDER, rider_id, {
            "type": "driver_location",
            "trip_id": trip_id,
            "driver_id": driver_id,
            "lat": lat,
            "lng": lng,
        })

    # Delivery

    async def _dispatch(self, target: str, user_id: Optional[str], message: Dict[str, Any]) -> None:
        envelope = {"target": target, "user_id": user_id, "message": message}
        if self.fanout_enabled:
            try:
                await self.circuit_breaker.call(self.publisher, self.channel, envelope)
                return
            except Exception as e:
                logger.warning("Fan-out publish failed, delivering locally: %s", e)
        await self.deliver_local(envelope)

    async def deliver_local(self, envelope: Dict[str, Any]) -> int:
        """
        Deliver an envelope to sockets held by this process.

        Returns:
            Number of sockets the message reached
        """
        target = envelope.get("target")
        user_id = envelope.get("user_id")
        message = envelope.get("message") or {}

        try:
            if target == TARGET_DRIVERS:
                drivers = await self.registry.online_drivers()
                results = [await _send(ws, message, f"driver {uid}") for uid, ws in drivers.items()]
                return sum(results)

            if target == TARGET_RIDER:
                websocket = await self.registry.get_rider(user_id)
            elif target == TARGET_DRIVER:
                websocket = await self.registry.get_driver(user_id)
            else:
                logger.warning("Dropping notification with unknown target %r", target)
                return 0
        except Exception:
            logger.exception("Notification delivery failed")
            return 0

        if websocket is None:
            logger.debug("%s %s not connected, dropping %s", target, user_id, message.get("type"))
            return 0
        return int(await _send(websocket, message, f"{target} {user_id}"))


connection_registry = ConnectionRegistry()

matching_notifier = MatchingNotifier(
    connection_registry,
    fanout_enabled=settings.notification_fanout_enabled,
    channel=settings.notification_channel,
    circuit_breaker=notification_circuit_breaker,
)


def get_notifier() -> MatchingNotifier:
    """FastAPI dependency returning the process-wide notifier."""
    return matching_notifier
