"""
WebSocket channel for live trip updates.

Clients connect to ``/v1/ws?token=<bearer>`` and send JSON messages:

- ``driver_online`` / ``driver_offline``: availability (drivers only)
- ``rider_connected``: subscribe to updates about the rider's trips
- ``location_update``: driver position, forwarded to the rider of the
  driver's active trip
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.app.core.dependencies import resolve_token_user
from ridehail.app.db.session import get_db
from ridehail.app.domain.trips.lifecycle import TripLifecycle
from ridehail.app.models.enums import UserType
from ridehail.app.services.matching_notifier import MatchingNotifier, get_notifier

logger = logging.getLogger("ridehail.realtime")

router = APIRouter(tags=["Realtime"])


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    db: AsyncSession = Depends(get_db),
    notifier: MatchingNotifier = Depends(get_notifier),
):
    token = websocket.query_params.get("token")
    try:
        if not token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
        current_user = await resolve_token_user(token, db)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    user_id = current_user["user_id"]
    is_driver = current_user["role"] == UserType.DRIVER.value
    lifecycle = TripLifecycle(db, notifier)
    registry = notifier.registry

    try:
        while True:
            message = await websocket.receive_json()
            kind = message.get("type") if isinstance(message, dict) else None

            if kind == "driver_online" and is_driver:
                await registry.register_driver(user_id, websocket)
                await lifecycle.set_driver_online(user_id)
                await websocket.send_json({"type": "driver_status", "is_active": True})

            elif kind == "driver_offline" and is_driver:
                await registry.unregister_driver(user_id, websocket)
                cancelled = await lifecycle.handle_driver_offline(user_id)
                await websocket.send_json({
                    "type": "driver_status",
                    "is_active": False,
                    "cancelled_trip_ids": [trip.id for trip in cancelled],
                })

            elif kind == "rider_connected":
                await registry.register_rider(user_id, websocket)
                await websocket.send_json({"type": "connected", "user_id": user_id})

            elif kind == "location_update" and is_driver:
                trip = await lifecycle.active_trip_for_driver(user_id)
                if trip is not None:
                    await notifier.forward_location(
                        trip.rider_id, trip.id, user_id, message.get("lat"), message.get("lng")
                    )

            else:
                await websocket.send_json({"type": "error", "message": f"Unsupported message: {kind}"})

    except WebSocketDisconnect:
        logger.debug("Socket for %s closed", user_id)
    finally:
        await registry.unregister_socket(websocket)
