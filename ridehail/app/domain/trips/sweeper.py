"""
Trip Timeout Sweeper.

A trip may wait at most ``request_timeout_minutes`` in ``requested``.
Stale requests are cancelled with reason ``timeout`` on two paths:

- the read path: ``active_trip_for_rider`` sweeps the rider's own trip
  before returning it, so a stale request never reaches a client;
- the background path: ``run_periodic_sweeps`` sweeps everything on an
  interval while the app is running.

Each cancel is conditional on the trip still being ``requested`` and
stale, so a sweep racing a rider's own cancel is harmless: whichever
statement lands first wins, the other affects no rows.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.app.core.config import settings
from ridehail.app.core.timeutils import utcnow
from ridehail.app.models.trip import Trip
from ridehail.app.models.trip_enums import TripStatus, CancelReason, ACTIVE_STATUSES
from ridehail.app.services.audit import record_event, AuditAction

logger = logging.getLogger("ridehail.trips.sweeper")


class TripTimeoutSweeper:

    def __init__(self, notifier=None, timeout_minutes: Optional[int] = None):
        self.notifier = notifier
        self.timeout = timedelta(minutes=timeout_minutes or settings.request_timeout_minutes)

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        return (now or utcnow()) - self.timeout

    async def expire_stale_requests(
        self,
        db: AsyncSession,
        rider_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Tuple[str, str]]:
        """
        Cancel requests older than the timeout and commit.

        Args:
            db: Database session
            rider_id: Restrict the sweep to one rider
            now: Reference time, defaults to the current UTC time

        Returns:
            (trip_id, rider_id) of every trip this call cancelled
        """
        now = now or utcnow()
        cutoff = self.cutoff(now)

        query = select(Trip.id, Trip.rider_id).where(
            Trip.status == TripStatus.REQUESTED,
            Trip.requested_at < cutoff
        )
        if rider_id:
            query = query.where(Trip.rider_id == rider_id)
        candidates = (await db.execute(query)).all()
        if not candidates:
            return []

        expired = []
        for trip_id, trip_rider_id in candidates:
            result = await db.execute(
                update(Trip)
                .where(
                    Trip.id == trip_id,
                    Trip.status == TripStatus.REQUESTED,
                    Trip.requested_at < cutoff
                )
                .values(
                    status=TripStatus.CANCELLED,
                    cancel_reason=CancelReason.TIMEOUT,
                    cancelled_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                await record_event(
                    db,
                    AuditAction.TRIP_TIMED_OUT,
                    trip_id=trip_id,
                    metadata={"timeout_minutes": self.timeout.total_seconds() / 60}
                )
                expired.append((trip_id, trip_rider_id))

        await db.commit()

        for trip_id, trip_rider_id in expired:
            logger.info("Trip %s timed out waiting for a driver", trip_id)
            await self._notify(trip_rider_id, trip_id)
        return expired

    async def active_trip_for_rider(self, db: AsyncSession, rider_id: str) -> Optional[Trip]:
        """The rider's non-terminal trip, after cancelling it if it went stale."""
        await self.expire_stale_requests(db, rider_id=rider_id)
        result = await db.execute(
            select(Trip)
            .where(Trip.rider_id == rider_id, Trip.status.in_(ACTIVE_STATUSES))
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def run_periodic_sweeps(self, session_factory, interval_seconds: float, stop_event: asyncio.Event):
        """Sweep every ``interval_seconds`` until ``stop_event`` is set."""
        while not stop_event.is_set():
            try:
                async with session_factory() as db:
                    expired = await self.expire_stale_requests(db)
                if expired:
                    logger.info("Timeout sweep cancelled %d trips", len(expired))
            except Exception:
                logger.exception("Timeout sweep failed")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def _notify(self, rider_id: str, trip_id: str) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.notify_cancelled(rider_id, trip_id, CancelReason.TIMEOUT.value)
        except Exception as e:
            logger.warning("Timeout notification for trip %s failed: %s", trip_id, e)
