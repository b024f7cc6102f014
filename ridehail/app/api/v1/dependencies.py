"""
Per-request wiring of the trip lifecycle.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.app.db.session import get_db
from ridehail.app.domain.trips.lifecycle import TripLifecycle
from ridehail.app.services.matching_notifier import MatchingNotifier, get_notifier


async def get_trip_lifecycle(
    db: AsyncSession = Depends(get_db),
    notifier: MatchingNotifier = Depends(get_notifier),
) -> TripLifecycle:
    return TripLifecycle(db, notifier)
