"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from ridehail.app.api.v1.endpoints import (
    trips, drivers, users, pricing, ratings, admin_pricing, realtime
)

router = APIRouter()

# Trip lifecycle
router.include_router(trips.router)
router.include_router(drivers.router)
router.include_router(ratings.router)

# Accounts and vehicles
router.include_router(users.router)

# Pricing
router.include_router(pricing.router)
router.include_router(admin_pricing.router)

# Live updates
router.include_router(realtime.router)
