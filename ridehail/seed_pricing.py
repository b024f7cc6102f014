"""
Database seeding script for the default pricing catalog.

Creates the economy/comfort/premium plans and the launch promo codes.
Safe to run repeatedly; existing rows are left untouched.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ridehail.app.db.session import AsyncSessionLocal, engine, create_tables
from ridehail.app.domain.pricing.catalog import PricingCatalog


async def seed_pricing():
    await create_tables()

    async with AsyncSessionLocal() as db:
        print("Seeding pricing catalog...")
        created = await PricingCatalog.ensure_defaults(db)
        print(f"Plans created: {created['plans']}, promo codes created: {created['promos']}")

        for plan in await PricingCatalog.list_active_plans(db):
            print(f"  {plan.name:<10} base ${plan.base_fare}  ${plan.per_km_rate}/km  min ${plan.minimum_fare}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_pricing())
