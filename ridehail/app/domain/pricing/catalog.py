"""
Pricing Catalog.

Source of truth for pricing plans, promo codes and dynamic pricing rules.
Trip pricing only reads from here; writes come from startup seeding and
the admin pricing endpoints.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.app.core.exceptions import PlanNotFoundError
from ridehail.app.core.timeutils import utcnow
from ridehail.app.domain.pricing.defaults import DEFAULT_PLANS, default_promo_codes
from ridehail.app.models.pricing_plan import PricingPlan
from ridehail.app.models.pricing_rule import PricingRule
from ridehail.app.models.promo_code import PromoCode

logger = logging.getLogger("ridehail.pricing.catalog")


def normalize_code(code: str) -> str:
    return code.strip().upper()


class PricingCatalog:

    @staticmethod
    async def get_plan(db: AsyncSession, name: str) -> PricingPlan:
        """
        Resolve an active plan by name.

        Raises:
            PlanNotFoundError: If the plan does not exist or is inactive.
        """
        result = await db.execute(
            select(PricingPlan).where(
                PricingPlan.name == name.strip().lower(),
                PricingPlan.is_active == True
            )
        )
        plan = result.scalar_one_or_none()
        if not plan:
            raise PlanNotFoundError(name)
        return plan

    @staticmethod
    async def list_active_plans(db: AsyncSession) -> List[PricingPlan]:
        result = await db.execute(
            select(PricingPlan)
            .where(PricingPlan.is_active == True)
            .order_by(PricingPlan.name)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_promo(db: AsyncSession, code: str) -> Optional[PromoCode]:
        """Case-insensitive, whitespace-trimmed promo lookup. Returns None if absent."""
        if not code or not code.strip():
            return None
        result = await db.execute(
            select(PromoCode).where(PromoCode.code == normalize_code(code))
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def list_active_rules(db: AsyncSession, now: Optional[datetime] = None) -> List[PricingRule]:
        """Active rules inside their validity window, highest priority first."""
        now = now or utcnow()
        query = select(PricingRule).where(
            PricingRule.is_active == True,
            or_(PricingRule.valid_from.is_(None), PricingRule.valid_from <= now),
            or_(PricingRule.valid_to.is_(None), PricingRule.valid_to >= now),
        ).order_by(PricingRule.priority.desc(), PricingRule.created_at)
        result = await db.execute(query)
        return list(result.scalars().all())

    # Seeding

    @staticmethod
    async def ensure_defaults(db: AsyncSession) -> Dict[str, int]:
        """
        Idempotently seed the default plans and promo codes.

        Rows are matched by their unique name/code, so running this twice,
        or on two instances at once, never duplicates anything. A unique
        violation from a concurrent seeder counts as "already present".

        Returns:
            Number of plans and promos inserted by this call
        """
        created = {"plans": 0, "promos": 0}

        for plan_data in DEFAULT_PLANS:
            existing = await db.execute(
                select(PricingPlan.id).where(PricingPlan.name == plan_data["name"])
            )
            if existing.scalar_one_or_none():
                continue
            db.add(PricingPlan(**plan_data))
            if await _commit_or_skip(db, "plan", plan_data["name"]):
                created["plans"] += 1

        for promo_data in default_promo_codes():
            existing = await db.execute(
                select(PromoCode.id).where(PromoCode.code == promo_data["code"])
            )
            if existing.scalar_one_or_none():
                continue
            db.add(PromoCode(**promo_data))
            if await _commit_or_skip(db, "promo", promo_data["code"]):
                created["promos"] += 1

        if created["plans"] or created["promos"]:
            logger.info("Seeded pricing defaults: %s", created)
        return created

    # Administration

    @staticmethod
    async def upsert_plan(db: AsyncSession, data: Dict[str, Any]) -> PricingPlan:
        """Insert or update a plan keyed by name. Caller commits."""
        name = data["name"].strip().lower()
        result = await db.execute(select(PricingPlan).where(PricingPlan.name == name))
        plan = result.scalar_one_or_none()

        if plan is None:
            plan = PricingPlan(**{**data, "name": name})
            db.add(plan)
        else:
            for field, value in data.items():
                if field != "name":
                    setattr(plan, field, value)
        await db.flush()
        return plan

    @staticmethod
    async def deactivate_plan(db: AsyncSession, name: str) -> bool:
        result = await db.execute(
            update(PricingPlan)
            .where(PricingPlan.name == name.strip().lower(), PricingPlan.is_active == True)
            .values(is_active=False)
        )
        return result.rowcount > 0

    @staticmethod
    async def create_rule(db: AsyncSession, data: Dict[str, Any], created_by: Optional[str] = None) -> PricingRule:
        rule = PricingRule(**data, created_by=created_by)
        db.add(rule)
        await db.flush()
        return rule

    @staticmethod
    async def deactivate_rule(db: AsyncSession, rule_id: str) -> bool:
        result = await db.execute(
            update(PricingRule)
            .where(PricingRule.id == rule_id, PricingRule.is_active == True)
            .values(is_active=False)
        )
        return result.rowcount > 0

    @staticmethod
    async def create_promo(db: AsyncSession, data: Dict[str, Any]) -> PromoCode:
        promo = PromoCode(**{**data, "code": normalize_code(data["code"])})
        db.add(promo)
        await db.flush()
        return promo


async def _commit_or_skip(db: AsyncSession, kind: str, key: str) -> bool:
    try:
        await db.commit()
        return True
    except IntegrityError:
        await db.rollback()
        logger.info("Default %s '%s' inserted concurrently, skipping", kind, key)
        return False
