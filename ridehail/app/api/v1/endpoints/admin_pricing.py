"""
Admin Pricing API Endpoints.

Manage plans, dynamic pricing rules and promo codes (Admin only).
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.app.core.exceptions import NotFoundError
from ridehail.app.core.guards import require_admin
from ridehail.app.db.session import get_db
from ridehail.app.domain.pricing.catalog import PricingCatalog
from ridehail.app.models.promo_code import PromoCode
from ridehail.app.models.pricing_rule import PricingRule
from ridehail.app.schemas.pricing import (
    PricingPlanUpsert, PricingPlanResponse,
    PricingRuleCreate, PricingRuleResponse,
    PromoCodeCreate, PromoCodeResponse,
)
from ridehail.app.services.audit import record_event, AuditAction

router = APIRouter(prefix="/admin/pricing", tags=["Admin - Pricing"])


@router.put("/plans", response_model=PricingPlanResponse)
async def upsert_plan(
    payload: PricingPlanUpsert,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    plan = await PricingCatalog.upsert_plan(db, payload.model_dump())
    await record_event(
        db, AuditAction.PRICING_PLAN_UPSERTED, actor_id=current_user["user_id"],
        metadata={"name": plan.name}
    )
    await db.commit()
    await db.refresh(plan)
    return plan


@router.delete("/plans/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_plan(
    name: str = Path(..., description="Plan name"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    if not await PricingCatalog.deactivate_plan(db, name):
        raise NotFoundError("Pricing plan", name)
    await record_event(
        db, AuditAction.PRICING_PLAN_DEACTIVATED, actor_id=current_user["user_id"],
        metadata={"name": name}
    )
    await db.commit()


@router.get("/rules", response_model=List[PricingRuleResponse])
async def list_rules(
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(select(PricingRule).order_by(PricingRule.priority.desc()))
    return list(result.scalars().all())


@router.post("/rules", response_model=PricingRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    payload: PricingRuleCreate,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    rule = await PricingCatalog.create_rule(db, payload.model_dump(), created_by=current_user["user_id"])
    await record_event(
        db, AuditAction.PRICING_RULE_CREATED, actor_id=current_user["user_id"],
        metadata={"rule_id": rule.id, "name": rule.name}
    )
    await db.commit()
    await db.refresh(rule)
    return rule


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_rule(
    rule_id: str = Path(..., description="Rule ID"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    if not await PricingCatalog.deactivate_rule(db, rule_id):
        raise NotFoundError("Pricing rule", rule_id)
    await record_event(
        db, AuditAction.PRICING_RULE_DEACTIVATED, actor_id=current_user["user_id"],
        metadata={"rule_id": rule_id}
    )
    await db.commit()


@router.get("/promos", response_model=List[PromoCodeResponse])
async def list_promos(
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(select(PromoCode).order_by(PromoCode.code))
    return list(result.scalars().all())


@router.post("/promos", response_model=PromoCodeResponse, status_code=status.HTTP_201_CREATED)
async def create_promo(
    payload: PromoCodeCreate,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    try:
        promo = await PricingCatalog.create_promo(db, payload.model_dump())
        await record_event(
            db, AuditAction.PROMO_CODE_CREATED, actor_id=current_user["user_id"],
            metadata={"code": promo.code}
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Promo code {payload.code.strip().upper()} already exists"
        )
    await db.refresh(promo)
    return promo
