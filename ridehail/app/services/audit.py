"""
Audit logging service for trip transitions and pricing changes.

``record_event`` only adds and flushes; the caller owns the transaction,
so an audit row is committed or rolled back together with the change it
describes.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from ridehail.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    # Trip lifecycle
    TRIP_REQUESTED = "TRIP_REQUESTED"
    TRIP_MATCHED = "TRIP_MATCHED"
    TRIP_PICKUP = "TRIP_PICKUP"
    TRIP_STARTED = "TRIP_STARTED"
    TRIP_COMPLETED = "TRIP_COMPLETED"
    TRIP_CANCELLED = "TRIP_CANCELLED"
    TRIP_TIMED_OUT = "TRIP_TIMED_OUT"
    TRIP_RATED = "TRIP_RATED"
    PROMO_REDEEMED = "PROMO_REDEEMED"

    # Drivers
    DRIVER_ONLINE = "DRIVER_ONLINE"
    DRIVER_OFFLINE = "DRIVER_OFFLINE"

    # Pricing administration
    PRICING_PLAN_UPSERTED = "PRICING_PLAN_UPSERTED"
    PRICING_PLAN_DEACTIVATED = "PRICING_PLAN_DEACTIVATED"
    PRICING_RULE_CREATED = "PRICING_RULE_CREATED"
    PRICING_RULE_DEACTIVATED = "PRICING_RULE_DEACTIVATED"
    PROMO_CODE_CREATED = "PROMO_CODE_CREATED"


async def record_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[str] = None,
    trip_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Add an audit entry to the current transaction.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action, None for system actions
        trip_id: Trip the action applies to, if any
        metadata: Additional context as JSON

    Returns:
        Pending AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        trip_id=trip_id,
        meta_data=metadata,
    )
    db.add(audit_log)
    await db.flush()
    return audit_log


async def get_trip_audit_trail(db: AsyncSession, trip_id: str, limit: int = 100) -> list[AuditLog]:
    """Audit entries for one trip, oldest first."""
    query = (
        select(AuditLog)
        .where(AuditLog.trip_id == trip_id)
        .order_by(AuditLog.id)
        .limit(limit)
    )
    result = await db.execute(query)
    return list(result.scalars().all())
