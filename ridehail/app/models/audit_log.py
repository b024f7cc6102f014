"""
Audit Log Database Model.

Records every trip transition and pricing change, written in the same
transaction as the change itself.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from ridehail.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - TRIP_REQUESTED / TRIP_MATCHED / TRIP_PICKUP / TRIP_STARTED
    - TRIP_COMPLETED / TRIP_CANCELLED / TRIP_TIMED_OUT
    - PROMO_REDEEMED
    - PRICING_PLAN_UPSERTED / PRICING_RULE_CREATED / PROMO_CODE_CREATED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions such as the timeout sweep)
    actor_id = Column(String(128), index=True, nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Subject of the action
    trip_id = Column(String(36), index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor='{self.actor_id}', trip='{self.trip_id}')>"
