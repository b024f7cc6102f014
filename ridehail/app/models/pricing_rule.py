"""
Pricing Rule database model.

Admin-defined adjustments applied on top of a plan's fare, e.g. a rainy
evening surcharge or a long-distance discount.
"""

import uuid

from sqlalchemy import Column, String, Integer, Numeric, DateTime, Boolean, JSON, Enum, Text
from sqlalchemy.sql import func
from ridehail.app.db.session import Base
from ridehail.app.models.enums import enum_values
from ridehail.app.models.pricing_enums import PricingRuleType, AdjustmentType


class PricingRule(Base):
    """
    Pricing Rule model.

    ``conditions`` may hold ``min_distance_km``, ``max_distance_km`` and
    ``hours`` (list of local hours). ``applicable_plans`` restricts the rule
    to named plans; empty or null means every plan. Higher ``priority``
    rules are applied first.
    """
    __tablename__ = "pricing_rules"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Rule details
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    rule_type = Column(Enum(PricingRuleType, values_callable=enum_values, name="pricing_rule_type"), nullable=False)
    adjustment_type = Column(Enum(AdjustmentType, values_callable=enum_values, name="adjustment_type"), nullable=False)
    adjustment_value = Column(Numeric(10, 4), nullable=False)
    priority = Column(Integer, nullable=False, default=0)
    conditions = Column(JSON, nullable=True)
    applicable_plans = Column(JSON, nullable=True)

    # Validity
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_to = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Audit
    created_by = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<PricingRule(id='{self.id}', name='{self.name}', type='{self.rule_type.value}')>"
