"""
Pricing Plan database model.

A named commercial tier (economy, comfort, premium). Plans are seeded at
startup and only read by trip pricing.
"""

import uuid

from sqlalchemy import Column, String, Integer, Numeric, DateTime, Boolean, Text, JSON, Enum
from sqlalchemy.sql import func
from ridehail.app.db.session import Base
from ridehail.app.models.enums import VehicleType, enum_values


class PricingPlan(Base):
    __tablename__ = "pricing_plans"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(50), unique=True, nullable=False, index=True)
    display_name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    vehicle_type = Column(
        Enum(VehicleType, values_callable=enum_values, name="vehicle_type"),
        nullable=False,
    )

    # Rates
    base_fare = Column(Numeric(10, 2), nullable=False)
    per_km_rate = Column(Numeric(10, 4), nullable=False)
    per_minute_rate = Column(Numeric(10, 4), nullable=False)
    minimum_fare = Column(Numeric(10, 2), nullable=False)
    cancellation_fee = Column(Numeric(10, 2), nullable=False, default=0)
    booking_fee = Column(Numeric(10, 2), nullable=False, default=0)
    surge_multiplier = Column(Numeric(4, 2), nullable=False, default=1)

    features = Column(JSON, nullable=True)
    max_passengers = Column(Integer, nullable=False, default=4)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<PricingPlan(name='{self.name}', base_fare={self.base_fare}, active={self.is_active})>"
