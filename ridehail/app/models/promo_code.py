"""
Promo code database models.

``PromoCode.used_count`` is only ever changed by a conditional increment
that checks ``usage_limit`` in the same statement. Each successful
redemption also writes a ``PromoRedemption`` row, which is what the
per-user limit counts.
"""

import uuid

from sqlalchemy import Column, String, Integer, Numeric, DateTime, Boolean, Text, ForeignKey, Enum
from sqlalchemy.sql import func
from ridehail.app.db.session import Base
from ridehail.app.models.enums import enum_values
from ridehail.app.models.pricing_enums import DiscountType


class PromoCode(Base):
    __tablename__ = "promo_codes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    code = Column(String(50), unique=True, nullable=False, index=True)  # stored upper-case
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)

    discount_type = Column(Enum(DiscountType, values_callable=enum_values, name="discount_type"), nullable=False)
    discount_value = Column(Numeric(10, 2), nullable=False)
    max_discount = Column(Numeric(10, 2), nullable=True)  # cap for percentage codes
    min_trip_value = Column(Numeric(10, 2), nullable=False, default=0)

    usage_limit = Column(Integer, nullable=True)  # null = unlimited
    used_count = Column(Integer, nullable=False, default=0)
    per_user_limit = Column(Integer, nullable=False, default=1)

    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_to = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<PromoCode(code='{self.code}', used={self.used_count}/{self.usage_limit})>"


class PromoRedemption(Base):
    __tablename__ = "promo_redemptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    promo_id = Column(String(36), ForeignKey('promo_codes.id'), nullable=False, index=True)
    user_id = Column(String(128), ForeignKey('users.id'), nullable=False, index=True)
    trip_id = Column(String(36), ForeignKey('trips.id'), nullable=True)
    discount_amount = Column(Numeric(10, 2), nullable=False)
    redeemed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<PromoRedemption(promo='{self.promo_id}', user='{self.user_id}')>"
