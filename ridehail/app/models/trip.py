"""
Trip database model.

A trip is one ride request end-to-end. Rows are never deleted; they end
in ``completed`` or ``cancelled``.
"""

import uuid

from sqlalchemy import Column, String, Float, Numeric, ForeignKey, DateTime, Enum, JSON, Index, text
from sqlalchemy.sql import func
from ridehail.app.db.session import Base
from ridehail.app.models.enums import enum_values
from ridehail.app.models.trip_enums import TripStatus, CancelReason

# Kept in sync with trip_enums.ACTIVE_STATUSES
_ACTIVE_STATUS_CLAUSE = "status IN ('requested', 'matched', 'pickup', 'in_progress')"
# A driver is on at most one of these at a time
_DRIVER_BUSY_CLAUSE = "status IN ('matched', 'pickup', 'in_progress')"


class Trip(Base):
    """
    Trip model.

    ``driver_id`` and ``vehicle_id`` stay null while the trip is
    ``requested`` and are set together by the match transition.
    ``final_price`` is only set on completion.
    """
    __tablename__ = "trips"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Parties
    rider_id = Column(String(128), ForeignKey('users.id'), nullable=False, index=True)
    driver_id = Column(String(128), ForeignKey('users.id'), nullable=True, index=True)
    vehicle_id = Column(String(36), ForeignKey('vehicles.id'), nullable=True)

    # Geography
    pickup_address = Column(String(255), nullable=False)
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    destination_address = Column(String(255), nullable=False)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)

    # Commercial
    ride_type = Column(String(50), nullable=False)
    distance = Column(Float, nullable=False)  # km
    duration = Column(Float, nullable=False)  # minutes
    estimated_price = Column(Numeric(10, 2), nullable=False)
    final_price = Column(Numeric(10, 2), nullable=True)
    price_breakdown = Column(JSON, nullable=True)
    promo_code_id = Column(String(36), ForeignKey('promo_codes.id'), nullable=True)
    discount_amount = Column(Numeric(10, 2), nullable=True)
    cancellation_fee = Column(Numeric(10, 2), nullable=True)
    driver_earnings = Column(Numeric(10, 2), nullable=True)
    platform_fee = Column(Numeric(10, 2), nullable=True)

    # Status
    status = Column(
        Enum(TripStatus, values_callable=enum_values, name="trip_status"),
        default=TripStatus.REQUESTED,
        nullable=False,
        index=True,
    )
    cancel_reason = Column(
        Enum(CancelReason, values_callable=enum_values, name="cancel_reason"),
        nullable=True,
    )
    cancelled_by = Column(String(128), nullable=True)

    # Timestamps (each set once, by its own transition)
    requested_at = Column(DateTime(timezone=True), nullable=False, index=True)
    matched_at = Column(DateTime(timezone=True), nullable=True)
    pickup_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # One non-terminal trip per rider, one busy trip per driver
    __table_args__ = (
        Index(
            'ix_trips_rider_active', 'rider_id', unique=True,
            postgresql_where=text(_ACTIVE_STATUS_CLAUSE),
            sqlite_where=text(_ACTIVE_STATUS_CLAUSE),
        ),
        Index(
            'ix_trips_driver_active', 'driver_id', unique=True,
            postgresql_where=text(_DRIVER_BUSY_CLAUSE),
            sqlite_where=text(_DRIVER_BUSY_CLAUSE),
        ),
    )

    def __repr__(self):
        return f"<Trip(id='{self.id}', rider='{self.rider_id}', status='{self.status.value}')>"
